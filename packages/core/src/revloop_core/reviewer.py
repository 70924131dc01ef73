"""Core review cycle orchestration.

One cycle:
    load ledger
      → for each configured repository: list open PRs
          → latest iteration → already reviewed? skip
          → filter changed files → fetch content → size limit
          → review_files() → post comment threads → mark reviewed
      → cleanup ledger keys of closed PRs → save ledger

Repositories and pull requests are processed strictly one at a time, so at
most one agent process runs at any moment.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from rich.console import Console

from revloop_core.agent.invoker import AgentInvoker, resolve_agent_command
from revloop_core.exceptions import ProviderError, ReviewCancelled
from revloop_core.models import ChangedFile, ChangeType, PullRequest, RepositoryRef, ReviewComment, ReviewOutcome
from revloop_core.providers.base import BaseProvider
from revloop_core.utils.code import is_reviewable_file
from revloop_core.utils.patterns import compile_exclude_patterns, is_excluded
from revloop_core.workspace import staged_workspace
from revloop_store.models import Ledger, ledger_key

if TYPE_CHECKING:
    from revloop_store.base import BaseLedgerStore

console = Console()
logger = logging.getLogger(__name__)


@dataclass
class CycleSummary:
    """What one review cycle did. Returned by run_cycle for the CLI to report."""

    repositories_scanned: int = 0
    repositories_failed: list[str] = field(default_factory=list)
    reviewed: list[str] = field(default_factory=list)  # "<ledger key>@<revision>"
    skipped: int = 0
    failed: list[str] = field(default_factory=list)  # ledger keys left unmarked
    comments_posted: int = 0
    removed_keys: list[str] = field(default_factory=list)


@dataclass
class CommentThread:
    file_path: str
    line_number: int | None
    text: str


def get_provider(config: dict) -> BaseProvider:
    provider = config["provider"]
    if provider == "azure_devops":
        from revloop_core.providers.azure_devops import AzureDevOpsProvider

        return AzureDevOpsProvider(organization_url=config["organization_url"], token=config["azure_devops_token"])
    if provider == "github":
        from revloop_core.providers.github import GitHubProvider

        return GitHubProvider(token=config["github_token"])
    raise ValueError(f"Unknown provider: {provider!r}. Choose 'azure_devops' or 'github'.")


def get_agent(config: dict, stop_event: threading.Event | None = None) -> AgentInvoker:
    return AgentInvoker(
        command=resolve_agent_command(config["agent_command"]),
        timeout_seconds=config["agent_timeout_seconds"],
        max_retries=config["agent_max_retries"],
        model=config.get("agent_model"),
        stop_event=stop_event,
    )


def filter_changed_files(changes: list[ChangedFile], exclude_patterns: list[re.Pattern]) -> list[ChangedFile]:
    """Drop deletions, non-reviewable file types and excluded paths."""
    files = []
    for changed in changes:
        if changed.change_type == ChangeType.DELETE:
            continue
        if not is_reviewable_file(changed.path):
            continue
        if is_excluded(changed.path, exclude_patterns):
            logger.debug("File %s excluded by pattern", changed.path)
            continue
        files.append(changed)
    return files


def drop_unreviewable_content(files: list[ChangedFile], max_file_size_kb: int) -> list[ChangedFile]:
    """Drop files whose content is empty or larger than the size ceiling."""
    limit = max_file_size_kb * 1024
    kept = [f for f in files if f.content and len(f.content.encode("utf-8")) <= limit]
    dropped = len(files) - len(kept)
    if dropped:
        logger.info("Skipped %d file(s) that were empty or exceeded the %dKB size limit", dropped, max_file_size_kb)
    return kept


def review_files(files: list[ChangedFile], agent: AgentInvoker, instructions: str) -> ReviewOutcome:
    """Stage ``files`` into a workspace, run the agent, and always clean up."""
    try:
        with staged_workspace(files) as workspace:
            if workspace.is_empty:
                return ReviewOutcome.empty()
            logger.info("Reviewing %d file(s) in workspace: %s", len(workspace.written), workspace.path)
            return agent.invoke_with_retry(workspace.path, instructions)
    except ReviewCancelled:
        raise
    except Exception as e:
        logger.exception("Error during agent review")
        return ReviewOutcome.failure(str(e))


def build_comment_threads(outcome: ReviewOutcome, max_comments_per_file: int) -> list[CommentThread]:
    """Turn an outcome into the comment threads to open, in posting order.

    A file in summary mode gets one thread carrying the summary. Otherwise
    each comment gets its own thread, capped at ``max_comments_per_file``
    and preceded by a notice when comments were cut.
    """
    threads: list[CommentThread] = []
    for file_result in outcome.files:
        if file_result.in_summary_mode:
            threads.append(CommentThread(file_result.file_path, None, file_result.summary))
            continue

        comments = file_result.comments
        if len(comments) > max_comments_per_file:
            notice = (
                f"This file has {len(comments)} suggestions. Showing top {max_comments_per_file}. "
                "Consider reviewing the full file for additional improvements."
            )
            threads.append(CommentThread(file_result.file_path, None, notice))

        for comment in comments[:max_comments_per_file]:
            threads.append(CommentThread(comment.file_path, comment.line_number, _format_comment(comment)))
    return threads


def post_review_comments(
    provider: BaseProvider,
    pr: PullRequest,
    outcome: ReviewOutcome,
    max_comments_per_file: int,
    comment_prefix: str = "",
) -> int:
    """Post every comment thread for ``outcome`` and return how many were sent."""
    threads = build_comment_threads(outcome, max_comments_per_file)
    for thread in threads:
        body = f"{comment_prefix} {thread.text}" if comment_prefix else thread.text
        provider.post_comment(pr.project, pr.repository_id, pr.id, thread.file_path, thread.line_number, body)
    return len(threads)


def print_shadow_comments(pr: PullRequest, threads: list[CommentThread]) -> None:
    """Print comment threads to the terminal without posting them."""
    if not threads:
        console.print(f"[yellow]Shadow mode: no comments generated for PR #{pr.id}.[/yellow]")
        return
    console.print(f"\n[bold]Shadow review of PR #{pr.id} ({pr.title}): {len(threads)} thread(s), not posted[/bold]\n")
    for t in threads:
        location = f"line [bold]{t.line_number}[/bold]" if t.line_number else "[dim]file[/dim]"
        console.print(f"[bold cyan]{t.file_path or '(pull request)'}[/bold cyan]  {location}")
        console.print(f"  {t.text}")
        console.print()


def process_pull_request(
    pr: PullRequest,
    provider: BaseProvider,
    ledger: Ledger,
    agent: AgentInvoker,
    config: dict,
    instructions: str,
    exclude_patterns: list[re.Pattern],
    summary: CycleSummary,
    shadow: bool = False,
) -> None:
    key = ledger_key(pr.project, pr.repository, pr.id)

    iterations = provider.list_iterations(pr.project, pr.repository_id, pr.id)
    if not iterations:
        logger.debug("PR #%d has no iterations", pr.id)
        summary.skipped += 1
        return

    latest = max(iterations, key=lambda it: it.id)
    revision = latest.source_revision
    if not revision:
        logger.warning("PR #%d iteration %d has no source revision; skipping", pr.id, latest.id)
        summary.skipped += 1
        return

    if ledger.has_reviewed(key, revision):
        logger.debug("PR #%d commit %s already reviewed", pr.id, revision)
        summary.skipped += 1
        return

    logger.info("Reviewing PR #%d: %s (commit %s)", pr.id, pr.title, revision)

    changes = provider.list_changed_files(pr.project, pr.repository_id, pr.id, latest.id)
    files = filter_changed_files(changes, exclude_patterns)
    logger.info("Found %d file(s) to review in PR #%d (after filtering)", len(files), pr.id)

    if files:
        for f in files:
            f.content = provider.get_file_content(pr.project, pr.repository_id, f.path, revision)
        files = drop_unreviewable_content(files, config["max_file_size_kb"])

    if not files:
        # Nothing reviewable in this revision is a final answer for it.
        ledger.mark_reviewed(key, revision)
        summary.reviewed.append(f"{key}@{revision}")
        return

    outcome = review_files(files, agent, instructions)
    if not outcome.success:
        # Left unmarked so the next cycle retries this revision.
        logger.warning("Agent review failed for PR #%d: %s", pr.id, outcome.error)
        summary.failed.append(key)
        return

    logger.info(
        "PR #%d review results: %d file(s) with issues, %d total comment(s)",
        pr.id,
        len(outcome.files),
        outcome.total_comments,
    )
    if not outcome.files:
        logger.info("PR #%d: no issues found by reviewer. Overall summary: %s", pr.id, outcome.overall_summary or "none")

    if shadow:
        print_shadow_comments(pr, build_comment_threads(outcome, config["max_comments_per_file"]))
    else:
        summary.comments_posted += post_review_comments(
            provider, pr, outcome, config["max_comments_per_file"], config.get("comment_prefix") or ""
        )

    ledger.mark_reviewed(key, revision)
    summary.reviewed.append(f"{key}@{revision}")
    logger.info("Completed review of PR #%d", pr.id)


def process_repository(
    repo: RepositoryRef,
    provider: BaseProvider,
    ledger: Ledger,
    agent: AgentInvoker,
    config: dict,
    instructions: str,
    exclude_patterns: list[re.Pattern],
    active_keys: set[str],
    summary: CycleSummary,
    shadow: bool = False,
) -> None:
    """Review every open PR of one repository. Per-PR failures are contained here.

    Raises ProviderError if the open pull requests cannot be listed.
    """
    logger.info("Checking %s for open PRs", repo)
    pull_requests = provider.list_open_pull_requests(repo.project, repo.repository)
    logger.info("Found %d open PR(s) in %s", len(pull_requests), repo)

    # Recorded before any review work so a failing PR still counts as open.
    for pr in pull_requests:
        active_keys.add(ledger_key(pr.project, pr.repository, pr.id))

    for pr in pull_requests:
        try:
            process_pull_request(pr, provider, ledger, agent, config, instructions, exclude_patterns, summary, shadow)
        except ReviewCancelled:
            raise
        except Exception:
            logger.exception("Error processing PR #%d in %s", pr.id, repo)
            summary.failed.append(ledger_key(pr.project, pr.repository, pr.id))


def run_cycle(
    provider: BaseProvider,
    store: BaseLedgerStore,
    agent: AgentInvoker,
    config: dict,
    instructions: str,
    stop_event: threading.Event | None = None,
    shadow: bool = False,
) -> CycleSummary:
    """Run one review cycle over every configured repository.

    The ledger is loaded once and saved once. In shadow mode comments are
    printed instead of posted and the ledger is not saved.
    """
    logger.info("Starting review cycle")
    ledger = store.load()
    exclude_patterns = compile_exclude_patterns(config.get("exclude") or [])
    summary = CycleSummary()
    active_keys: set[str] = set()

    try:
        for entry in config.get("repositories") or []:
            if stop_event is not None and stop_event.is_set():
                raise ReviewCancelled("Shutdown requested during review cycle")
            repo = RepositoryRef(project=entry["project"], repository=entry["repository"])
            try:
                process_repository(
                    repo, provider, ledger, agent, config, instructions, exclude_patterns, active_keys, summary, shadow
                )
                summary.repositories_scanned += 1
            except ReviewCancelled:
                raise
            except Exception as e:
                if isinstance(e, ProviderError):
                    logger.error("Error processing repository %s: %s", repo, e)
                else:
                    logger.exception("Error processing repository %s", repo)
                summary.repositories_failed.append(str(repo))
                # Keys of a repository that could not be listed survive cleanup.
                active_keys.update(ledger.keys_for_repository(repo.project, repo.repository))
    except ReviewCancelled:
        if not shadow:
            # Keep the revisions finished so far; cleanup waits for a full cycle.
            store.save(ledger)
        raise

    summary.removed_keys = ledger.cleanup(active_keys)
    if summary.removed_keys:
        logger.info("Removed %d closed pull request(s) from the ledger", len(summary.removed_keys))

    if shadow:
        logger.info("Shadow mode: ledger not saved")
    else:
        store.save(ledger)

    logger.info(
        "Review cycle completed: %d reviewed, %d skipped, %d failed, %d comment(s) posted",
        len(summary.reviewed),
        summary.skipped,
        len(summary.failed),
        summary.comments_posted,
    )
    return summary


def run_polling_loop(
    provider: BaseProvider,
    store: BaseLedgerStore,
    agent: AgentInvoker,
    config: dict,
    instructions: str,
    stop_event: threading.Event,
) -> None:
    """Run review cycles back to back, ``polling_interval_minutes`` apart, until stopped."""
    interval_minutes = config["polling_interval_minutes"]
    logger.info("revloop review service starting")

    while not stop_event.is_set():
        try:
            run_cycle(provider, store, agent, config, instructions, stop_event=stop_event)
        except ReviewCancelled:
            break
        except Exception:
            logger.exception("Error during review cycle")

        logger.info("Next review cycle in %s minutes", interval_minutes)
        if stop_event.wait(interval_minutes * 60):
            break

    logger.info("revloop review service stopping")


def _format_comment(comment: ReviewComment) -> str:
    return f"**[{comment.severity.value.upper()}]** {comment.text}"
