"""Tests for the review cycle orchestrator: dedup, filtering, posting and error containment."""

import threading
from pathlib import Path

import pytest

from revloop_core.config import DEFAULT_CONFIG, DEFAULT_EXCLUDE
from revloop_core.exceptions import ProviderError, ReviewCancelled
from revloop_core.models import (
    ChangedFile,
    ChangeType,
    FileReviewResult,
    Iteration,
    PullRequest,
    ReviewComment,
    ReviewOutcome,
    Severity,
)
from revloop_core.providers.base import BaseProvider
from revloop_core.reviewer import (
    build_comment_threads,
    drop_unreviewable_content,
    filter_changed_files,
    get_provider,
    post_review_comments,
    review_files,
    run_cycle,
    run_polling_loop,
)
from revloop_core.utils.patterns import compile_exclude_patterns
from revloop_store.base import BaseLedgerStore
from revloop_store.memory import MemoryLedgerStore
from revloop_store.models import Ledger

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeProvider(BaseProvider):
    def __init__(self):
        self.pull_requests = {}  # (project, repository) -> list[PullRequest] | Exception
        self.iterations = {}  # pr id -> list[Iteration] | Exception
        self.changes = {}  # pr id -> list[ChangedFile]
        self.contents = {}  # path -> text
        self.posted = []

    def add_pr(self, pr_id, revision, files, project="Proj", repository="api"):
        pr = PullRequest(
            id=pr_id, title=f"PR {pr_id}", project=project, repository=repository, repository_id=f"{repository}-id"
        )
        self.pull_requests.setdefault((project, repository), []).append(pr)
        self.iterations[pr_id] = [Iteration(id=1, source_revision=revision)]
        self.changes[pr_id] = files
        return pr

    def list_open_pull_requests(self, project, repository):
        value = self.pull_requests.get((project, repository), [])
        if isinstance(value, Exception):
            raise value
        return list(value)

    def list_iterations(self, project, repository_id, pull_request_id):
        value = self.iterations.get(pull_request_id, [])
        if isinstance(value, Exception):
            raise value
        return list(value)

    def list_changed_files(self, project, repository_id, pull_request_id, iteration_id):
        return [ChangedFile(path=c.path, change_type=c.change_type) for c in self.changes[pull_request_id]]

    def get_file_content(self, project, repository_id, path, revision):
        return self.contents.get(path, "")

    def post_comment(self, project, repository_id, pull_request_id, file_path, line_number, text):
        self.posted.append((pull_request_id, file_path, line_number, text))


class RecordingStore(BaseLedgerStore):
    def __init__(self, ledger=None):
        self.ledger = ledger or Ledger()
        self.saves = 0

    def load(self):
        return Ledger.from_dict(self.ledger.to_dict())

    def save(self, ledger):
        self.ledger = Ledger.from_dict(ledger.to_dict())
        self.saves += 1


class StubAgent:
    """Records the files staged in each workspace and replays scripted outcomes."""

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.calls = []
        self.workspaces = []

    def invoke_with_retry(self, workspace, instructions):
        root = Path(workspace)
        self.workspaces.append(root)
        self.calls.append(sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file()))
        step = self.outcomes.pop(0) if self.outcomes else review_for("a.cs", 1)
        if isinstance(step, BaseException):
            raise step
        return step


def review_for(path, n_comments, summary=None):
    comments = [
        ReviewComment(file_path=path, text=f"comment {i}", severity=Severity.WARNING, line_number=i + 1)
        for i in range(n_comments)
    ]
    return ReviewOutcome(files=[FileReviewResult(file_path=path, comments=comments, summary=summary)], success=True)


def make_config(**overrides):
    config = {
        **DEFAULT_CONFIG,
        "exclude": list(DEFAULT_EXCLUDE),
        "repositories": [{"project": "Proj", "repository": "api"}],
        "polling_interval_minutes": 0,
    }
    config.update(overrides)
    return config


def cycle(provider, store, agent, config=None, **kwargs):
    return run_cycle(provider, store, agent, config or make_config(), "instructions", **kwargs)


@pytest.fixture
def provider():
    p = FakeProvider()
    p.contents = {"/src/a.cs": "class A {}"}
    return p


# ---------------------------------------------------------------------------
# run_cycle
# ---------------------------------------------------------------------------


class TestReviewAndPost:
    def test_reviews_posts_and_marks(self, provider):
        provider.add_pr(1, "abc123", [ChangedFile("/src/a.cs", ChangeType.EDIT)])
        store = RecordingStore()
        agent = StubAgent([review_for("/src/a.cs", 1)])

        summary = cycle(provider, store, agent)

        assert agent.calls == [["src/a.cs"]]
        assert provider.posted == [(1, "/src/a.cs", 1, "[AutoBot] **[WARNING]** comment 0")]
        assert summary.reviewed == ["Proj/api/1@abc123"]
        assert summary.comments_posted == 1
        assert store.ledger.has_reviewed("Proj/api/1", "abc123")
        assert store.saves == 1

    def test_workspace_removed_after_review(self, provider):
        provider.add_pr(1, "abc123", [ChangedFile("/src/a.cs", ChangeType.EDIT)])
        agent = StubAgent()

        cycle(provider, RecordingStore(), agent)

        assert not agent.workspaces[0].exists()

    def test_latest_iteration_is_highest_id(self, provider):
        provider.add_pr(1, "ignored", [ChangedFile("/src/a.cs", ChangeType.EDIT)])
        provider.iterations[1] = [Iteration(3, "c3"), Iteration(1, "c1"), Iteration(2, "c2")]

        summary = cycle(provider, RecordingStore(), StubAgent())

        assert summary.reviewed == ["Proj/api/1@c3"]

    def test_pr_without_iterations_is_skipped(self, provider):
        provider.add_pr(1, "abc", [ChangedFile("/src/a.cs", ChangeType.EDIT)])
        provider.iterations[1] = []
        agent = StubAgent()

        summary = cycle(provider, RecordingStore(), agent)

        assert summary.skipped == 1
        assert agent.calls == []


class TestIdempotency:
    def test_same_revision_is_reviewed_once(self, provider):
        provider.add_pr(1, "abc123", [ChangedFile("/src/a.cs", ChangeType.EDIT)])
        store = RecordingStore()
        agent = StubAgent()

        cycle(provider, store, agent)
        second = cycle(provider, store, agent)

        assert len(agent.calls) == 1
        assert len(provider.posted) == 1
        assert second.skipped == 1
        assert second.reviewed == []

    def test_in_memory_store_skips_reviewed_revision_on_later_cycles(self, provider):
        provider.add_pr(1, "abc123", [ChangedFile("/src/a.cs", ChangeType.EDIT)])
        store = MemoryLedgerStore()
        agent = StubAgent()

        cycle(provider, store, agent)
        second = cycle(provider, store, agent)
        third = cycle(provider, store, agent)

        assert len(agent.calls) == 1
        assert len(provider.posted) == 1
        assert second.skipped == third.skipped == 1

    def test_new_revision_is_reviewed_again(self, provider):
        provider.add_pr(1, "abc123", [ChangedFile("/src/a.cs", ChangeType.EDIT)])
        store = RecordingStore()
        agent = StubAgent()

        cycle(provider, store, agent)
        provider.iterations[1].append(Iteration(2, "def456"))
        cycle(provider, store, agent)

        assert len(agent.calls) == 2
        assert store.ledger.reviewed_commits["Proj/api/1"] == ["abc123", "def456"]

    def test_failed_review_is_retried_next_cycle(self, provider):
        provider.add_pr(1, "abc123", [ChangedFile("/src/a.cs", ChangeType.EDIT)])
        store = RecordingStore()
        agent = StubAgent([ReviewOutcome.failure("Agent CLI exited with code 1: boom")])

        first = cycle(provider, store, agent)

        assert first.failed == ["Proj/api/1"]
        assert provider.posted == []
        assert not store.ledger.has_reviewed("Proj/api/1", "abc123")

        second = cycle(provider, store, agent)

        assert second.reviewed == ["Proj/api/1@abc123"]
        assert len(agent.calls) == 2


class TestFiltering:
    def test_only_reviewable_files_reach_the_agent(self, provider):
        files = [
            ChangedFile("/a.cs", ChangeType.EDIT),
            ChangedFile("/old.cs", ChangeType.DELETE),
            ChangedFile("/logo.png", ChangeType.ADD),
            ChangedFile("/ui/Form.Designer.cs", ChangeType.EDIT),
            ChangedFile("/web/package-lock.json", ChangeType.EDIT),
            ChangedFile("/docs/readme.md", ChangeType.EDIT),
        ]
        provider.add_pr(1, "abc", files)
        provider.contents = {f.path: "content" for f in files}
        agent = StubAgent()

        cycle(provider, RecordingStore(), agent)

        assert agent.calls == [["a.cs"]]

    def test_oversized_and_empty_files_are_not_staged(self, provider):
        files = [
            ChangedFile("/big.cs", ChangeType.EDIT),
            ChangedFile("/small.cs", ChangeType.EDIT),
            ChangedFile("/empty.cs", ChangeType.EDIT),
        ]
        provider.add_pr(1, "abc", files)
        provider.contents = {"/big.cs": "x" * 2000, "/small.cs": "y", "/empty.cs": ""}
        agent = StubAgent()

        cycle(provider, RecordingStore(), agent, make_config(max_file_size_kb=1))

        assert agent.calls == [["small.cs"]]

    def test_nothing_reviewable_marks_revision_without_agent(self, provider):
        provider.add_pr(1, "abc", [ChangedFile("/gone.cs", ChangeType.DELETE), ChangedFile("/x.png", ChangeType.ADD)])
        store = RecordingStore()
        agent = StubAgent()

        summary = cycle(provider, store, agent)

        assert agent.calls == []
        assert summary.reviewed == ["Proj/api/1@abc"]
        assert store.ledger.has_reviewed("Proj/api/1", "abc")

    def test_all_content_too_large_marks_revision_without_agent(self, provider):
        provider.add_pr(1, "abc", [ChangedFile("/big.cs", ChangeType.EDIT)])
        provider.contents = {"/big.cs": "x" * 5000}
        store = RecordingStore()
        agent = StubAgent()

        cycle(provider, store, agent, make_config(max_file_size_kb=1))

        assert agent.calls == []
        assert store.ledger.has_reviewed("Proj/api/1", "abc")


class TestErrorContainment:
    def test_repository_failure_does_not_stop_others_and_keeps_its_keys(self, provider):
        provider.add_pr(1, "abc", [ChangedFile("/src/a.cs", ChangeType.EDIT)])
        provider.pull_requests[("Proj", "web")] = ProviderError("Access denied", status_code=403)
        store = RecordingStore(Ledger(reviewed_commits={"Proj/web/9": ["old"], "Proj/api/5": ["gone"]}))
        config = make_config(
            repositories=[{"project": "Proj", "repository": "web"}, {"project": "Proj", "repository": "api"}]
        )

        summary = cycle(provider, store, StubAgent(), config)

        assert summary.repositories_failed == ["Proj/web"]
        assert summary.repositories_scanned == 1
        assert summary.removed_keys == ["Proj/api/5"]
        assert set(store.ledger.reviewed_commits) == {"Proj/web/9", "Proj/api/1"}

    def test_pr_failure_does_not_stop_other_prs_or_drop_its_key(self, provider):
        provider.add_pr(1, "abc", [ChangedFile("/src/a.cs", ChangeType.EDIT)])
        provider.add_pr(2, "def", [ChangedFile("/src/a.cs", ChangeType.EDIT)])
        provider.iterations[1] = ProviderError("Resource not found", status_code=404)
        store = RecordingStore(Ledger(reviewed_commits={"Proj/api/1": ["older"]}))

        summary = cycle(provider, store, StubAgent())

        assert summary.failed == ["Proj/api/1"]
        assert summary.reviewed == ["Proj/api/2@def"]
        assert store.ledger.reviewed_commits["Proj/api/1"] == ["older"]

    def test_closed_pull_requests_are_cleaned_up(self, provider):
        store = RecordingStore(Ledger(reviewed_commits={"Proj/api/7": ["abc"]}))

        summary = cycle(provider, store, StubAgent())

        assert summary.removed_keys == ["Proj/api/7"]
        assert store.ledger.reviewed_commits == {}


class TestShadowMode:
    def test_prints_instead_of_posting_and_does_not_save(self, provider, capsys):
        provider.add_pr(1, "abc", [ChangedFile("/src/a.cs", ChangeType.EDIT)])
        store = RecordingStore()

        summary = cycle(provider, store, StubAgent([review_for("/src/a.cs", 2)]), shadow=True)

        assert provider.posted == []
        assert store.saves == 0
        assert summary.comments_posted == 0
        assert "Shadow review of PR #1" in capsys.readouterr().out


class TestCancellation:
    def test_cancellation_propagates_and_keeps_finished_work(self, provider):
        provider.add_pr(1, "abc", [ChangedFile("/src/a.cs", ChangeType.EDIT)])
        provider.add_pr(2, "def", [ChangedFile("/src/a.cs", ChangeType.EDIT)])
        store = RecordingStore(Ledger(reviewed_commits={"Proj/api/7": ["closed"]}))
        agent = StubAgent([review_for("/src/a.cs", 1), ReviewCancelled("stop")])

        with pytest.raises(ReviewCancelled):
            cycle(provider, store, agent)

        assert store.ledger.has_reviewed("Proj/api/1", "abc")
        assert not store.ledger.has_reviewed("Proj/api/2", "def")
        # No cleanup on an interrupted cycle.
        assert "Proj/api/7" in store.ledger.reviewed_commits

    def test_stop_signal_before_a_repository(self, provider):
        provider.add_pr(1, "abc", [ChangedFile("/src/a.cs", ChangeType.EDIT)])
        stop = threading.Event()
        stop.set()
        agent = StubAgent()

        with pytest.raises(ReviewCancelled):
            cycle(provider, RecordingStore(), agent, stop_event=stop)
        assert agent.calls == []


# ---------------------------------------------------------------------------
# Comment threads
# ---------------------------------------------------------------------------


class TestCommentThreads:
    def test_truncation_notice_precedes_capped_comments(self):
        threads = build_comment_threads(review_for("a.cs", 7), max_comments_per_file=5)

        assert len(threads) == 6
        assert threads[0].line_number is None
        assert threads[0].text == (
            "This file has 7 suggestions. Showing top 5. "
            "Consider reviewing the full file for additional improvements."
        )
        assert [t.line_number for t in threads[1:]] == [1, 2, 3, 4, 5]

    def test_summary_mode_posts_one_thread(self):
        threads = build_comment_threads(review_for("a.cs", 3, summary="Looks fine overall"), 5)

        assert len(threads) == 1
        assert threads[0].text == "Looks fine overall"
        assert threads[0].line_number is None

    def test_post_review_comments_applies_prefix(self):
        provider = FakeProvider()
        pr = PullRequest(id=4, title="t", project="P", repository="r", repository_id="rid")
        outcome = ReviewOutcome(
            files=[
                FileReviewResult(
                    file_path="a.cs",
                    comments=[ReviewComment("a.cs", "Possible null dereference", Severity.ISSUE, 10)],
                ),
                FileReviewResult(file_path="b.cs", summary="Fine"),
            ],
            success=True,
        )

        count = post_review_comments(provider, pr, outcome, max_comments_per_file=5, comment_prefix="[Bot]")

        assert count == 2
        assert provider.posted == [
            (4, "a.cs", 10, "[Bot] **[ISSUE]** Possible null dereference"),
            (4, "b.cs", None, "[Bot] Fine"),
        ]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestFilters:
    def test_filter_changed_files(self):
        patterns = compile_exclude_patterns(["*.min.js", "generated/**"])
        changes = [
            ChangedFile("/app.js", ChangeType.EDIT),
            ChangedFile("/app.min.js", ChangeType.EDIT),
            ChangedFile("generated/deep/x.cs", ChangeType.ADD),
            ChangedFile("/removed.py", ChangeType.DELETE),
            ChangedFile("/notes.txt", ChangeType.EDIT),
        ]

        assert [f.path for f in filter_changed_files(changes, patterns)] == ["/app.js"]

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("edit", ChangeType.EDIT),
            ("Edit, Rename", ChangeType.RENAME),
            ("delete, sourceRename", ChangeType.DELETE),
            ("undelete", ChangeType.OTHER),
            ("undelete, edit", ChangeType.EDIT),
            ("", ChangeType.OTHER),
            (None, ChangeType.OTHER),
        ],
    )
    def test_change_type_flags_match_exactly(self, raw, expected):
        assert ChangeType.parse(raw) == expected

    def test_restored_file_is_reviewed(self):
        changes = [ChangedFile("/restored.cs", ChangeType.parse("undelete"))]

        assert [f.path for f in filter_changed_files(changes, [])] == ["/restored.cs"]

    def test_size_limit_counts_utf8_bytes(self):
        # 600 three-byte characters: 1800 bytes but only 600 characters.
        wide = ChangedFile("a.cs", content="€" * 600)
        narrow = ChangedFile("b.cs", content="e" * 600)

        kept = drop_unreviewable_content([wide, narrow], max_file_size_kb=1)

        assert [f.path for f in kept] == ["b.cs"]


class TestReviewFiles:
    def test_empty_workspace_is_success_without_agent(self):
        agent = StubAgent()

        outcome = review_files([ChangedFile("a.cs", content="")], agent, "x")

        assert outcome.success is True
        assert agent.calls == []

    def test_unexpected_error_becomes_failure(self):
        agent = StubAgent([RuntimeError("exploded")])

        outcome = review_files([ChangedFile("a.cs", content="x")], agent, "x")

        assert outcome.success is False
        assert outcome.error == "exploded"
        assert not agent.workspaces[0].exists()

    def test_cancellation_is_not_converted(self):
        agent = StubAgent([ReviewCancelled("stop")])

        with pytest.raises(ReviewCancelled):
            review_files([ChangedFile("a.cs", content="x")], agent, "x")
        assert not agent.workspaces[0].exists()


class TestPollingLoop:
    def test_runs_until_stopped(self, mocker):
        stop = threading.Event()
        mock_cycle = mocker.patch("revloop_core.reviewer.run_cycle", side_effect=lambda *a, **k: stop.set())

        run_polling_loop(FakeProvider(), RecordingStore(), StubAgent(), make_config(), "x", stop)

        mock_cycle.assert_called_once()

    def test_cycle_errors_do_not_end_the_loop(self, mocker):
        stop = threading.Event()
        calls = []

        def fake_cycle(*args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("ledger disk full")
            stop.set()

        mocker.patch("revloop_core.reviewer.run_cycle", side_effect=fake_cycle)

        run_polling_loop(FakeProvider(), RecordingStore(), StubAgent(), make_config(), "x", stop)

        assert len(calls) == 2

    def test_cancellation_ends_the_loop(self, mocker):
        stop = threading.Event()
        mock_cycle = mocker.patch("revloop_core.reviewer.run_cycle", side_effect=ReviewCancelled("stop"))

        run_polling_loop(FakeProvider(), RecordingStore(), StubAgent(), make_config(), "x", stop)

        mock_cycle.assert_called_once()


class TestGetProvider:
    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            get_provider({"provider": "gitlab"})

    def test_azure_devops(self):
        from revloop_core.providers.azure_devops import AzureDevOpsProvider

        provider = get_provider(
            {"provider": "azure_devops", "organization_url": "https://dev.azure.com/org", "azure_devops_token": "pat"}
        )
        try:
            assert isinstance(provider, AzureDevOpsProvider)
        finally:
            provider.close()

    def test_github(self):
        from revloop_core.providers.github import GitHubProvider

        provider = get_provider({"provider": "github", "github_token": "tok"})
        assert isinstance(provider, GitHubProvider)
