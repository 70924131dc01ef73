"""GitHub provider over PyGithub.

GitHub has no iteration concept: every commit on the pull request counts as
one iteration, numbered from 1 in push order. Changed files are always the
pull request's full file list.
"""

from __future__ import annotations

import logging

import requests
from github import Auth, Github, GithubException

from revloop_core.exceptions import ProviderError
from revloop_core.models import ChangedFile, ChangeType, Iteration, PullRequest
from revloop_core.providers.base import BaseProvider

logger = logging.getLogger(__name__)

_STATUS_TO_CHANGE_TYPE = {
    "added": ChangeType.ADD,
    "modified": ChangeType.EDIT,
    "changed": ChangeType.EDIT,
    "removed": ChangeType.DELETE,
    "renamed": ChangeType.RENAME,
}

_ERROR_GUIDANCE = {
    401: "Authentication failed. Check that your GitHub token is valid.",
    403: "Access denied. Your token may lack the 'repo' scope or hit a rate limit.",
    404: "Resource not found. Verify the owner (project) and repository names are correct.",
}


class GitHubProvider(BaseProvider):
    """Repositories are configured as ``project: <owner>``, ``repository: <name>``."""

    def __init__(self, token: str, client: Github | None = None):
        self._gh = client if client is not None else Github(auth=Auth.Token(token))
        self._repos: dict = {}

    def list_open_pull_requests(self, project: str, repository: str) -> list[PullRequest]:
        try:
            repo = self._repo(f"{project}/{repository}")
            pulls = list(repo.get_pulls(state="open"))
        except GithubException as e:
            raise _provider_error(e, f"listing pull requests of {project}/{repository}") from e

        return [
            PullRequest(
                id=pr.number,
                title=pr.title or "",
                project=project,
                repository=repository,
                repository_id=repo.full_name,
                source_branch=pr.head.ref,
                target_branch=pr.base.ref,
                last_merge_commit=pr.merge_commit_sha or "",
            )
            for pr in pulls
        ]

    def list_iterations(self, project: str, repository_id: str, pull_request_id: int) -> list[Iteration]:
        try:
            commits = list(self._repo(repository_id).get_pull(pull_request_id).get_commits())
        except GithubException as e:
            raise _provider_error(e, f"listing commits of {repository_id}#{pull_request_id}") from e
        return [Iteration(id=i, source_revision=c.sha) for i, c in enumerate(commits, 1)]

    def list_changed_files(
        self, project: str, repository_id: str, pull_request_id: int, iteration_id: int
    ) -> list[ChangedFile]:
        try:
            files = list(self._repo(repository_id).get_pull(pull_request_id).get_files())
        except GithubException as e:
            raise _provider_error(e, f"listing files of {repository_id}#{pull_request_id}") from e
        return [
            ChangedFile(path=f.filename, change_type=_STATUS_TO_CHANGE_TYPE.get(f.status, ChangeType.OTHER))
            for f in files
        ]

    def get_file_content(self, project: str, repository_id: str, path: str, revision: str) -> str:
        try:
            contents = self._repo(repository_id).get_contents(path.lstrip("/"), ref=revision)
        except GithubException as e:
            logger.warning("Failed to get file content for %s at commit %s: %s", path, revision, e)
            return ""
        if isinstance(contents, list):
            # A directory, not a file.
            return ""
        return contents.decoded_content.decode("utf-8", errors="replace")

    def post_comment(
        self,
        project: str,
        repository_id: str,
        pull_request_id: int,
        file_path: str,
        line_number: int | None,
        text: str,
    ) -> None:
        path = file_path.lstrip("/")
        try:
            repo = self._repo(repository_id)
            pull = repo.get_pull(pull_request_id)
            if path and line_number:
                commit = repo.get_commit(pull.head.sha)
                pull.create_review_comment(text, commit, path, line=line_number)
            elif path:
                pull.create_issue_comment(f"`{path}`\n\n{text}")
            else:
                pull.create_issue_comment(text)
        except GithubException as e:
            logger.warning("Failed to post comment on %s#%d: %s - %s", repository_id, pull_request_id, e.status, e.data)
        except requests.RequestException as e:
            logger.warning("Failed to post comment on %s#%d: %s", repository_id, pull_request_id, e)

    def close(self) -> None:
        self._gh.close()

    def _repo(self, full_name: str):
        if full_name not in self._repos:
            self._repos[full_name] = self._gh.get_repo(full_name)
        return self._repos[full_name]


def _provider_error(e: GithubException, action: str) -> ProviderError:
    guidance = _ERROR_GUIDANCE.get(e.status, f"GitHub API request failed with status {e.status}")
    logger.error("GitHub API error while %s: %s", action, guidance)
    return ProviderError(guidance, status_code=e.status)
