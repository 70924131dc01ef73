"""Pull-request source provider interface.

The review cycle depends on BaseProvider only, so hosting backends (Azure
DevOps, GitHub) are swappable without touching the orchestrator.

Error contract:
  - listing calls raise ProviderError; the cycle abandons that repository
    for the current cycle and moves on
  - get_file_content returns "" when a file cannot be fetched
  - post_comment is fire-and-forget: failures are logged, never raised
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from revloop_core.models import ChangedFile, Iteration, PullRequest


class BaseProvider(ABC):
    @abstractmethod
    def list_open_pull_requests(self, project: str, repository: str) -> list[PullRequest]:
        """Return the active pull requests of a repository."""

    @abstractmethod
    def list_iterations(self, project: str, repository_id: str, pull_request_id: int) -> list[Iteration]:
        """Return every iteration (pushed update) of a pull request."""

    @abstractmethod
    def list_changed_files(
        self, project: str, repository_id: str, pull_request_id: int, iteration_id: int
    ) -> list[ChangedFile]:
        """Return changed-file metadata for an iteration. Content is left empty."""

    @abstractmethod
    def get_file_content(self, project: str, repository_id: str, path: str, revision: str) -> str:
        """Return a file's text at ``revision``, or "" if it cannot be fetched."""

    @abstractmethod
    def post_comment(
        self,
        project: str,
        repository_id: str,
        pull_request_id: int,
        file_path: str,
        line_number: int | None,
        text: str,
    ) -> None:
        """Open one comment thread, anchored to a file (and line) when given."""

    def close(self) -> None:
        """Release any held resources (HTTP connections).

        Default is a no-op so callers can always call close() safely.
        """
