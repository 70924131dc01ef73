"""Review data models shared by the extractor, the agent invoker and the cycle orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ChangeType(str, Enum):
    ADD = "add"
    EDIT = "edit"
    DELETE = "delete"
    RENAME = "rename"
    OTHER = "other"

    @classmethod
    def parse(cls, raw: str | None) -> ChangeType:
        """Map a provider change-type string onto the enum.

        Providers report compound values such as ``"edit, rename"``. Each
        comma-separated flag is matched exactly and a ``delete`` flag wins, so
        ``"undelete"`` (a restored file) is not a deletion.
        """
        flags = {token.strip().lower() for token in (raw or "").split(",")}
        for candidate in (cls.DELETE, cls.ADD, cls.RENAME, cls.EDIT):
            if candidate.value in flags:
                return candidate
        return cls.OTHER


class Severity(str, Enum):
    SUGGESTION = "suggestion"
    WARNING = "warning"
    ISSUE = "issue"

    @classmethod
    def parse(cls, raw) -> Severity:
        value = str(raw or "").strip().lower()
        for candidate in cls:
            if candidate.value == value:
                return candidate
        return cls.SUGGESTION


@dataclass
class RepositoryRef:
    project: str
    repository: str

    def __str__(self) -> str:
        return f"{self.project}/{self.repository}"


@dataclass
class PullRequest:
    id: int
    title: str
    project: str
    repository: str
    repository_id: str
    source_branch: str = ""
    target_branch: str = ""
    last_merge_commit: str = ""


@dataclass
class Iteration:
    id: int
    source_revision: str


@dataclass
class ChangedFile:
    """A file touched by a pull request revision.

    ``content`` is filled in lazily by the orchestrator; it stays empty until
    fetched and may legitimately remain empty (binary or missing files).
    """

    path: str
    change_type: ChangeType = ChangeType.EDIT
    content: str = ""


@dataclass
class ReviewComment:
    file_path: str
    text: str
    severity: Severity = Severity.SUGGESTION
    line_number: int | None = None


@dataclass
class FileReviewResult:
    file_path: str
    comments: list[ReviewComment] = field(default_factory=list)
    summary: str | None = None

    @property
    def in_summary_mode(self) -> bool:
        return bool(self.summary)


@dataclass
class ReviewOutcome:
    """Terminal artifact of one agent invocation attempt."""

    files: list[FileReviewResult] = field(default_factory=list)
    success: bool = False
    error: str | None = None
    overall_summary: str | None = None

    @property
    def total_comments(self) -> int:
        return sum(len(f.comments) for f in self.files)

    @classmethod
    def failure(cls, error: str) -> ReviewOutcome:
        return cls(files=[], success=False, error=error)

    @classmethod
    def empty(cls, summary: str | None = None) -> ReviewOutcome:
        return cls(files=[], success=True, overall_summary=summary)
