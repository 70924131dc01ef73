"""Dedup ledger model.

revloop_store has no dependency on revloop_core, so the store layer can be
used independently. The review cycle works with Ledger in memory and never
knows how a backend persists it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def ledger_key(project: str, repository: str, pull_request_id: int) -> str:
    return f"{project}/{repository}/{pull_request_id}"


@dataclass
class Ledger:
    """Which revisions of which pull requests have already been reviewed.

    Keys are ``"{project}/{repository}/{pullRequestId}"``; values are the
    reviewed revision ids in the order they were marked. A revision is only
    ever removed by cleanup() dropping its whole key.
    """

    reviewed_commits: dict[str, list[str]] = field(default_factory=dict)
    last_updated: str = field(default_factory=_utcnow)  # ISO-8601 UTC timestamp

    def has_reviewed(self, key: str, revision: str) -> bool:
        return revision in self.reviewed_commits.get(key, ())

    def mark_reviewed(self, key: str, revision: str) -> None:
        revisions = self.reviewed_commits.setdefault(key, [])
        if revision not in revisions:
            revisions.append(revision)
        self.touch()

    def cleanup(self, active_keys: Iterable[str]) -> list[str]:
        """Drop every key not in ``active_keys`` and return the removed keys."""
        active = set(active_keys)
        removed = [k for k in self.reviewed_commits if k not in active]
        for key in removed:
            del self.reviewed_commits[key]
        if removed:
            self.touch()
        return removed

    def keys_for_repository(self, project: str, repository: str) -> list[str]:
        prefix = f"{project}/{repository}/"
        return [k for k in self.reviewed_commits if k.startswith(prefix)]

    def touch(self) -> None:
        self.last_updated = _utcnow()

    def to_dict(self) -> dict:
        return {
            "reviewed_commits": {k: list(v) for k, v in self.reviewed_commits.items()},
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Ledger:
        """Build a ledger from a loaded document.

        Raises ValueError if the document itself is not ledger-shaped; single
        malformed entries are skipped.
        """
        if not isinstance(d, dict):
            raise ValueError("ledger document must be a JSON object")
        raw = d.get("reviewed_commits", {})
        if not isinstance(raw, dict):
            raise ValueError("'reviewed_commits' must be an object")

        reviewed: dict[str, list[str]] = {}
        for key, revisions in raw.items():
            if not isinstance(revisions, list):
                continue
            reviewed[str(key)] = [r for r in revisions if isinstance(r, str) and r]

        last_updated = d.get("last_updated")
        return cls(
            reviewed_commits=reviewed,
            last_updated=last_updated if isinstance(last_updated, str) else _utcnow(),
        )
