"""Disposable on-disk workspaces for agent reviews.

The agent CLI reviews a directory, not a diff, so every review stages the
changed files into a fresh temporary tree. One workspace per invocation; it
is always removed afterwards.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator

from revloop_core.models import ChangedFile

logger = logging.getLogger(__name__)

_WORKSPACE_PREFIX = "revloop-"


@dataclass
class Workspace:
    path: Path
    written: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """True when no file had content to stage: nothing to review."""
        return not self.written


def materialize(files: Iterable[ChangedFile], parent: str | Path | None = None) -> Workspace:
    """Write every file with content into a new, uniquely named directory.

    Relative paths are preserved; leading separators are stripped so
    provider paths such as ``/src/app.cs`` land inside the workspace. Files
    with empty content are skipped rather than written as empty files.
    """
    root = Path(tempfile.mkdtemp(prefix=_WORKSPACE_PREFIX, dir=parent)).resolve()
    workspace = Workspace(path=root)

    try:
        for changed in files:
            if not changed.content:
                continue
            relative = changed.path.lstrip("/\\")
            if not relative:
                continue
            target = (root / relative).resolve()
            if not target.is_relative_to(root):
                logger.warning("Skipping %s: path escapes the review workspace", changed.path)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(changed.content, encoding="utf-8")
            workspace.written.append(relative)
    except Exception:
        dispose(workspace)
        raise

    logger.debug("Staged %d file(s) in %s", len(workspace.written), root)
    return workspace


def dispose(workspace: Workspace) -> None:
    """Recursively remove the workspace. Failures are logged, never raised."""
    try:
        if workspace.path.exists():
            shutil.rmtree(workspace.path)
            logger.debug("Cleaned up workspace: %s", workspace.path)
    except OSError as e:
        logger.warning("Failed to clean up workspace %s: %s", workspace.path, e)


@contextmanager
def staged_workspace(files: Iterable[ChangedFile], parent: str | Path | None = None) -> Iterator[Workspace]:
    workspace = materialize(files, parent=parent)
    try:
        yield workspace
    finally:
        dispose(workspace)
