"""JsonFileLedgerStore: the ledger as one JSON document on local disk.

Data format:
  {"reviewed_commits": {"<project>/<repo>/<pr id>": ["<sha>", ...]},
   "last_updated": "<ISO-8601 UTC>"}

Writes go to a temporary file in the same directory which then replaces the
document in one os.replace() call. A crash at any point leaves either the
previous complete document or the new one on disk, never a partial write.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from revloop_store.base import BaseLedgerStore
from revloop_store.models import Ledger

logger = logging.getLogger(__name__)


class JsonFileLedgerStore(BaseLedgerStore):
    """Stores the ledger in a JSON file, ``review-state.json`` by default.

    Configure via .revloop.yml: ``store_path: /var/lib/revloop/state.json``.
    A lock serializes load and save; it is held only for the file I/O.
    """

    def __init__(self, path: str | Path = "review-state.json"):
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Ledger:
        with self._lock:
            if not self._path.exists():
                logger.info("Ledger file %s not found, starting with an empty ledger", self._path)
                return Ledger()
            try:
                data = json.loads(self._path.read_text(encoding="utf-8"))
                ledger = Ledger.from_dict(data)
            except (json.JSONDecodeError, UnicodeDecodeError, ValueError) as e:
                logger.warning("Failed to parse ledger file %s, starting fresh: %s", self._path, e)
                return Ledger()
            except OSError as e:
                logger.error("Error reading ledger file %s, starting fresh: %s", self._path, e)
                return Ledger()

        logger.info("Loaded ledger with %d tracked pull request(s)", len(ledger.reviewed_commits))
        return ledger

    def save(self, ledger: Ledger) -> None:
        ledger.touch()
        payload = json.dumps(ledger.to_dict(), indent=2)

        with self._lock:
            directory = self._path.parent
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", suffix=".tmp", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                    tmp.write(payload)
                    tmp.flush()
                    os.fsync(tmp.fileno())
                os.replace(tmp_name, self._path)
            except Exception:
                logger.error("Failed to save ledger file %s", self._path)
                try:
                    os.unlink(tmp_name)
                except FileNotFoundError:
                    pass
                raise

        logger.debug("Saved ledger with %d tracked pull request(s)", len(ledger.reviewed_commits))
