"""In-process ledger store, selected with ``store: memory``.

The ledger lives for the life of the process: revisions reviewed by one
cycle are skipped by every later cycle of the same ``revloop run``, but a
restart starts from an empty ledger and reviews every open pull request
once more.
"""

from __future__ import annotations

import copy
import threading

from revloop_store.base import BaseLedgerStore
from revloop_store.models import Ledger


class MemoryLedgerStore(BaseLedgerStore):
    """Keeps the last saved ledger in memory.

    load() hands out a copy, so a cycle that is never saved (shadow mode)
    leaves the stored state untouched.
    """

    def __init__(self):
        self._ledger = Ledger()
        self._lock = threading.Lock()

    def load(self) -> Ledger:
        with self._lock:
            return copy.deepcopy(self._ledger)

    def save(self, ledger: Ledger) -> None:
        with self._lock:
            self._ledger = copy.deepcopy(ledger)
