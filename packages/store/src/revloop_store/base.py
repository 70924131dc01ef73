"""Abstract ledger store interface.

Any storage backend for the dedup ledger implements this interface. The
review cycle depends on BaseLedgerStore, not on a concrete backend, so
backends are swappable without touching core code.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from revloop_store.models import Ledger


class BaseLedgerStore(ABC):
    """Pluggable persistence for the dedup ledger.

    The ledger is loaded once per cycle, mutated in memory and saved once at
    cycle end.
    """

    @abstractmethod
    def load(self) -> Ledger:
        """Return the persisted ledger.

        Returns an empty ledger if nothing usable is stored; never raises.
        """

    @abstractmethod
    def save(self, ledger: Ledger) -> None:
        """Persist the ledger so readers see either the old or the new state."""

    def close(self) -> None:
        """Release any resources held by the store.

        Optional: default is a no-op so callers can always call close() safely.
        """
