"""Cache of recorded transactions keyed by the requested account names."""

from collections.abc import Iterable
from typing import Optional
import logging
import threading

from ..models.recorded_transaction import RecordedTransaction

logger = logging.getLogger(__name__)


class TransactionCache:
    """
    Last fetched transaction list per account-name set.

    Any write to the ledger clears every entry and bumps the generation. A
    list fetched before the bump is never stored, so a read racing a write
    can't bring back the pre-write journal. Entries are copied on the way in
    and out; callers may change what they get.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, list[RecordedTransaction]] = {}
        self._generation = 0

    @staticmethod
    def key_for(account_names: Iterable[str]) -> str:
        return "|".join(sorted(set(account_names)))

    @property
    def generation(self) -> int:
        """Number of invalidations so far; read it before fetching."""
        with self._lock:
            return self._generation

    def get(self, account_names: Iterable[str]) -> Optional[list[RecordedTransaction]]:
        key = self.key_for(account_names)
        with self._lock:
            cached = self._entries.get(key)
        if cached is None:
            return None
        logger.debug(f"Cache hit for {key}")
        return [t.model_copy(deep=True) for t in cached]

    def put(
        self,
        account_names: Iterable[str],
        transactions: list[RecordedTransaction],
        generation: Optional[int] = None,
    ) -> bool:
        """
        Store a fetched list.

        Args:
            account_names: Account names the list was fetched for
            transactions: Fetched transactions
            generation: ``generation`` read before the fetch; the list is
                dropped if the cache was invalidated since

        Returns:
            True if the list was stored
        """
        key = self.key_for(account_names)
        entries = [t.model_copy(deep=True) for t in transactions]
        with self._lock:
            if generation is not None and generation != self._generation:
                logger.debug(f"Dropping stale transactions for {key}")
                return False
            self._entries[key] = entries
            return True

    def invalidate(self) -> None:
        with self._lock:
            self._generation += 1
            dropped = len(self._entries)
            self._entries.clear()
        if dropped:
            logger.debug(f"Invalidated {dropped} cached transaction lists")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
