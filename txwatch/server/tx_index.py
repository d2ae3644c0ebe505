"""
Per-address transaction index for TxWatch.

Maps each normalized address to the ordered list of transactions in which
it appeared as sender or recipient.  Only the block processor writes;
API callers read.  Nothing is ever removed.
"""

from collections import defaultdict
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Tuple

from txwatch.lib import util
from txwatch.lib.tx import Transaction, normalize_address
from txwatch.lib.util import ReadWriteLock


class TransactionIndex:
    """
    Address -> append-only transaction history.

    Entries are kept in discovery order, which is block height order and,
    within a block, on-chain order.  A transaction between two subscribed
    addresses is stored once in each address's history.
    """

    def __init__(self):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.lock = ReadWriteLock()
        self._history: Dict[str, List[Transaction]] = defaultdict(list)
        self._appends = 0

    def append(self, address: str, tx: Transaction):
        """Append a transaction to an address's history."""
        address = normalize_address(address)
        with self.lock.write_locked():
            self._append(address, tx)

    def _append(self, address: str, tx: Transaction):
        self._history[address].append(tx)
        self._appends += 1

    @contextmanager
    def writer(self):
        """Hold the write lock for a batch of appends.

        Yields an append function taking an already normalized address.
        """
        with self.lock.write_locked():
            yield self._append

    def append_many(self, entries: Iterable[Tuple[str, Transaction]]) -> int:
        """Append (address, tx) pairs under a single write lock."""
        count = 0
        with self.writer() as append:
            for address, tx in entries:
                append(normalize_address(address), tx)
                count += 1
        return count

    def read(self, address: str, offset: int = 0,
             limit: Optional[int] = None) -> List[Transaction]:
        """Return a copy of an address's history.

        An address with no recorded activity has an empty history; this
        is never an error.
        """
        address = normalize_address(address)
        with self.lock.read_locked():
            history = self._history.get(address)
            if not history:
                return []
            end = None if limit is None else offset + limit
            return history[offset:end]

    def count(self, address: str) -> int:
        address = normalize_address(address)
        with self.lock.read_locked():
            return len(self._history.get(address, ()))

    def stats(self) -> Dict[str, int]:
        with self.lock.read_locked():
            return {
                'indexed_addresses': len(self._history),
                'indexed_entries': self._appends,
            }
