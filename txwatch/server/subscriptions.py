"""
Address subscriptions for TxWatch.

The subscription set is written by API callers (subscribe) and read by the
block processor on every indexing pass.  It only ever grows.
"""

from contextlib import contextmanager
from typing import Dict, Iterable, List, Set

from txwatch.lib import util
from txwatch.lib.tx import normalize_address
from txwatch.lib.util import ReadWriteLock


class SubscriptionSet:
    """
    The set of addresses whose transactions are indexed.

    Addresses are stored normalized, so subscribing with any letter case
    refers to the same member.  Guarded by its own readers-writer lock.
    """

    def __init__(self, addresses: Iterable[str] = ()):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.lock = ReadWriteLock()
        self._addresses: Set[str] = set()
        for address in addresses:
            self.subscribe(address)

    def subscribe(self, address: str) -> bool:
        """Subscribe to an address's inbound/outbound transactions.

        Idempotent.  Returns True if the address was not already subscribed.
        """
        address = normalize_address(address)
        with self.lock.write_locked():
            if address in self._addresses:
                return False
            self._addresses.add(address)
        self.logger.info(f'subscribed {address}')
        return True

    def contains(self, address: str) -> bool:
        if address is None:
            return False
        address = normalize_address(address)
        with self.lock.read_locked():
            return address in self._addresses

    __contains__ = contains

    @contextmanager
    def read_view(self):
        """Hold the read lock and yield a membership test that skips
        per-call locking.  Used by the block processor for a whole block."""
        with self.lock.read_locked():
            members = self._addresses
            yield lambda address: address is not None and address in members

    def addresses(self) -> List[str]:
        """A sorted snapshot of the subscribed addresses."""
        with self.lock.read_locked():
            return sorted(self._addresses)

    def __len__(self):
        with self.lock.read_locked():
            return len(self._addresses)

    def stats(self) -> Dict[str, int]:
        return {'subscribed_addresses': len(self)}
