"""
The TxWatch engine.

A Controller is created once at process start and handed to whatever
exposes it (the REST API, tests).  It owns the daemon connection, the
subscription set, the transaction index and the poller task.
"""

import asyncio
from typing import Any, Dict, List, Optional

from txwatch import version
from txwatch.lib import util
from txwatch.lib.tx import Block, Transaction
from txwatch.server.block_processor import BlockProcessor
from txwatch.server.daemon import Daemon
from txwatch.server.metrics import MetricNames, MetricsCollector
from txwatch.server.poller import Poller
from txwatch.server.subscriptions import SubscriptionSet
from txwatch.server.tx_index import TransactionIndex


class Controller:
    """Manages the engine's components and the background poller."""

    def __init__(self, env, daemon: Optional[Daemon] = None):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.env = env
        self.metrics = MetricsCollector(env)
        if daemon is None:
            daemon = Daemon(env.daemon_url,
                            timeout=getattr(env, 'daemon_timeout', 10.0))
        self.daemon = daemon
        self.subscriptions = SubscriptionSet()
        self.tx_index = TransactionIndex()
        self.bp = BlockProcessor(daemon, self.subscriptions, self.tx_index,
                                 metrics=self.metrics)
        self.poller = Poller(daemon, self.bp,
                             interval=getattr(env, 'poll_interval', 1.0),
                             max_catch_up=getattr(env, 'max_catch_up_blocks', 0),
                             metrics=self.metrics)
        self._poll_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def start(self):
        """Fetch the starting height and launch the poller.

        A daemon failure here is fatal and propagates: without a starting
        height there is nothing meaningful to poll from.
        """
        if self._poll_task is not None:
            raise RuntimeError('controller already started')
        self.logger.info(f'{version} starting')
        for address in getattr(self.env, 'subscribe_addresses', ()):
            self.subscribe(address)
        await self.daemon.open()
        try:
            await self.poller.reset_height()
        except Exception:
            await self.daemon.close()
            raise
        self._poll_task = asyncio.create_task(self.poller.main_loop())

    async def stop(self):
        """Stop the poller after its current tick and close the daemon."""
        if self._poll_task is not None:
            self.poller.stop()
            try:
                await self._poll_task
            finally:
                self._poll_task = None
        await self.daemon.close()
        self.logger.info('stopped')

    # ========================================================================
    # API
    # ========================================================================

    def subscribe(self, address: str) -> bool:
        """Subscribe an address's inbound/outbound transactions.

        Idempotent; returns True if the address is newly subscribed.
        """
        created = self.subscriptions.subscribe(address)
        if created:
            self.metrics.set_gauge(MetricNames.SUBSCRIPTIONS_ACTIVE,
                                   len(self.subscriptions))
        return created

    def get_transactions(self, address: str, offset: int = 0,
                         limit: Optional[int] = None) -> List[Transaction]:
        """Get an address's recorded transactions, oldest first.

        Unknown addresses have no transactions; this is never an error.
        """
        return self.tx_index.read(address, offset=offset, limit=limit)

    async def get_current_block(self) -> Block:
        """Query the daemon for its current block.  Independent of the
        indexing state; DaemonError propagates."""
        return await self.daemon.current_block()

    def stats(self) -> Dict[str, Any]:
        stats = {
            'version': version,
            'running': self.running,
            'height': self.poller.height,
            'daemon_height': self.daemon.cached_height(),
        }
        stats.update(self.subscriptions.stats())
        stats.update(self.tx_index.stats())
        return stats
