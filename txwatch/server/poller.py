"""Chain height poller: drives one indexing pass per new block height."""

import asyncio
import time
from typing import List, Optional

from txwatch.lib import util
from txwatch.server.block_processor import BlockProcessor, RetrievalError
from txwatch.server.daemon import Daemon, DaemonError
from txwatch.server.metrics import MetricNames, MetricsCollector


class Poller:
    """
    Polls the daemon height at a fixed cadence.

    The poller is the only writer of ``height`` (the last confirmed height)
    and the only caller of the block processor, so indexing passes never
    run concurrently.  The height is advanced before indexing: a block
    whose indexing fails is skipped, not retried, so one bad height cannot
    stall the engine.
    """

    def __init__(self, daemon: Daemon, processor: BlockProcessor, *,
                 interval: float = 1.0, max_catch_up: int = 0,
                 metrics: Optional[MetricsCollector] = None):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.daemon = daemon
        self.processor = processor
        self.interval = interval
        self.max_catch_up = max_catch_up
        self.metrics = metrics
        self.height: Optional[int] = None
        self._stop_event = asyncio.Event()

    async def reset_height(self) -> int:
        """Fetch the starting height.  DaemonError propagates to the caller;
        without a baseline the poller cannot run."""
        self.height = await self.daemon.height()
        self._set_height_gauge()
        self.logger.info(f'starting at daemon height {self.height:,d}')
        return self.height

    async def main_loop(self):
        """Loop until stop() polling for new blocks.

        Ticks never overlap: the next tick is scheduled only after the
        current one has finished, and a stop request takes effect between
        ticks.
        """
        if self.height is None:
            await self.reset_height()
        while not self._stop_event.is_set():
            start = time.monotonic()
            try:
                await self.tick()
            except asyncio.CancelledError:
                self.logger.info('cancelled; poller stopping')
                raise
            except Exception as e:
                self.logger.exception(f'unexpected exception in poller: {e}')
            delay = max(0.0, self.interval - (time.monotonic() - start))
            try:
                await asyncio.wait_for(self._stop_event.wait(), delay)
            except asyncio.TimeoutError:
                pass
        self.logger.info('poller stopped')

    def stop(self):
        """Ask the main loop to exit after the current tick."""
        self._stop_event.set()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    async def tick(self) -> List[int]:
        """Run one polling step.  Returns the heights that were indexed
        successfully."""
        try:
            daemon_height = await self.daemon.height()
        except DaemonError as e:
            self.logger.warning(f'cannot get daemon height: {e}')
            if self.metrics:
                self.metrics.inc_counter(MetricNames.POLL_ERRORS)
            return []

        if self.height is not None and daemon_height <= self.height:
            return []

        heights = self._heights_to_index(daemon_height)
        self.height = daemon_height
        self._set_height_gauge()
        self.logger.info(f'new block height {daemon_height:,d}')

        indexed = []
        for height in heights:
            try:
                await self.processor.parse_transactions(height)
            except RetrievalError as e:
                self.logger.warning(f'skipping block: {e}')
                self._count_index_error()
            except Exception as e:
                self.logger.exception(f'skipping block {height:,d}: unexpected error: {e}')
                self._count_index_error()
            else:
                indexed.append(height)
        return indexed

    def _heights_to_index(self, daemon_height: int) -> List[int]:
        if self.height is None or not self.max_catch_up:
            return [daemon_height]
        first = max(self.height + 1, daemon_height - self.max_catch_up)
        return list(range(first, daemon_height + 1))

    def _count_index_error(self):
        if self.metrics:
            self.metrics.inc_counter(MetricNames.INDEX_ERRORS)

    def _set_height_gauge(self):
        if self.metrics:
            self.metrics.set_gauge(MetricNames.BLOCK_HEIGHT, self.height)
