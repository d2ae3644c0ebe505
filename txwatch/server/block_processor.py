"""Block indexer: routes a block's transactions into per-address history."""

import time
from typing import Optional

from txwatch.lib import util
from txwatch.lib.tx import Block
from txwatch.server.daemon import Daemon, DaemonError
from txwatch.server.metrics import MetricNames, MetricsCollector
from txwatch.server.subscriptions import SubscriptionSet
from txwatch.server.tx_index import TransactionIndex


class RetrievalError(Exception):
    """Raised when a block could not be fetched for indexing."""

    def __init__(self, height: int, message: str):
        super().__init__(f'cannot retrieve block {height:,d}: {message}')
        self.height = height


class BlockProcessor:
    """
    Indexes one block at a time.

    The processor is the only writer of the transaction index.  For each
    transaction in block order, the sender's history receives it if the
    sender is subscribed, and the recipient's history receives it if the
    recipient is subscribed; the two checks are independent.  Transactions
    touching no subscribed address are dropped.
    """

    def __init__(self, daemon: Daemon, subscriptions: SubscriptionSet,
                 tx_index: TransactionIndex, metrics: Optional[MetricsCollector] = None):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.daemon = daemon
        self.subscriptions = subscriptions
        self.tx_index = tx_index
        self.metrics = metrics
        # Last block indexed, for reorg detection
        self.tip_height: Optional[int] = None
        self.tip_hash: Optional[str] = None

    async def parse_transactions(self, height: int) -> int:
        """Fetch the block at height and index its transactions.

        Returns the number of history entries appended.  Raises
        RetrievalError if the block cannot be fetched; the index is left
        untouched in that case.
        """
        try:
            block = await self.daemon.block(height)
        except DaemonError as e:
            raise RetrievalError(height, str(e)) from e

        start = time.monotonic()
        count = self.index_block(block)
        if self.metrics:
            self.metrics.inc_counter(MetricNames.BLOCKS_PROCESSED)
            self.metrics.inc_counter(MetricNames.TXS_INDEXED, count)
            self.metrics.observe_histogram(MetricNames.BLOCK_PROCESSING_TIME,
                                           time.monotonic() - start)
        if count:
            self.logger.info(f'block {height:,d}: indexed {count:,d} entries '
                             f'from {len(block):,d} transactions')
        return count

    def index_block(self, block: Block) -> int:
        """Route a fetched block's transactions into the index.

        Locks are taken subscriptions first, then index.
        """
        self._check_reorg(block)
        count = 0
        with self.subscriptions.read_view() as subscribed:
            with self.tx_index.writer() as append:
                for tx in block.transactions:
                    # outbound: from -> to
                    if subscribed(tx.from_address):
                        append(tx.from_address, tx)
                        count += 1
                    # inbound; contract creations have no recipient
                    if subscribed(tx.to_address):
                        append(tx.to_address, tx)
                        count += 1
        if block.height is not None:
            self.tip_height = block.height
            self.tip_hash = block.hash
        return count

    def _check_reorg(self, block: Block):
        """Warn when a block does not build on the previously indexed one.

        History already recorded is left as it is.
        """
        if (self.tip_height is None or block.height != self.tip_height + 1
                or not block.parent_hash or not self.tip_hash):
            return
        if block.parent_hash != self.tip_hash:
            self.logger.warning(
                f'chain reorganisation detected at height {block.height:,d}: '
                f'parent {block.parent_hash} does not match indexed block '
                f'{self.tip_hash}; existing history is not rewritten')
            if self.metrics:
                self.metrics.inc_counter(MetricNames.REORGS_DETECTED)
