"""
Prometheus Metrics for TxWatch

Provides monitoring metrics for the polling engine including:
- Chain height and polling failures
- Block processing counts and latency
- Indexed transaction and subscription totals
"""

import time
from collections import defaultdict, deque
from typing import Deque, Dict, List

from txwatch.lib import util


class MetricNames:
    """Metric names TxWatch exports, with their help text."""

    # Polling
    BLOCK_HEIGHT = 'txwatch_block_height'
    POLL_ERRORS = 'txwatch_poll_errors_total'

    # Block processing
    BLOCKS_PROCESSED = 'txwatch_blocks_processed_total'
    BLOCK_PROCESSING_TIME = 'txwatch_block_processing_seconds'
    INDEX_ERRORS = 'txwatch_index_errors_total'
    REORGS_DETECTED = 'txwatch_reorgs_detected_total'

    # Index contents
    TXS_INDEXED = 'txwatch_transactions_indexed_total'
    SUBSCRIPTIONS_ACTIVE = 'txwatch_subscriptions_active'

    HELP = {
        BLOCK_HEIGHT: 'Last daemon height seen by the poller',
        POLL_ERRORS: 'Polling ticks that could not read the daemon height',
        BLOCKS_PROCESSED: 'Blocks fetched and indexed',
        BLOCK_PROCESSING_TIME: 'Seconds spent routing one block into the index',
        INDEX_ERRORS: 'Blocks skipped because they could not be retrieved',
        REORGS_DETECTED: 'Blocks whose parent did not match the last indexed block',
        TXS_INDEXED: 'History entries appended to the index',
        SUBSCRIPTIONS_ACTIVE: 'Subscribed addresses',
    }


class MetricsCollector:
    """
    Collects counters, gauges and latency samples for the engine.

    Exposed in Prometheus text format at the /metrics endpoint of the
    REST API.  Latency samples keep a sliding window of the most recent
    ``window`` observations and are exported as a summary.
    """

    QUANTILES = (0.5, 0.9, 0.99)

    def __init__(self, env=None, window: int = 1000):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.enabled = getattr(env, 'prometheus_enabled', True) if env else True
        self.counters: Dict[str, int] = defaultdict(int)
        self.gauges: Dict[str, float] = {}
        self.histograms: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=window))
        self.start_time = time.time()

        if self.enabled:
            self.logger.info('Prometheus metrics enabled')

    def inc_counter(self, name: str, value: int = 1):
        self.counters[name] += value

    def get_counter(self, name: str) -> int:
        return self.counters.get(name, 0)

    def set_gauge(self, name: str, value: float):
        self.gauges[name] = value

    def get_gauge(self, name: str) -> float:
        return self.gauges.get(name, 0.0)

    def observe_histogram(self, name: str, value: float):
        self.histograms[name].append(value)

    # ========================================================================
    # Metric Export
    # ========================================================================

    def generate_metrics(self) -> str:
        """Generate Prometheus text format metrics."""
        lines = []
        self._header(lines, 'txwatch_uptime_seconds', 'gauge', 'Server uptime in seconds')
        lines.append(f'txwatch_uptime_seconds {time.time() - self.start_time:.2f}')

        for name, value in sorted(self.counters.items()):
            self._header(lines, name, 'counter')
            lines.append(f'{name} {value}')

        for name, value in sorted(self.gauges.items()):
            self._header(lines, name, 'gauge')
            lines.append(f'{name} {value:.6f}')

        for name, values in sorted(self.histograms.items()):
            if not values:
                continue
            self._header(lines, name, 'summary')
            lines.extend(self._summary(name, sorted(values)))

        return '\n'.join(lines) + '\n'

    @staticmethod
    def _header(lines: List[str], name: str, kind: str, help_text: str = None):
        help_text = help_text or MetricNames.HELP.get(name, name)
        lines.append(f'# HELP {name} {help_text}')
        lines.append(f'# TYPE {name} {kind}')

    def _summary(self, name: str, values: List[float]) -> List[str]:
        count = len(values)
        lines = [f'{name}{{quantile="{q}"}} {values[int(count * q)]:.6f}'
                 for q in self.QUANTILES]
        lines.append(f'{name}_sum {sum(values):.6f}')
        lines.append(f'{name}_count {count}')
        return lines
