# File: src/optirollup/monitoring/metrics.py

from typing import Optional
import logging

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)


class RollupMetrics:
    """
    Prometheus collectors for one node. Each instance owns its registry so
    several coordinators (or test cases) never collide on metric names.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        # Sequencer metrics
        self.transactions_accepted = Counter(
            'rollup_transactions_accepted', 'Transactions accepted into the queue',
            registry=self.registry
        )
        self.transactions_rejected = Counter(
            'rollup_transactions_rejected', 'Transactions rejected by validation',
            ['reason'], registry=self.registry
        )
        self.pending_transactions = Gauge(
            'rollup_pending_transactions', 'Transactions waiting for a batch',
            registry=self.registry
        )
        self.batches = Counter(
            'rollup_batches', 'Batch lifecycle transitions',
            ['status'], registry=self.registry
        )
        self.batch_size = Histogram(
            'rollup_batch_size', 'Transactions per batch',
            buckets=(1, 5, 10, 25, 50, 100, 250, 500),
            registry=self.registry
        )

        # Bridge metrics
        self.deposits = Counter(
            'bridge_deposits', 'Deposit lifecycle transitions',
            ['status'], registry=self.registry
        )
        self.withdrawals = Counter(
            'bridge_withdrawals', 'Withdrawal lifecycle transitions',
            ['status'], registry=self.registry
        )

        # Validator metrics
        self.active_validators = Gauge(
            'rollup_active_validators', 'Number of active validators',
            registry=self.registry
        )

        # Settlement metrics
        self.settlement_latency = Histogram(
            'settlement_call_seconds', 'Settlement call latency',
            ['operation'], registry=self.registry
        )
        self.settlement_failures = Counter(
            'settlement_call_failures', 'Failed settlement calls',
            ['operation', 'kind'], registry=self.registry
        )

    def serve(self, port: int):
        """Expose this registry over HTTP"""
        start_http_server(port, registry=self.registry)
        logger.info(f"Metrics server listening on port {port}")

    def sample(self, name: str, labels: Optional[dict] = None) -> float:
        """Current value of a sample, 0.0 when it has not been recorded yet"""
        value = self.registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0
