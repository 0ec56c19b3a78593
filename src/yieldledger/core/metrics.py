"""
Staking and swap ledger metrics.

Prometheus metrics for stake flows, reward payouts, swaps and the state of
each asset pool. Ledgers record into a ``LedgerMetrics`` only when one is
injected, so tests can use an isolated ``CollectorRegistry``.
"""

from prometheus_client import REGISTRY, Counter, Gauge


class LedgerMetrics:
    """Metrics for the reward and fee/reserve ledgers."""

    def __init__(self, registry=None):
        self.registry = registry or REGISTRY

        # Reward ledger
        self.stakes_total = Counter(
            'yieldledger_stakes_total',
            'Total number of stake operations',
            ['asset'],
            registry=self.registry
        )

        self.unstakes_total = Counter(
            'yieldledger_unstakes_total',
            'Total number of unstake operations',
            ['asset'],
            registry=self.registry
        )

        self.rewards_paid = Counter(
            'yieldledger_rewards_paid_total',
            'Total rewards paid out in base units',
            ['asset'],
            registry=self.registry
        )

        self.total_staked = Gauge(
            'yieldledger_total_staked',
            'Total amount staked per asset',
            ['asset'],
            registry=self.registry
        )

        self.cumulative_index = Gauge(
            'yieldledger_cumulative_index',
            'Cumulative reward-per-unit-staked index (1e18 scaled)',
            ['asset'],
            registry=self.registry
        )

        # Fee/reserve ledger
        self.swaps_total = Counter(
            'yieldledger_swaps_total',
            'Total number of swaps executed',
            ['asset_in', 'asset_out', 'kind'],
            registry=self.registry
        )

        self.swap_volume = Counter(
            'yieldledger_swap_volume_total',
            'Total swap input volume in base units',
            ['asset'],
            registry=self.registry
        )

        self.fees_collected = Counter(
            'yieldledger_fees_collected_total',
            'Total swap fees accumulated',
            ['asset'],
            registry=self.registry
        )

        self.reserves = Gauge(
            'yieldledger_reserves',
            'Current tracked reserve per asset',
            ['asset'],
            registry=self.registry
        )

        self.failed_operations = Counter(
            'yieldledger_failed_operations_total',
            'Ledger operations rejected with an error',
            ['operation', 'error'],
            registry=self.registry
        )


_ledger_metrics_instance = None


def get_ledger_metrics(registry=None) -> LedgerMetrics:
    """Get or create the process-wide ledger metrics instance."""
    global _ledger_metrics_instance
    if _ledger_metrics_instance is None:
        _ledger_metrics_instance = LedgerMetrics(registry=registry)
    return _ledger_metrics_instance
