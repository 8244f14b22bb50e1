"""
Prometheus metrics for the rebalancing engine.

Organized into: cycles, items, retries, quotes, capital.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server


class EngineMetrics:
    """Counters, gauges and histograms for one engine process."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()

        # === Cycle Metrics ===
        self.cycles_total = Counter(
            'lprebal_cycles_total',
            'Rebalancing cycles by outcome',
            labelnames=['outcome'],
            registry=reg
        )
        self.cycle_duration_sec = Histogram(
            'lprebal_cycle_duration_sec',
            'Wall time of one rebalancing cycle (seconds)',
            buckets=[1, 5, 10, 30, 60, 120, 300, 600],
            registry=reg
        )

        # === Item Metrics ===
        self.items_total = Counter(
            'lprebal_items_total',
            'Removals and additions by terminal status',
            labelnames=['phase', 'status'],
            registry=reg
        )
        self.retry_attempts = Counter(
            'lprebal_retry_attempts_total',
            'Failed attempts that were retried or exhausted',
            labelnames=['label', 'error_type'],
            registry=reg
        )

        # === Quote Metrics ===
        self.quotes_total = Counter(
            'lprebal_quotes_total',
            'Venue quote requests by outcome',
            labelnames=['venue', 'outcome'],
            registry=reg
        )
        self.best_quote_wins = Counter(
            'lprebal_best_quote_wins_total',
            'Times a venue produced the best quote',
            labelnames=['venue'],
            registry=reg
        )

        # === Capital / Position Metrics ===
        self.open_positions = Gauge(
            'lprebal_open_positions',
            'Open positions at the last snapshot',
            registry=reg
        )
        self.available_capital = Gauge(
            'lprebal_available_capital',
            'Available capital after removals (target asset units)',
            registry=reg
        )
        self.capital_committed = Gauge(
            'lprebal_capital_committed',
            'Capital committed to new positions in the last cycle',
            registry=reg
        )

        self.registry = reg

    def serve(self, port: int) -> None:
        start_http_server(port, registry=self.registry)
