"""
Prometheus metrics for the strategy core.

Organized into: execution, trades, state, operational.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


class StrategyMetrics:
    """Strategy metrics on an injectable registry (a fresh one per instance by default)."""

    def __init__(self, symbol: str, registry: Optional[CollectorRegistry] = None):
        self.symbol = symbol
        self.registry = registry or CollectorRegistry()
        reg = self.registry

        # === Execution ===
        self.orders_submitted = Counter(
            'mc_orders_submitted_total',
            'Orders accepted by the venue',
            labelnames=['symbol', 'system', 'kind'],
            registry=reg
        )
        self.gate_denials = Counter(
            'mc_gate_denials_total',
            'Entries refused by the entry gate',
            labelnames=['symbol', 'reason'],
            registry=reg
        )
        self.orders_cancelled = Counter(
            'mc_orders_cancelled_total',
            'Pending orders cancelled',
            labelnames=['symbol', 'system', 'reason'],
            registry=reg
        )
        self.submission_failures = Counter(
            'mc_submission_failures_total',
            'Submissions that failed after retries',
            labelnames=['symbol', 'system'],
            registry=reg
        )

        # === Trades ===
        self.closed_trades = Counter(
            'mc_closed_trades_total',
            'Closed trades by classified reason',
            labelnames=['symbol', 'system', 'reason'],
            registry=reg
        )
        self.duplicates_closed = Counter(
            'mc_duplicate_positions_closed_total',
            'Duplicate positions closed at startup',
            labelnames=['symbol', 'system'],
            registry=reg
        )

        # === State ===
        self.risk_factor = Gauge(
            'mc_risk_factor',
            'DecompMC lot factor for the next entry',
            labelnames=['symbol', 'system'],
            registry=reg
        )

        # === Operational ===
        self.cycle_duration = Histogram(
            'mc_cycle_duration_seconds',
            'Duration of one run_cycle pass',
            labelnames=['symbol'],
            buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
            registry=reg
        )
        self.cycle_errors = Counter(
            'mc_cycle_errors_total',
            'Per-system errors isolated during a cycle',
            labelnames=['symbol', 'system'],
            registry=reg
        )

    def order_submitted(self, system: str, kind: str) -> None:
        self.orders_submitted.labels(symbol=self.symbol, system=system, kind=kind).inc()

    def gate_denied(self, reason) -> None:
        label = getattr(reason, "value", str(reason))
        self.gate_denials.labels(symbol=self.symbol, reason=label).inc()

    def order_cancelled(self, system: str, reason: str) -> None:
        self.orders_cancelled.labels(symbol=self.symbol, system=system, reason=reason).inc()

    def submission_failed(self, system: str) -> None:
        self.submission_failures.labels(symbol=self.symbol, system=system).inc()

    def trade_closed(self, system: str, reason: str) -> None:
        self.closed_trades.labels(symbol=self.symbol, system=system, reason=reason).inc()

    def duplicate_closed(self, system: str) -> None:
        self.duplicates_closed.labels(symbol=self.symbol, system=system).inc()

    def set_risk_factor(self, system: str, factor: float) -> None:
        self.risk_factor.labels(symbol=self.symbol, system=system).set(factor)

    def observe_cycle(self, seconds: float) -> None:
        self.cycle_duration.labels(symbol=self.symbol).observe(seconds)

    def cycle_error(self, system: str) -> None:
        self.cycle_errors.labels(symbol=self.symbol, system=system).inc()
