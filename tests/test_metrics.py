"""
Tests for StrategyMetrics.
"""

from prometheus_client import CollectorRegistry

from movecatcher.execution.entry_gate import GateReason
from movecatcher.monitoring.metrics_rich import StrategyMetrics


def _value(registry, name, **labels):
    return registry.get_sample_value(name, labels)


class TestStrategyMetrics:
    """Counters and gauges on an isolated registry."""

    def test_counters(self):
        registry = CollectorRegistry()
        metrics = StrategyMetrics("EURUSD", registry=registry)

        metrics.order_submitted("A", "market")
        metrics.order_submitted("A", "market")
        metrics.gate_denied(GateReason.SPREAD_EXCEEDED)
        metrics.order_cancelled("B", "filled")
        metrics.submission_failed("B")
        metrics.trade_closed("A", "TP")
        metrics.duplicate_closed("A")
        metrics.cycle_error("B")

        assert _value(registry, "mc_orders_submitted_total", symbol="EURUSD", system="A", kind="market") == 2
        assert _value(registry, "mc_gate_denials_total", symbol="EURUSD", reason="SpreadExceeded") == 1
        assert _value(registry, "mc_orders_cancelled_total", symbol="EURUSD", system="B", reason="filled") == 1
        assert _value(registry, "mc_submission_failures_total", symbol="EURUSD", system="B") == 1
        assert _value(registry, "mc_closed_trades_total", symbol="EURUSD", system="A", reason="TP") == 1
        assert _value(registry, "mc_duplicate_positions_closed_total", symbol="EURUSD", system="A") == 1
        assert _value(registry, "mc_cycle_errors_total", symbol="EURUSD", system="B") == 1

    def test_gauge_and_histogram(self):
        registry = CollectorRegistry()
        metrics = StrategyMetrics("EURUSD", registry=registry)

        metrics.set_risk_factor("A", 3)
        metrics.observe_cycle(0.02)

        assert _value(registry, "mc_risk_factor", symbol="EURUSD", system="A") == 3
        assert _value(registry, "mc_cycle_duration_seconds_count", symbol="EURUSD") == 1

    def test_instances_do_not_collide(self):
        StrategyMetrics("EURUSD")
        StrategyMetrics("EURUSD")
