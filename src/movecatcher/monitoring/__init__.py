"""
Monitoring package.
"""

from movecatcher.monitoring.metrics_rich import StrategyMetrics

__all__ = ["StrategyMetrics"]
