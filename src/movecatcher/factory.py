"""
Factory: wire a StrategyController from Settings and a venue adapter.

Usage:
    from movecatcher.factory import build_controller

    controller = build_controller(Settings.load(), venue)
    controller.startup()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from prometheus_client import CollectorRegistry

from movecatcher.config.config_validator import validate_and_log
from movecatcher.execution.entry_gate import EntryGate
from movecatcher.execution.oco_detector import OCODetector
from movecatcher.execution.order_retry import OrderRetryExecutor
from movecatcher.infra.logging_cfg import build_logger
from movecatcher.monitoring.metrics_rich import StrategyMetrics
from movecatcher.orchestrator.strategy_controller import StrategyController
from movecatcher.risk.circuit_breaker import CircuitBreaker
from movecatcher.state.state_store import StateStore
from movecatcher.strategy_logger import StrategyLogger, StrategyLoggerConfig

if TYPE_CHECKING:
    from movecatcher.config.config import Settings
    from movecatcher.execution.venue import ExecutionApi

log = logging.getLogger("movecatcher")


@dataclass
class ControllerOptions:
    """Optional overrides, mainly for tests."""
    persist: bool = True
    registry: Optional[CollectorRegistry] = None
    debug_logging: bool = False


def build_controller(
    settings: "Settings",
    venue: "ExecutionApi",
    options: Optional[ControllerOptions] = None,
) -> StrategyController:
    """
    Build every component the controller needs, sharing one logger callback,
    one metrics object and one circuit breaker between them.

    Raises:
        ValueError: the settings fail ConfigValidator with at least one error
    """
    if not validate_and_log(settings, log):
        raise ValueError("configuration validation failed")
    opts = options or ControllerOptions()
    slog = StrategyLogger(settings.symbol, StrategyLoggerConfig(debug_enabled=opts.debug_logging))
    log_event = slog.get_callback()
    metrics = StrategyMetrics(settings.symbol, registry=opts.registry)
    breaker = CircuitBreaker(settings.breaker_config(), log_event=log_event)

    gate = EntryGate(settings.gate_config(), log_event=log_event, on_denied=metrics.gate_denied)
    executor = OrderRetryExecutor(
        venue,
        settings.execution_config(),
        gate,
        circuit_breaker=breaker,
        metrics=metrics,
        log_event=log_event,
    )
    oco = OCODetector(venue, gate, executor, metrics=metrics, log_event=log_event)
    store = StateStore(settings.symbol, settings.state_dir) if opts.persist else None

    return StrategyController(
        settings,
        venue,
        gate,
        executor,
        oco,
        store=store,
        metrics=metrics,
        circuit_breaker=breaker,
        log_event=log_event,
    )


def configure_logging(settings: "Settings", rich_console: bool = True) -> logging.Logger:
    """Install handlers on the package logger from MC_LOG_LEVEL / MC_LOG_FILE."""
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    return build_logger(
        "movecatcher",
        level=level,
        file_path=settings.log_file,
        rich_console=rich_console,
    )
