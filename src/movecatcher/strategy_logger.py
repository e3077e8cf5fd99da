"""
StrategyLogger: level routing and throttling for strategy events.

Components emit events through a plain `log_event(event, **data)` callback. This
class is that callback: it maps each event name to a log level, throttles the
ones that can repeat every tick and stamps the symbol on every payload.

Usage:
    slog = StrategyLogger(symbol="EURUSD")
    gate = EntryGate(cfg, log_event=slog.log)
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set

log = logging.getLogger("movecatcher")


@dataclass
class StrategyLoggerConfig:
    throttle_window_sec: float = 60.0
    debug_enabled: bool = False


class StrategyLogger:
    """
    Log Level Hierarchy:
    - CRITICAL: invariant breaches (duplicate positions surviving correction)
    - ERROR: venue calls that failed for good
    - WARNING: gate denials, duplicates closed, undecodable comments, retries
    - INFO: submissions, closures, re-entries, OCO transitions
    - DEBUG: cycle start/end
    """

    CRITICAL_EVENTS: Set[str] = {
        "reconciliation_conflict", "state_integrity_error",
    }

    ERROR_EVENTS: Set[str] = {
        "order_failed", "cancel_error", "close_error", "modify_error",
        "system_cycle_error", "state_save_error", "circuit_break",
    }

    WARNING_EVENTS: Set[str] = {
        "gate_denied", "duplicate_closed", "malformed_identifier", "order_retry",
        "order_indeterminate", "oco_invalidated", "oco_orphan_cancelled",
        "oco_establish_deferred", "venue_error", "close_all_skip",
    }

    DEBUG_EVENTS: Set[str] = {
        "cycle_start", "cycle_end", "slippage_policy", "tpsl_ok",
    }

    THROTTLE_EVENTS: Set[str] = {
        "gate_denied", "oco_establish_deferred",
    }

    def __init__(
        self,
        symbol: str,
        config: Optional[StrategyLoggerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.symbol = symbol
        self.config = config or StrategyLoggerConfig()
        self._clock = clock
        self._throttle_times: Dict[str, float] = {}

    def level_for(self, event: str) -> int:
        if event in self.CRITICAL_EVENTS:
            return logging.CRITICAL
        if event in self.ERROR_EVENTS:
            return logging.ERROR
        if event in self.WARNING_EVENTS:
            return logging.WARNING
        if event in self.DEBUG_EVENTS:
            return logging.DEBUG
        return logging.INFO

    def log(self, event: str, **data: Any) -> None:
        level = self.level_for(event)

        if event in self.THROTTLE_EVENTS:
            # per (event, system, reason) so one noisy system does not hide another
            key = f"{event}:{data.get('system', '')}:{data.get('reason', '')}"
            now = self._clock()
            last = self._throttle_times.get(key)
            if last is not None and now - last < self.config.throttle_window_sec:
                return
            self._throttle_times[key] = now

        if level == logging.DEBUG and not self.config.debug_enabled:
            return

        payload = {"event": event, "symbol": self.symbol, **data}
        log.log(level, json.dumps(payload, default=str))

    def get_callback(self) -> Callable[..., None]:
        return self.log
