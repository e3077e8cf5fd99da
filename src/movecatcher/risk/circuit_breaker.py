"""
CircuitBreaker: stop hammering the venue after consecutive failures.

Counts consecutive venue errors across all submissions. Once the streak reaches
the threshold the breaker trips for a cooldown that backs off exponentially on
repeated trips; while tripped, callers skip venue calls entirely. A successful
call clears the streak.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

log = logging.getLogger("movecatcher")


@dataclass
class CircuitBreakerConfig:
    error_threshold: int = 5  # consecutive errors before tripping
    cooldown_sec: float = 10.0
    backoff_multiplier: float = 2.0
    max_backoff: float = 32.0


class CircuitBreaker:
    """
    Consecutive-error circuit breaker.

    Not internally locked; the controller's cycle lock serializes access.
    `clock` is injectable so cooldown expiry can be tested without sleeping.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        log_event: Optional[Callable[..., None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CircuitBreakerConfig()
        self.error_streak: int = 0
        self._tripped: bool = False
        self._cooldown_until: float = 0.0
        self._trip_count: int = 0
        self._clock = clock
        self._log_event = log_event or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(json.dumps({"event": event, **kwargs}))

    @property
    def is_tripped(self) -> bool:
        """True while cooling down. Auto-resets once the cooldown has elapsed."""
        if self._tripped and self._clock() >= self._cooldown_until:
            self._reset()
            return False
        return self._tripped

    @property
    def trip_count(self) -> int:
        return self._trip_count

    @property
    def cooldown_remaining(self) -> float:
        if not self._tripped:
            return 0.0
        return max(0.0, self._cooldown_until - self._clock())

    def record_error(self, where: str, error: Exception) -> bool:
        """Count a venue error. Returns True if this error tripped the breaker."""
        self.error_streak += 1
        self._log_event("venue_error", where=where, err=str(error), streak=self.error_streak)
        if self.error_streak >= self.config.error_threshold:
            return self._trip(where)
        return False

    def record_success(self) -> None:
        if self.error_streak > 0:
            self._log_event("venue_error_reset", streak=self.error_streak)
            self.error_streak = 0

    def _trip(self, where: str) -> bool:
        if self._tripped:
            return False
        self._tripped = True
        self._trip_count += 1
        backoff = min(
            self.config.backoff_multiplier ** min(self._trip_count - 1, 5),
            self.config.max_backoff,
        )
        cooldown = self.config.cooldown_sec * backoff
        self._cooldown_until = self._clock() + cooldown
        self._log_event(
            "circuit_break",
            where=where,
            streak=self.error_streak,
            trip_count=self._trip_count,
            cooldown_sec=cooldown,
        )
        return True

    def _reset(self) -> None:
        was_tripped = self._tripped
        self._tripped = False
        self.error_streak = 0
        if was_tripped:
            self._log_event("circuit_reset", trip_count=self._trip_count)

    def force_reset(self) -> None:
        self._cooldown_until = 0.0
        self._reset()

    def force_trip(self, cooldown_sec: Optional[float] = None) -> None:
        """Trip immediately, e.g. after a reconciliation conflict."""
        self._tripped = True
        self._trip_count += 1
        cooldown = cooldown_sec if cooldown_sec is not None else self.config.cooldown_sec
        self._cooldown_until = self._clock() + cooldown
        self._log_event("circuit_force_trip", cooldown_sec=cooldown)

    def get_state(self) -> dict:
        return {
            "tripped": self._tripped,
            "error_streak": self.error_streak,
            "trip_count": self._trip_count,
            "cooldown_remaining": self.cooldown_remaining,
        }
