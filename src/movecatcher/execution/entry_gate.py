"""
EntryGate: decide whether a new entry may be sent.

Checks run in order and the first failure wins:

    1. the system already holds a position        -> PositionExists
    2. spread check on and max spread > 0, spread > max
                                                   -> SpreadExceeded
    3. distance band on, distance to the nearest same-side position outside
       [band_min_pips, band_max_pips]              -> DistanceBandViolation

Market entries and shadow (pending OCO) entries use separate band toggles.
Cancellation never goes through the gate.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from movecatcher.core.errors import GateDenied
from movecatcher.core.models import Position
from movecatcher.core.utils import price_to_pips

log = logging.getLogger("movecatcher")


class GateReason(Enum):
    POSITION_EXISTS = "PositionExists"
    SPREAD_EXCEEDED = "SpreadExceeded"
    DISTANCE_BAND_VIOLATION = "DistanceBandViolation"


@dataclass(frozen=True)
class GateConfig:
    check_spread: bool = True
    max_spread_pips: float = 2.0  # 0 = no limit
    use_distance_band: bool = False
    shadow_use_distance_band: bool = False
    band_min_pips: float = 0.0
    band_max_pips: float = 0.0  # 0 = unbounded above


@dataclass
class GateDecision:
    allowed: bool
    reason: Optional[GateReason] = None
    detail: str = ""

    def raise_for_denial(self) -> None:
        if not self.allowed and self.reason is not None:
            raise GateDenied(self.reason, self.detail)


ALLOWED = GateDecision(allowed=True)


def distance_to_existing_positions(
    price: float,
    is_buy: bool,
    positions: Iterable[Position],
    pip: float,
    point: float = 0.0,
) -> Optional[float]:
    """
    Smallest distance in pips from `price` to an open position on the same side.
    Counted in whole points when `point` is given.
    """
    distances = [
        abs(price_to_pips(price - p.open_price, pip, point))
        for p in positions
        if p.is_buy == is_buy
    ]
    return min(distances) if distances else None


class EntryGate:
    """
    Stateless entry checks.

    Args:
        config: Spread and distance-band settings
        log_event: Structured event sink (defaults to JSON on the package logger)
        on_denied: Optional hook called with the GateReason, used for metrics
    """

    def __init__(
        self,
        config: GateConfig,
        log_event: Optional[Callable[..., None]] = None,
        on_denied: Optional[Callable[[GateReason], None]] = None,
    ) -> None:
        self.config = config
        self._log_event = log_event or self._default_log
        self._on_denied = on_denied

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(json.dumps({"event": event, **kwargs}))

    def evaluate(
        self,
        price: float,
        is_buy: bool,
        spread_pips: float,
        distance_pips: Optional[float],
        has_position: bool,
        is_shadow: bool = False,
        check_spread: Optional[bool] = None,
        use_band: Optional[bool] = None,
        system: str = "",
    ) -> GateDecision:
        """
        Evaluate one candidate entry.

        Args:
            price: Candidate entry price
            is_buy: Direction of the candidate
            spread_pips: Current spread in pips
            distance_pips: Distance to the nearest same-side position, None if none
            has_position: The system already holds a position
            is_shadow: Pending OCO leg rather than a market entry
            check_spread: Overrides config.check_spread when given
            use_band: Overrides the market/shadow band toggle when given
            system: System tag, only used for logging

        Returns:
            GateDecision; never raises
        """
        decision = self._check(price, is_buy, spread_pips, distance_pips, has_position,
                               is_shadow, check_spread, use_band)
        if not decision.allowed:
            self._log_event(
                "gate_denied",
                system=system,
                reason=decision.reason.value,
                detail=decision.detail,
                side="buy" if is_buy else "sell",
                price=price,
                shadow=is_shadow,
            )
            if self._on_denied:
                self._on_denied(decision.reason)
        return decision

    def _check(
        self,
        price: float,
        is_buy: bool,
        spread_pips: float,
        distance_pips: Optional[float],
        has_position: bool,
        is_shadow: bool,
        check_spread: Optional[bool],
        use_band: Optional[bool],
    ) -> GateDecision:
        cfg = self.config
        if has_position:
            return GateDecision(False, GateReason.POSITION_EXISTS, "system already has a position")

        spread_on = cfg.check_spread if check_spread is None else check_spread
        if spread_on and cfg.max_spread_pips > 0 and spread_pips > cfg.max_spread_pips:
            return GateDecision(
                False,
                GateReason.SPREAD_EXCEEDED,
                f"spread {spread_pips:.2f} > max {cfg.max_spread_pips:.2f} pips",
            )

        if use_band is None:
            use_band = cfg.shadow_use_distance_band if is_shadow else cfg.use_distance_band
        if use_band and distance_pips is not None:
            below = distance_pips < cfg.band_min_pips
            above = cfg.band_max_pips > 0 and distance_pips > cfg.band_max_pips
            if below or above:
                upper = f"{cfg.band_max_pips:.2f}" if cfg.band_max_pips > 0 else "inf"
                return GateDecision(
                    False,
                    GateReason.DISTANCE_BAND_VIOLATION,
                    f"distance {distance_pips:.2f} outside [{cfg.band_min_pips:.2f}, {upper}] pips",
                )

        return ALLOWED
