"""
LotSizer: turn a risk-driven lot candidate into a broker-legal, user-capped lot.

Pipeline:
    candidate = base_lot * factor, capped to the user maximum
    -> round to the nearest lot step, then to the step's decimal digits
    -> clamp to [broker min, broker max]
    -> clamp to the step-floored user maximum

The user maximum is floored (never ceiled) to the step so the result can never
exceed what the user asked for.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from movecatcher.core.utils import step_to_digits


@dataclass(frozen=True)
class LotLimits:
    """Broker lot constraints."""
    min_lot: float = 0.01
    max_lot: float = 100.0
    lot_step: float = 0.01


def normalize_lot(lot_candidate: float, min_lot: float, max_lot_broker: float, lot_step: float) -> float:
    lot = lot_candidate
    lot_digits = 0
    if lot_step > 0:
        # round() is half-to-even; ties resolve the same way every time
        lot = round(lot / lot_step) * lot_step
        lot_digits = step_to_digits(lot_step)
        lot = round(lot, lot_digits)
    if lot < min_lot:
        lot = min_lot
    if lot > max_lot_broker:
        lot = max_lot_broker
    if lot_step > 0:
        lot = round(lot, lot_digits)
    return lot


def floor_to_step(value: float, lot_step: float) -> float:
    if lot_step <= 0:
        return value
    # small epsilon so 1.5 / 0.1 = 14.999999... still floors to 15
    floored = math.floor(value / lot_step + 1e-9) * lot_step
    return round(floored, step_to_digits(lot_step))


def clip_to_user_max(lot: float, user_max: float, lot_step: float) -> float:
    max_lot_adj = floor_to_step(user_max, lot_step)
    result = min(lot, max_lot_adj)
    if lot_step > 0:
        result = round(result, step_to_digits(lot_step))
    return result


def calc_lot(
    base_lot: float,
    factor: float,
    limits: LotLimits,
    user_max: Optional[float] = None,
) -> float:
    """
    Size an order.

    Args:
        base_lot: Lot for a risk factor of 1
        factor: Risk factor from the system's progression (>= 0)
        limits: Broker min/max/step
        user_max: Optional user cap; None or <= 0 means no cap

    Returns:
        Lot within [min, broker max], <= user max, multiple of step
    """
    candidate = base_lot * factor
    has_user_max = user_max is not None and user_max > 0
    if has_user_max:
        candidate = min(candidate, user_max)
    lot = normalize_lot(candidate, limits.min_lot, limits.max_lot, limits.lot_step)
    if has_user_max:
        lot = clip_to_user_max(lot, user_max, limits.lot_step)
    return lot
