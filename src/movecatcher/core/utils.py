"""
Utility helpers: pip arithmetic and step/tolerance checks.
"""

from __future__ import annotations

from decimal import Decimal


def pip_size(point: float, digits: int) -> float:
    """Fractional-pip symbols (3 or 5 digits) quote one pip as ten points."""
    return point * 10 if digits in (3, 5) else point


def pips_to_price(pips: float, pip: float) -> float:
    return pips * pip


def price_to_pips(distance: float, pip: float, point: float = 0.0) -> float:
    """
    Price distance in pips.

    With `point` given the distance is first counted in whole points, so a
    spread of exactly N points gives exactly N / points-per-pip pips instead
    of a float a hair above or below it.
    """
    if pip <= 0:
        return 0.0
    if point <= 0:
        return distance / pip
    points_per_pip = max(1, round(pip / point))
    return round(distance / point) / points_per_pip


def step_to_digits(step: float) -> int:
    """Decimal places implied by a lot/tick step (0.01 -> 2, 0.3 -> 1, 0.25 -> 2)."""
    if step <= 0:
        return 0
    exponent = Decimal(str(step)).normalize().as_tuple().exponent
    return max(0, -int(exponent))


def is_multiple(value: float, step: float, tol: float = 1e-8) -> bool:
    """
    Check if value is a multiple of step within tolerance.
    """
    if step <= 0:
        return True
    ratio = value / step
    return abs(ratio - round(ratio)) < tol


def within(a: float, b: float, tol: float) -> bool:
    return abs(a - b) <= tol
