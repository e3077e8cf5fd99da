"""
Risk package.

Lot sizing, the per-system DecompMC progression and the venue circuit breaker.
"""

from movecatcher.risk.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from movecatcher.risk.decomp_mc import DecompMC
from movecatcher.risk.lot_sizer import (
    LotLimits,
    calc_lot,
    clip_to_user_max,
    normalize_lot,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "DecompMC",
    "LotLimits",
    "calc_lot",
    "clip_to_user_max",
    "normalize_lot",
]
