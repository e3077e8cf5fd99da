"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from movecatcher.core.comment_codec import CommentCodec
from movecatcher.core.models import BUY, SELL
from movecatcher.core.utils import pip_size, pips_to_price
from movecatcher.execution.close_trade_processor import ToleranceMode
from movecatcher.execution.entry_gate import GateConfig
from movecatcher.execution.order_retry import ExecutionConfig, UnprotectedSlippage
from movecatcher.risk.circuit_breaker import CircuitBreakerConfig
from movecatcher.risk.lot_sizer import LotLimits

load_dotenv()

log = logging.getLogger("movecatcher")


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return int(raw)


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return float(raw)


def _list_env(key: str, default: List[str]) -> List[str]:
    raw = os.getenv(key)
    if not raw:
        return list(default)
    return [s.strip() for s in raw.split(",") if s.strip()]


_UNPROTECTED = {"zero": UnprotectedSlippage.ZERO, "unlimited": UnprotectedSlippage.UNLIMITED}
_TOLERANCE = {"half": ToleranceMode.HALF_PIP, "full": ToleranceMode.FULL_PIP}


def _choice_env(key: str, choices: dict, default: str):
    raw = (os.getenv(key) or default).strip().lower()
    if raw not in choices:
        raise ValueError(f"{key} must be one of {sorted(choices)}, got {raw!r}")
    return choices[raw]


@dataclass(frozen=True)
class Settings:
    symbol: str = "EURUSD"
    systems: List[str] = field(default_factory=lambda: ["A", "B"])
    comment_prefix: str = "MoveCatcher"
    comment_max_len: int = 31
    digits: int = 5
    point: float = 0.00001
    lot_min: float = 0.01
    lot_max: float = 100.0
    lot_step: float = 0.01
    base_lot: float = 0.01
    user_max_lot: float = 0.0  # 0 = no user cap
    grid_pips: float = 100.0
    check_spread: bool = True
    max_spread_pips: float = 2.0  # 0 = no limit
    use_distance_band: bool = False
    shadow_use_distance_band: bool = False
    band_min_pips: float = 0.0
    band_max_pips: float = 0.0  # 0 = unbounded
    use_protected_limit: bool = True
    slippage_pips: float = 1.0
    unprotected_slippage: UnprotectedSlippage = UnprotectedSlippage.ZERO
    tolerance_mode: ToleranceMode = ToleranceMode.HALF_PIP
    max_retries: int = 3
    cb_error_threshold: int = 5
    cb_cooldown_sec: float = 10.0
    initial_side: str = BUY
    state_dir: str = "state"
    log_file: Optional[str] = None
    log_level: str = "INFO"

    def dump(self) -> dict:
        """Return a dict of settings for sanity checks/logging."""
        out = self.__dict__.copy()
        out["unprotected_slippage"] = self.unprotected_slippage.name
        out["tolerance_mode"] = self.tolerance_mode.name
        return out

    @property
    def primary_system(self) -> str:
        return self.systems[0]

    @property
    def pip(self) -> float:
        return pip_size(self.point, self.digits)

    @property
    def grid_distance(self) -> float:
        return round(pips_to_price(self.grid_pips, self.pip), self.digits)

    def lot_limits(self) -> LotLimits:
        return LotLimits(min_lot=self.lot_min, max_lot=self.lot_max, lot_step=self.lot_step)

    def gate_config(self) -> GateConfig:
        return GateConfig(
            check_spread=self.check_spread,
            max_spread_pips=self.max_spread_pips,
            use_distance_band=self.use_distance_band,
            shadow_use_distance_band=self.shadow_use_distance_band,
            band_min_pips=self.band_min_pips,
            band_max_pips=self.band_max_pips,
        )

    def execution_config(self) -> ExecutionConfig:
        return ExecutionConfig(
            max_retries=self.max_retries,
            slippage_pips=self.slippage_pips,
            use_protected_limit=self.use_protected_limit,
            unprotected_slippage=self.unprotected_slippage,
        )

    def breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(error_threshold=self.cb_error_threshold, cooldown_sec=self.cb_cooldown_sec)

    def codec(self) -> CommentCodec:
        return CommentCodec(prefix=self.comment_prefix, max_len=self.comment_max_len)

    @classmethod
    def load(cls) -> "Settings":
        cfg = cls(
            symbol=os.getenv("MC_SYMBOL", "EURUSD"),
            systems=_list_env("MC_SYSTEMS", ["A", "B"]),
            comment_prefix=os.getenv("MC_COMMENT_PREFIX", "MoveCatcher"),
            comment_max_len=_int_env("MC_COMMENT_MAX_LEN", 31),
            digits=_int_env("MC_DIGITS", 5),
            point=_float_env("MC_POINT", 0.00001),
            lot_min=_float_env("MC_LOT_MIN", 0.01),
            lot_max=_float_env("MC_LOT_MAX", 100.0),
            lot_step=_float_env("MC_LOT_STEP", 0.01),
            base_lot=_float_env("MC_BASE_LOT", 0.01),
            user_max_lot=_float_env("MC_USER_MAX_LOT", 0.0),
            grid_pips=_float_env("MC_GRID_PIPS", 100.0),
            check_spread=env_bool("MC_CHECK_SPREAD", True),
            max_spread_pips=_float_env("MC_MAX_SPREAD_PIPS", 2.0),
            use_distance_band=env_bool("MC_USE_DISTANCE_BAND", False),
            shadow_use_distance_band=env_bool("MC_SHADOW_USE_DISTANCE_BAND", False),
            band_min_pips=_float_env("MC_BAND_MIN_PIPS", 0.0),
            band_max_pips=_float_env("MC_BAND_MAX_PIPS", 0.0),
            use_protected_limit=env_bool("MC_USE_PROTECTED_LIMIT", True),
            slippage_pips=_float_env("MC_SLIPPAGE_PIPS", 1.0),
            unprotected_slippage=_choice_env("MC_UNPROTECTED_SLIPPAGE", _UNPROTECTED, "zero"),
            tolerance_mode=_choice_env("MC_TOLERANCE_MODE", _TOLERANCE, "half"),
            max_retries=_int_env("MC_MAX_RETRIES", 3),
            cb_error_threshold=_int_env("MC_CB_ERROR_THRESHOLD", 5),
            cb_cooldown_sec=_float_env("MC_CB_COOLDOWN_SEC", 10.0),
            initial_side=os.getenv("MC_INITIAL_SIDE", BUY).strip().lower(),
            state_dir=os.getenv("MC_STATE_DIR", "state"),
            log_file=os.getenv("MC_LOG_FILE") or None,
            log_level=os.getenv("MC_LOG_LEVEL", "INFO"),
        )
        _sanity_check(cfg)
        cfg._validate()
        return cfg

    def _validate(self) -> None:
        if not self.systems:
            raise ValueError("MC_SYSTEMS must name at least one system")
        if len(set(self.systems)) != len(self.systems):
            raise ValueError(f"MC_SYSTEMS has duplicates: {self.systems}")
        for system in self.systems:
            if "_" in system:
                raise ValueError(f"system tag {system!r} must not contain '_'")
            if self.codec().room(system) < 2:
                raise ValueError(
                    f"MC_COMMENT_PREFIX/MC_COMMENT_MAX_LEN leave no room for a payload on system {system!r}"
                )
        if self.point <= 0:
            raise ValueError("MC_POINT must be > 0")
        if self.digits < 0:
            raise ValueError("MC_DIGITS must be >= 0")
        if self.lot_min <= 0 or self.lot_max <= 0:
            raise ValueError("MC_LOT_MIN and MC_LOT_MAX must be > 0")
        if self.lot_min > self.lot_max:
            raise ValueError("MC_LOT_MIN must be <= MC_LOT_MAX")
        if self.lot_step < 0:
            raise ValueError("MC_LOT_STEP must be >= 0")
        if self.base_lot <= 0:
            raise ValueError("MC_BASE_LOT must be > 0")
        if self.grid_pips <= 0:
            raise ValueError("MC_GRID_PIPS must be > 0")
        if self.max_spread_pips < 0:
            raise ValueError("MC_MAX_SPREAD_PIPS must be >= 0")
        if self.band_min_pips < 0 or self.band_max_pips < 0:
            raise ValueError("distance band bounds must be >= 0")
        if self.band_max_pips > 0 and self.band_min_pips > self.band_max_pips:
            raise ValueError("MC_BAND_MIN_PIPS must be <= MC_BAND_MAX_PIPS")
        if self.slippage_pips < 0:
            raise ValueError("MC_SLIPPAGE_PIPS must be >= 0")
        if self.max_retries < 1:
            raise ValueError("MC_MAX_RETRIES must be >= 1")
        if self.initial_side not in (BUY, SELL):
            raise ValueError(f"MC_INITIAL_SIDE must be 'buy' or 'sell', got {self.initial_side!r}")

        if self.check_spread and self.max_spread_pips == 0:
            log.warning("WARNING: MC_CHECK_SPREAD is on but MC_MAX_SPREAD_PIPS=0, so spread is not limited.")
        if 0 < self.user_max_lot < self.lot_min:
            log.warning(
                f"WARNING: MC_USER_MAX_LOT={self.user_max_lot} is below MC_LOT_MIN={self.lot_min}; "
                "every order will be sized at the user cap."
            )
        if not self.use_protected_limit and self.unprotected_slippage is UnprotectedSlippage.UNLIMITED:
            log.warning("WARNING: market orders accept unlimited slippage (MC_UNPROTECTED_SLIPPAGE=unlimited).")


def _sanity_check(cfg: Settings) -> None:
    """
    Log critical settings once at startup so overrides are obvious.
    """
    payload = {
        "event": "config_loaded",
        "symbol": cfg.symbol,
        "systems": cfg.systems,
        "grid_pips": cfg.grid_pips,
        "base_lot": cfg.base_lot,
        "max_spread_pips": cfg.max_spread_pips,
        "use_protected_limit": cfg.use_protected_limit,
        "tolerance_mode": cfg.tolerance_mode.name,
    }
    log.info(json.dumps(payload))
