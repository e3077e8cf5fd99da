"""
Configuration validation for startup safety.

Settings._validate() rejects values the strategy cannot run with at all. This
module collects the softer picture in one pass: range checks, dependencies
between fields and risky-but-legal combinations, each as a ValidationIssue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional, Tuple

from movecatcher.execution.order_retry import UnprotectedSlippage

logger = logging.getLogger("movecatcher")


class ValidationSeverity(Enum):
    ERROR = auto()    # blocks startup
    WARNING = auto()  # logged, startup continues
    INFO = auto()


@dataclass
class ValidationIssue:
    field: str
    message: str
    severity: ValidationSeverity
    value: Any = None
    suggestion: Optional[str] = None


@dataclass
class ValidationResult:
    valid: bool
    issues: List[ValidationIssue] = field(default_factory=list)

    def has_errors(self) -> bool:
        return any(i.severity == ValidationSeverity.ERROR for i in self.issues)

    def has_warnings(self) -> bool:
        return any(i.severity == ValidationSeverity.WARNING for i in self.issues)

    def get_errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.ERROR]

    def get_warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.WARNING]


class ConfigValidator:
    """
    Validates a Settings instance.

    Checks:
    - numeric values within sane ranges
    - distance band and lot bounds are ordered
    - every system tag leaves room for a comment payload
    - risky combinations (no spread limit, unlimited slippage, tiny grid)
    """

    # (min, max)
    NUMERIC_RANGES: Dict[str, Tuple[float, float]] = {
        "comment_max_len": (8, 255),
        "digits": (0, 8),
        "lot_min": (0.0001, 1000.0),
        "lot_max": (0.0001, 100_000.0),
        "lot_step": (0.0, 100.0),
        "base_lot": (0.0001, 1000.0),
        "grid_pips": (0.1, 100_000.0),
        "max_spread_pips": (0.0, 1000.0),
        "slippage_pips": (0.0, 1000.0),
        "max_retries": (1, 50),
        "cb_error_threshold": (1, 100),
        "cb_cooldown_sec": (0.0, 3600.0),
    }

    def __init__(self) -> None:
        self._custom_validators: List[Callable[[Any], List[ValidationIssue]]] = []

    def register_validator(self, validator: Callable[[Any], List[ValidationIssue]]) -> None:
        self._custom_validators.append(validator)

    def validate(self, cfg) -> ValidationResult:
        issues: List[ValidationIssue] = []
        issues.extend(self._validate_numeric_ranges(cfg))
        issues.extend(self._validate_systems(cfg))
        issues.extend(self._validate_dependencies(cfg))
        issues.extend(self._check_risky_configs(cfg))
        for validator in self._custom_validators:
            issues.extend(validator(cfg) or [])
        has_errors = any(i.severity == ValidationSeverity.ERROR for i in issues)
        return ValidationResult(valid=not has_errors, issues=issues)

    def _validate_numeric_ranges(self, cfg) -> List[ValidationIssue]:
        issues = []
        for field_name, (min_val, max_val) in self.NUMERIC_RANGES.items():
            value = getattr(cfg, field_name, None)
            try:
                num_value = float(value)
            except (TypeError, ValueError):
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"'{field_name}' has invalid numeric value: {value}",
                    severity=ValidationSeverity.ERROR,
                    value=value,
                ))
                continue
            if num_value < min_val:
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"'{field_name}' value {num_value} is below minimum {min_val}",
                    severity=ValidationSeverity.ERROR,
                    value=num_value,
                    suggestion=f"Set to at least {min_val}",
                ))
            elif num_value > max_val:
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"'{field_name}' value {num_value} is above maximum {max_val}",
                    severity=ValidationSeverity.ERROR,
                    value=num_value,
                    suggestion=f"Set to at most {max_val}",
                ))
        return issues

    def _validate_systems(self, cfg) -> List[ValidationIssue]:
        issues = []
        systems = getattr(cfg, "systems", None)
        if not systems:
            issues.append(ValidationIssue(
                field="systems",
                message="No systems configured",
                severity=ValidationSeverity.ERROR,
                suggestion="Set MC_SYSTEMS, e.g. 'A,B'",
            ))
            return issues
        codec = cfg.codec()
        for system in systems:
            if codec.room(system) < 2:
                issues.append(ValidationIssue(
                    field="comment_prefix",
                    message=f"Comment header for system '{system}' leaves {codec.room(system)} characters for the payload",
                    severity=ValidationSeverity.ERROR,
                    value=codec.header(system),
                    suggestion="Shorten MC_COMMENT_PREFIX or the system tag",
                ))
            elif codec.room(system) < 6:
                issues.append(ValidationIssue(
                    field="comment_prefix",
                    message=f"Only {codec.room(system)} payload characters for system '{system}'; long sequences will be truncated or hashed",
                    severity=ValidationSeverity.WARNING,
                    value=codec.header(system),
                ))
        return issues

    def _validate_dependencies(self, cfg) -> List[ValidationIssue]:
        issues = []
        if cfg.lot_min > cfg.lot_max:
            issues.append(ValidationIssue(
                field="lot_min",
                message=f"lot_min {cfg.lot_min} exceeds lot_max {cfg.lot_max}",
                severity=ValidationSeverity.ERROR,
            ))
        if cfg.band_max_pips > 0 and cfg.band_min_pips > cfg.band_max_pips:
            issues.append(ValidationIssue(
                field="band_min_pips",
                message=f"distance band [{cfg.band_min_pips}, {cfg.band_max_pips}] is empty",
                severity=ValidationSeverity.ERROR,
            ))
        if (cfg.use_distance_band or cfg.shadow_use_distance_band) and cfg.band_min_pips == 0 and cfg.band_max_pips == 0:
            issues.append(ValidationIssue(
                field="use_distance_band",
                message="Distance band is enabled but both bounds are 0, so it never denies",
                severity=ValidationSeverity.WARNING,
            ))
        return issues

    def _check_risky_configs(self, cfg) -> List[ValidationIssue]:
        issues = []
        if not cfg.check_spread or cfg.max_spread_pips == 0:
            issues.append(ValidationIssue(
                field="max_spread_pips",
                message="Spread is not limited; entries may fill at any spread",
                severity=ValidationSeverity.WARNING,
                suggestion="Enable MC_CHECK_SPREAD with a positive MC_MAX_SPREAD_PIPS",
            ))
        if not cfg.use_protected_limit and cfg.unprotected_slippage is UnprotectedSlippage.UNLIMITED:
            issues.append(ValidationIssue(
                field="unprotected_slippage",
                message="Market orders accept unlimited slippage",
                severity=ValidationSeverity.WARNING,
            ))
        if cfg.max_spread_pips > 0 and cfg.grid_pips <= cfg.max_spread_pips * 2:
            issues.append(ValidationIssue(
                field="grid_pips",
                message=f"Grid of {cfg.grid_pips} pips is within twice the allowed spread ({cfg.max_spread_pips} pips)",
                severity=ValidationSeverity.WARNING,
                value=cfg.grid_pips,
            ))
        if 0 < cfg.user_max_lot < cfg.lot_min:
            issues.append(ValidationIssue(
                field="user_max_lot",
                message=f"user_max_lot {cfg.user_max_lot} is below the broker minimum {cfg.lot_min}",
                severity=ValidationSeverity.WARNING,
                value=cfg.user_max_lot,
            ))
        return issues


def validate_config(cfg) -> ValidationResult:
    return ConfigValidator().validate(cfg)


def validate_and_log(cfg, logger_instance=None) -> bool:
    """
    Validate config and log all issues.

    Returns:
        True if config is valid (no errors), False otherwise
    """
    log = logger_instance or logger
    result = validate_config(cfg)

    for issue in result.get_errors():
        msg = f"CONFIG ERROR: {issue.message}"
        if issue.suggestion:
            msg += f" (suggestion: {issue.suggestion})"
        log.error(msg)

    for issue in result.get_warnings():
        msg = f"CONFIG WARNING: {issue.message}"
        if issue.suggestion:
            msg += f" (suggestion: {issue.suggestion})"
        log.warning(msg)

    if result.valid:
        log.info("Configuration validation passed")
    else:
        log.error(f"Configuration validation failed with {len(result.get_errors())} error(s)")
    return result.valid
