"""
Config package.
"""

from movecatcher.config.config import Settings, env_bool
from movecatcher.config.config_validator import (
    ConfigValidator,
    ValidationIssue,
    ValidationResult,
    ValidationSeverity,
    validate_and_log,
    validate_config,
)

__all__ = [
    "Settings",
    "env_bool",
    "ConfigValidator",
    "ValidationIssue",
    "ValidationResult",
    "ValidationSeverity",
    "validate_and_log",
    "validate_config",
]
