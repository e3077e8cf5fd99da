"""
State package.

Per-system lifecycle memory and its JSON persistence.
"""

from movecatcher.state.state_store import StateStore
from movecatcher.state.system_state import (
    LIFECYCLE_TRANSITIONS,
    Lifecycle,
    ReentryIntent,
    SystemState,
    next_lifecycle,
)

__all__ = [
    "StateStore",
    "LIFECYCLE_TRANSITIONS",
    "Lifecycle",
    "ReentryIntent",
    "SystemState",
    "next_lifecycle",
]
