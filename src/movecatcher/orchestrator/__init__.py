"""
Orchestrator package.
"""

from movecatcher.orchestrator.strategy_controller import (
    CloseAllResult,
    CycleResult,
    StrategyController,
)

__all__ = ["CloseAllResult", "CycleResult", "StrategyController"]
