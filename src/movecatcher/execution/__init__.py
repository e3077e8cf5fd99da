"""
Execution package.

Entry gating, order submission with retries, shadow OCO handling, duplicate
correction and closed-trade classification.
"""

from movecatcher.execution.close_trade_processor import (
    CloseScanResult,
    ToleranceMode,
    estimate_reason,
    process_closed_trades,
)
from movecatcher.execution.duplicate_reconciler import group_by_system, reconcile_duplicates
from movecatcher.execution.entry_gate import (
    EntryGate,
    GateConfig,
    GateDecision,
    GateReason,
    distance_to_existing_positions,
)
from movecatcher.execution.oco_detector import OCODetector, OcoAction, OcoOutcome, OcoPair
from movecatcher.execution.order_retry import (
    ExecutionConfig,
    OrderRetryExecutor,
    SubmitResult,
    SubmitStatus,
    UnprotectedSlippage,
    slippage_points,
)
from movecatcher.execution.venue import ExecutionApi

__all__ = [
    "CloseScanResult",
    "ToleranceMode",
    "estimate_reason",
    "process_closed_trades",
    "group_by_system",
    "reconcile_duplicates",
    "EntryGate",
    "GateConfig",
    "GateDecision",
    "GateReason",
    "distance_to_existing_positions",
    "OCODetector",
    "OcoAction",
    "OcoOutcome",
    "OcoPair",
    "ExecutionConfig",
    "OrderRetryExecutor",
    "SubmitResult",
    "SubmitStatus",
    "UnprotectedSlippage",
    "slippage_points",
    "ExecutionApi",
]
