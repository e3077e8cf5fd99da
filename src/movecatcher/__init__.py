"""
MoveCatcher decision core.

Paired-entry grid strategy logic: entry gating, shadow OCO handling, lot sizing,
duplicate correction, closed-trade classification and bounded order comments.
The broker adapter is supplied by the host through `ExecutionApi`.
"""

__version__ = "1.0.0"
