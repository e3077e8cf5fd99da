"""
ExecutionApi: the contract the strategy core needs from a broker adapter.

Concrete adapters live outside this package. Every call may raise one of the
`VenueError` subclasses from `movecatcher.core.errors`:

    VenueTransientError  retryable (busy context, off quotes, ...)
    RequoteError         retryable after refreshing the quote (market orders)
    VenueTimeoutError    outcome unknown; never retried blindly
    VenueFatalError      not retryable
"""

from __future__ import annotations

from typing import List, Protocol, runtime_checkable

from movecatcher.core.models import OrderSpec, PendingOrder, Position, Quote, TradeRecord


@runtime_checkable
class ExecutionApi(Protocol):
    def submit(self, spec: OrderSpec) -> int:
        """Send an order; returns the venue ticket."""
        ...

    def cancel(self, ticket: int) -> None:
        ...

    def modify(self, ticket: int, sl: float, tp: float) -> None:
        ...

    def close_position(self, ticket: int) -> None:
        ...

    def query_open_positions(self) -> List[Position]:
        ...

    def query_open_orders(self) -> List[PendingOrder]:
        ...

    def query_history(self, since: int) -> List[TradeRecord]:
        """Closed trades with close_time >= since."""
        ...

    def refresh_quotes(self) -> Quote:
        ...
