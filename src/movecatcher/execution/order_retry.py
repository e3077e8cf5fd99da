"""
OrderRetryExecutor: send one order with bounded retries.

Outcome per venue error class:

    RequoteError         market: refresh quote, reprice entry and SL/TP, re-run
                         the entry gate, retry; pending: retry as-is
    VenueTransientError  retry until max_retries attempts are used
    VenueTimeoutError    INDETERMINATE, no retry (the next cycle's position and
                         order scan decides whether the order exists)
    VenueFatalError      FAILED

Slippage is fixed per attempt: protected-limit mode converts SlippagePips to
points, unprotected mode uses a configured policy (zero or unlimited).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional

from movecatcher.core.errors import (
    RequoteError,
    SubmissionFailed,
    VenueError,
    VenueFatalError,
    VenueTimeoutError,
    VenueTransientError,
)
from movecatcher.core.models import OrderKind, OrderRequest, OrderSpec, Position, Quote
from movecatcher.execution.entry_gate import EntryGate, GateDecision, distance_to_existing_positions

if TYPE_CHECKING:
    from movecatcher.execution.venue import ExecutionApi
    from movecatcher.monitoring.metrics_rich import StrategyMetrics
    from movecatcher.risk.circuit_breaker import CircuitBreaker

log = logging.getLogger("movecatcher")


class UnprotectedSlippage(Enum):
    ZERO = 0
    UNLIMITED = 2147483647


class SubmitStatus(Enum):
    SUBMITTED = "submitted"
    GATE_DENIED = "gate_denied"
    FAILED = "failed"
    INDETERMINATE = "indeterminate"


def slippage_points(
    slippage_pips: float,
    pip: float,
    point: float,
    use_protected_limit: bool,
    unprotected: UnprotectedSlippage = UnprotectedSlippage.ZERO,
) -> int:
    if not use_protected_limit:
        return unprotected.value
    if point <= 0:
        return 0
    return int(round(slippage_pips * pip / point))


@dataclass
class ExecutionConfig:
    max_retries: int = 3
    slippage_pips: float = 1.0
    use_protected_limit: bool = True
    unprotected_slippage: UnprotectedSlippage = UnprotectedSlippage.ZERO


@dataclass
class SubmitResult:
    status: SubmitStatus
    request: OrderRequest
    ticket: Optional[int] = None
    attempts: int = 0
    error: Optional[str] = None
    gate: Optional[GateDecision] = None

    @property
    def success(self) -> bool:
        return self.status is SubmitStatus.SUBMITTED

    def raise_for_status(self) -> None:
        """Raise for callers that prefer exceptions over inspecting the status."""
        if self.status is SubmitStatus.GATE_DENIED and self.gate is not None:
            self.gate.raise_for_denial()
        if self.status is not SubmitStatus.SUBMITTED:
            raise SubmissionFailed(f"{self.request.system} {self.request.side}: {self.status.value} ({self.error})")


class OrderRetryExecutor:
    """
    Submit orders through the venue with the retry policy above.

    Args:
        venue: ExecutionApi implementation
        config: Retry and slippage settings
        gate: EntryGate re-run after a market requote
        circuit_breaker: Optional; while tripped nothing is sent
        metrics: Optional StrategyMetrics
        log_event: Structured event sink
    """

    def __init__(
        self,
        venue: "ExecutionApi",
        config: ExecutionConfig,
        gate: EntryGate,
        circuit_breaker: Optional["CircuitBreaker"] = None,
        metrics: Optional["StrategyMetrics"] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.venue = venue
        self.config = config
        self.gate = gate
        self.circuit_breaker = circuit_breaker
        self.metrics = metrics
        self._log_event = log_event or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(json.dumps({"event": event, **kwargs}))

    def slippage_for(self, quote: Quote) -> int:
        return slippage_points(
            self.config.slippage_pips,
            quote.pip,
            quote.point,
            self.config.use_protected_limit,
            self.config.unprotected_slippage,
        )

    def submit(
        self,
        request: OrderRequest,
        quote: Quote,
        grid_distance: float,
        positions: Iterable[Position] = (),
        has_position: bool = False,
    ) -> SubmitResult:
        """
        Send `request`, retrying per policy.

        Args:
            request: Gated order intent
            quote: Quote the request was priced from
            grid_distance: Grid in price units, used to rebuild SL/TP on reprice
            positions: Open positions, for the distance band re-check
            has_position: Whether the request's system already holds a position

        Returns:
            SubmitResult; venue errors never escape
        """
        if self.circuit_breaker is not None and self.circuit_breaker.is_tripped:
            self._failed(request, "circuit_open")
            return SubmitResult(SubmitStatus.FAILED, request, error="circuit_open")

        positions = list(positions)
        slippage = self.slippage_for(quote)
        self._log_event(
            "slippage_policy",
            system=request.system,
            protected=self.config.use_protected_limit,
            slippage=slippage,
        )

        attempts = 0
        last_error: Optional[str] = None
        while attempts < max(1, self.config.max_retries):
            attempts += 1
            spec = self._to_spec(request, slippage)
            try:
                ticket = self.venue.submit(spec)
            except RequoteError as e:
                last_error = str(e)
                self._record_error("submit_requote", e)
                if request.kind is not OrderKind.MARKET:
                    continue
                try:
                    quote = self.venue.refresh_quotes()
                except VenueError as refresh_err:
                    self._record_error("refresh_quotes", refresh_err)
                    self._failed(request, f"refresh_failed: {refresh_err}")
                    return SubmitResult(SubmitStatus.FAILED, request, attempts=attempts,
                                        error=f"refresh_failed: {refresh_err}")
                slippage = self.slippage_for(quote)
                request = self._reprice(request, quote, grid_distance)
                decision = self.gate.evaluate(
                    request.price,
                    request.is_buy,
                    quote.spread_pips,
                    distance_to_existing_positions(request.price, request.is_buy, positions, quote.pip, quote.point),
                    has_position,
                    is_shadow=request.shadow,
                    system=request.system,
                )
                if not decision.allowed:
                    return SubmitResult(SubmitStatus.GATE_DENIED, request, attempts=attempts,
                                        error=decision.reason.value, gate=decision)
                continue
            except VenueTransientError as e:
                last_error = str(e)
                self._record_error("submit", e)
                self._log_event("order_retry", system=request.system, attempt=attempts, err=last_error)
                continue
            except VenueTimeoutError as e:
                self._record_error("submit", e)
                self._log_event("order_indeterminate", system=request.system, side=request.side,
                                kind=request.kind.value, price=request.price, err=str(e))
                return SubmitResult(SubmitStatus.INDETERMINATE, request, attempts=attempts, error=str(e))
            except VenueFatalError as e:
                self._record_error("submit", e)
                self._failed(request, str(e))
                return SubmitResult(SubmitStatus.FAILED, request, attempts=attempts, error=str(e))

            if self.circuit_breaker is not None:
                self.circuit_breaker.record_success()
            self._log_event(
                "order_submitted",
                system=request.system,
                ticket=ticket,
                side=request.side,
                kind=request.kind.value,
                price=request.price,
                lots=request.lots,
                sl=request.sl,
                tp=request.tp,
                comment=request.comment,
                slippage=slippage,
                attempts=attempts,
            )
            if self.metrics:
                self.metrics.order_submitted(request.system, request.kind.value)
            return SubmitResult(SubmitStatus.SUBMITTED, request, ticket=ticket, attempts=attempts)

        self._failed(request, f"retries_exhausted: {last_error}")
        return SubmitResult(SubmitStatus.FAILED, request, attempts=attempts,
                            error=f"retries_exhausted: {last_error}")

    def _reprice(self, request: OrderRequest, quote: Quote, grid_distance: float) -> OrderRequest:
        new_price = round(quote.entry_price(request.side), quote.digits)
        if new_price == request.price:
            return request
        repriced = request.repriced(new_price, grid_distance, quote.digits)
        self._log_event(
            "order_repriced",
            system=request.system,
            old_price=request.price,
            price=repriced.price,
            sl=repriced.sl,
            tp=repriced.tp,
        )
        return repriced

    @staticmethod
    def _to_spec(request: OrderRequest, slippage: int) -> OrderSpec:
        return OrderSpec(
            system=request.system,
            side=request.side,
            kind=request.kind,
            price=request.price,
            lots=request.lots,
            sl=request.sl,
            tp=request.tp,
            comment=request.comment,
            slippage=slippage,
        )

    def _record_error(self, where: str, error: Exception) -> None:
        if self.circuit_breaker is not None:
            self.circuit_breaker.record_error(where, error)

    def _failed(self, request: OrderRequest, error: str) -> None:
        self._log_event("order_failed", system=request.system, side=request.side,
                        kind=request.kind.value, price=request.price, err=error)
        if self.metrics:
            self.metrics.submission_failed(request.system)
