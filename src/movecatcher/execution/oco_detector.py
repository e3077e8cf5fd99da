"""
OCODetector: keep each system's shadow buy-limit/sell-limit pair consistent.

A shadow pair is a buy limit at reference - grid and a sell limit at
reference + grid. The venue has no native one-cancels-other, so the detector
emulates it from the position and order scans of every cycle:

    position live, legs remain      one leg filled; cancel every remaining leg
    no position, a leg vanished     pair invalid; cancel the survivor
    no position, no legs            pair consumed; the system needs a new pair
    legs nobody remembers           adopt one buy + one sell, cancel the rest

Cancellation is never gated: leaving the opposite leg alive is always worse than
the spread paid to remove it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Sequence

from movecatcher.core.errors import VenueError
from movecatcher.core.models import (
    BUY,
    SELL,
    OcoLevels,
    OrderKind,
    OrderRequest,
    PendingOrder,
    Position,
    Quote,
    grid_stops,
)
from movecatcher.execution.entry_gate import EntryGate, GateDecision, distance_to_existing_positions

if TYPE_CHECKING:
    from movecatcher.execution.order_retry import OrderRetryExecutor
    from movecatcher.execution.venue import ExecutionApi
    from movecatcher.monitoring.metrics_rich import StrategyMetrics

log = logging.getLogger("movecatcher")


class OcoAction(Enum):
    NONE = "none"
    PENDING = "pending"            # both legs resting
    FILLED = "filled"              # one leg became the position
    INVALIDATED = "invalidated"    # survivor cancelled
    NEEDS_PAIR = "needs_pair"
    ADOPTED = "adopted"
    ESTABLISHED = "established"
    DEFERRED = "deferred"          # establish_pair did not complete


@dataclass
class OcoPair:
    system: str
    buy_ticket: int
    sell_ticket: int
    levels: Optional[OcoLevels] = None

    @property
    def tickets(self) -> tuple:
        return (self.buy_ticket, self.sell_ticket)


@dataclass
class OcoOutcome:
    system: str
    action: OcoAction
    filled_side: Optional[str] = None
    cancelled: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    gate: Optional[GateDecision] = None

    @property
    def needs_pair(self) -> bool:
        return self.action is OcoAction.NEEDS_PAIR


class OCODetector:
    """Per-system shadow pair bookkeeping and emulated one-cancels-other."""

    def __init__(
        self,
        venue: "ExecutionApi",
        gate: EntryGate,
        executor: "OrderRetryExecutor",
        metrics: Optional["StrategyMetrics"] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.venue = venue
        self.gate = gate
        self.executor = executor
        self.metrics = metrics
        self._log_event = log_event or self._default_log
        self.pairs: Dict[str, OcoPair] = {}
        self._levels: Dict[str, OcoLevels] = {}

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(json.dumps({"event": event, **kwargs}))

    # ------------------------------------------------------------------
    # Levels
    # ------------------------------------------------------------------

    def build_levels(self, system: str, reference: float, grid_distance: float, digits: int) -> OcoLevels:
        """Entry and SL/TP for both legs; cached until the reference moves."""
        reference = round(reference, digits)
        cached = self._levels.get(system)
        if cached is not None and cached.reference == reference:
            return cached

        buy_entry = round(reference - grid_distance, digits)
        sell_entry = round(reference + grid_distance, digits)
        buy_sl, buy_tp = grid_stops(BUY, buy_entry, grid_distance, digits)
        sell_sl, sell_tp = grid_stops(SELL, sell_entry, grid_distance, digits)
        levels = OcoLevels(
            reference=reference,
            buy_entry=buy_entry,
            buy_sl=buy_sl,
            buy_tp=buy_tp,
            sell_entry=sell_entry,
            sell_sl=sell_sl,
            sell_tp=sell_tp,
        )
        self._levels[system] = levels
        return levels

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def handle(
        self,
        system: str,
        position: Optional[Position],
        legs: Sequence[PendingOrder],
    ) -> OcoOutcome:
        """
        Reconcile one system's remembered pair against the live scan.

        Args:
            system: System tag
            position: The system's live position, if any
            legs: The system's resting limit orders
        """
        pair = self.pairs.get(system)
        legs = sorted(legs, key=lambda o: o.ticket)

        if position is not None:
            if legs:
                outcome = OcoOutcome(system, OcoAction.FILLED, filled_side=position.side)
                self._cancel_all(outcome, legs, why="filled")
                self._log_event("oco_filled", system=system, side=position.side,
                                ticket=position.ticket, cancelled=outcome.cancelled)
            elif pair is not None:
                outcome = OcoOutcome(system, OcoAction.FILLED, filled_side=position.side)
            else:
                outcome = OcoOutcome(system, OcoAction.NONE)
            self.pairs.pop(system, None)
            return outcome

        if not legs:
            if pair is not None:
                self._log_event("oco_consumed", system=system, tickets=list(pair.tickets))
            self.pairs.pop(system, None)
            return OcoOutcome(system, OcoAction.NEEDS_PAIR)

        live = {o.ticket for o in legs}
        if pair is None or not (set(pair.tickets) & live):
            return self._adopt(system, legs)

        outcome = OcoOutcome(system, OcoAction.PENDING)
        extras = [o for o in legs if o.ticket not in pair.tickets]
        if extras:
            self._cancel_all(outcome, extras, why="extra_leg")

        if pair.buy_ticket in live and pair.sell_ticket in live:
            return outcome

        survivors = [o for o in legs if o.ticket in pair.tickets]
        outcome.action = OcoAction.INVALIDATED
        self._cancel_all(outcome, survivors, why="pair_broken")
        self._log_event("oco_invalidated", system=system, tickets=list(pair.tickets),
                        cancelled=outcome.cancelled)
        self.pairs.pop(system, None)
        return outcome

    def _adopt(self, system: str, legs: List[PendingOrder]) -> OcoOutcome:
        buys = [o for o in legs if o.side == BUY]
        sells = [o for o in legs if o.side == SELL]
        if not buys or not sells:
            outcome = OcoOutcome(system, OcoAction.INVALIDATED)
            self._cancel_all(outcome, legs, why="orphan_leg")
            self._log_event("oco_orphan_cancelled", system=system, cancelled=outcome.cancelled)
            return outcome

        keep_buy, keep_sell = buys[0], sells[0]
        outcome = OcoOutcome(system, OcoAction.ADOPTED)
        extras = buys[1:] + sells[1:]
        if extras:
            self._cancel_all(outcome, extras, why="extra_leg")
        self.pairs[system] = OcoPair(system, keep_buy.ticket, keep_sell.ticket, self._levels.get(system))
        self._log_event("oco_adopted", system=system, buy=keep_buy.ticket, sell=keep_sell.ticket,
                        cancelled=outcome.cancelled)
        return outcome

    def _cancel_all(self, outcome: OcoOutcome, orders: Iterable[PendingOrder], why: str) -> None:
        for order in orders:
            try:
                self.venue.cancel(order.ticket)
            except VenueError as e:
                outcome.errors.append(f"cancel {order.ticket}: {e}")
                self._log_event("cancel_error", system=outcome.system, ticket=order.ticket,
                                why=why, err=str(e))
                continue
            outcome.cancelled.append(order.ticket)
            if self.metrics:
                self.metrics.order_cancelled(outcome.system, why)

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------

    def establish_pair(
        self,
        system: str,
        reference: float,
        quote: Quote,
        grid_distance: float,
        lots: float,
        comment: str,
        sequence: Sequence[int] = (),
        positions: Iterable[Position] = (),
    ) -> OcoOutcome:
        """
        Place both legs around `reference`, all or nothing.

        Both legs are gated (shadow path) before either is sent. If the sell leg
        fails after the buy leg was accepted, the buy leg is cancelled and the
        attempt is deferred to a later cycle.
        """
        positions = list(positions)
        levels = self.build_levels(system, reference, grid_distance, quote.digits)
        requests = [
            OrderRequest(system, BUY, OrderKind.LIMIT, levels.buy_entry, lots,
                         levels.buy_sl, levels.buy_tp, comment, shadow=True, sequence=list(sequence)),
            OrderRequest(system, SELL, OrderKind.LIMIT, levels.sell_entry, lots,
                         levels.sell_sl, levels.sell_tp, comment, shadow=True, sequence=list(sequence)),
        ]

        for req in requests:
            decision = self.gate.evaluate(
                req.price,
                req.is_buy,
                quote.spread_pips,
                distance_to_existing_positions(req.price, req.is_buy, positions, quote.pip, quote.point),
                has_position=False,
                is_shadow=True,
                system=system,
            )
            if not decision.allowed:
                return OcoOutcome(system, OcoAction.DEFERRED, gate=decision,
                                  errors=[decision.reason.value])

        tickets: List[int] = []
        for req in requests:
            result = self.executor.submit(req, quote, grid_distance, positions)
            if not result.success:
                outcome = OcoOutcome(system, OcoAction.DEFERRED, gate=result.gate,
                                     errors=[result.error or result.status.value])
                for ticket in tickets:
                    try:
                        self.venue.cancel(ticket)
                        outcome.cancelled.append(ticket)
                    except VenueError as e:
                        outcome.errors.append(f"cancel {ticket}: {e}")
                self._log_event("oco_establish_deferred", system=system, status=result.status.value,
                                err=result.error, rolled_back=outcome.cancelled)
                return outcome
            tickets.append(result.ticket)

        self.pairs[system] = OcoPair(system, tickets[0], tickets[1], levels)
        self._log_event("oco_established", system=system, buy=tickets[0], sell=tickets[1],
                        buy_price=levels.buy_entry, sell_price=levels.sell_entry, lots=lots)
        return OcoOutcome(system, OcoAction.ESTABLISHED)

    def forget(self, system: str) -> None:
        self.pairs.pop(system, None)
