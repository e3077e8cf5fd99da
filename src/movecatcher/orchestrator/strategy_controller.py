"""
StrategyController: owns every SystemState and runs the per-trigger pass.

The host calls `startup()` once, `init_strategy(quote)` on a fresh account, then
`run_cycle(quote)` on every trigger. One cycle:

    1. scan positions and pending orders; one position per system or fail
    2. per system: lifecycle, OCO detection, SL/TP enforcement
    3. per system: owed re-entry at market, or a new shadow pair
    4. per system: fold closed trades into the progression, persist

Step 3 runs before step 4, so a closure found in step 4 is acted on in the next
cycle and its lot reflects the updated progression. A system whose position
vanished this cycle therefore waits one cycle for its closure. So does a system
whose shadow pair broke with no position live: a leg may have filled and
closed between two scans.

Errors from the venue inside one system are logged and isolated; the other
systems still run. A ReconciliationConflict always propagates.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Set

from movecatcher.core.comment_codec import CommentCodec, CommentTier
from movecatcher.core.errors import MalformedIdentifier, ReconciliationConflict, VenueError
from movecatcher.core.models import (
    BUY,
    OrderKind,
    OrderRequest,
    PendingOrder,
    Position,
    Quote,
    TradeRecord,
    grid_stops,
)
from movecatcher.core.utils import within
from movecatcher.execution.close_trade_processor import process_closed_trades
from movecatcher.execution.duplicate_reconciler import group_by_system, reconcile_duplicates
from movecatcher.execution.entry_gate import EntryGate, distance_to_existing_positions
from movecatcher.execution.oco_detector import OCODetector, OcoAction
from movecatcher.execution.order_retry import OrderRetryExecutor, SubmitResult, SubmitStatus
from movecatcher.risk.lot_sizer import calc_lot
from movecatcher.state.system_state import SystemState

if TYPE_CHECKING:
    from movecatcher.config.config import Settings
    from movecatcher.execution.venue import ExecutionApi
    from movecatcher.monitoring.metrics_rich import StrategyMetrics
    from movecatcher.risk.circuit_breaker import CircuitBreaker
    from movecatcher.state.state_store import StateStore

log = logging.getLogger("movecatcher")

STATE_VERSION = 1


@dataclass
class CycleResult:
    success: bool = True
    positions: int = 0
    pending_orders: int = 0
    submitted: int = 0
    cancelled: int = 0
    modified: int = 0
    gate_denials: int = 0
    closed_trades: int = 0
    errors: List[str] = field(default_factory=list)
    duration_ms: float = 0.0


@dataclass
class CloseAllResult:
    reason: str
    cancelled: List[int] = field(default_factory=list)
    closed: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class StrategyController:
    """
    Top-level owner of the strategy's per-system memory.

    Args:
        settings: Loaded Settings
        venue: ExecutionApi implementation
        gate: EntryGate shared with the executor and OCO detector
        executor: OrderRetryExecutor
        oco: OCODetector
        store: Optional StateStore; without it state lives only in memory
        metrics: Optional StrategyMetrics
        circuit_breaker: Optional, reported in get_stats
        log_event: Structured event sink
    """

    def __init__(
        self,
        settings: "Settings",
        venue: "ExecutionApi",
        gate: EntryGate,
        executor: OrderRetryExecutor,
        oco: OCODetector,
        store: Optional["StateStore"] = None,
        metrics: Optional["StrategyMetrics"] = None,
        circuit_breaker: Optional["CircuitBreaker"] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.settings = settings
        self.venue = venue
        self.gate = gate
        self.executor = executor
        self.oco = oco
        self.store = store
        self.metrics = metrics
        self.circuit_breaker = circuit_breaker
        self.codec: CommentCodec = settings.codec()
        self._log_event = log_event or self._default_log

        self.systems: Dict[str, SystemState] = {s: SystemState(s) for s in settings.systems}
        self._lock = threading.Lock()
        self._started = False
        self._cycle_count = 0
        # duplicates closed at startup must not feed the progression
        self._ignored_tickets: Set[int] = set()

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(json.dumps({"event": event, "symbol": self.settings.symbol, **kwargs}))

    # ------------------------------------------------------------------
    # Venue views
    # ------------------------------------------------------------------

    def _own_positions(self) -> List[Position]:
        return [p for p in self.venue.query_open_positions() if p.system in self.systems]

    def _own_orders(self) -> List[PendingOrder]:
        return [o for o in self.venue.query_open_orders() if o.system in self.systems]

    @staticmethod
    def _check_one_position(positions: Iterable[Position]) -> Dict[str, Position]:
        by_system: Dict[str, Position] = {}
        for system, group in group_by_system(positions).items():
            if len(group) > 1:
                raise ReconciliationConflict(system, [p.ticket for p in group])
            by_system[system] = group[0]
        return by_system

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def startup(self) -> List[Position]:
        """
        Correct duplicates, restore memory and set the initial lifecycles.

        Returns:
            The retained positions

        Raises:
            ReconciliationConflict: a system still has several positions after
                the duplicates were closed
        """
        with self._lock:
            positions = self._own_positions()
            retained, to_close = reconcile_duplicates(positions)
            for dup in to_close:
                try:
                    self.venue.close_position(dup.ticket)
                except VenueError as e:
                    self._log_event("close_error", system=dup.system, ticket=dup.ticket, err=str(e))
                    continue
                self._ignored_tickets.add(dup.ticket)
                self._log_event("duplicate_closed", system=dup.system, ticket=dup.ticket,
                                open_time=dup.open_time)
                if self.metrics:
                    self.metrics.duplicate_closed(dup.system)

            if to_close:
                try:
                    by_system = self._check_one_position(self._own_positions())
                except ReconciliationConflict as e:
                    self._log_event("reconciliation_conflict", system=e.system, tickets=e.tickets)
                    raise
            else:
                by_system = {p.system: p for p in retained}

            self._restore(by_system)
            for system, state in self.systems.items():
                state.update_lifecycle(system in by_system)
                if self.metrics:
                    self.metrics.set_risk_factor(system, state.progression.next_lot())

            self._persist()
            self._started = True
            self._log_event(
                "startup_complete",
                retained=[p.ticket for p in by_system.values()],
                closed=[p.ticket for p in to_close],
                lifecycles={s: st.lifecycle.value for s, st in self.systems.items()},
            )
            return list(by_system.values())

    def _restore(self, by_system: Dict[str, Position]) -> None:
        saved = self.store.load().get("systems", {}) if self.store else {}
        fresh: List[str] = []
        for system in self.systems:
            data = saved.get(system)
            if data:
                try:
                    self.systems[system] = SystemState.from_dict(data)
                    continue
                except (KeyError, TypeError, ValueError) as e:
                    self._log_event("state_integrity_error", system=system, err=str(e))
            self.systems[system] = SystemState(system)
            fresh.append(system)
            pos = by_system.get(system)
            if pos is not None:
                self._restore_sequence(self.systems[system], pos)

        if fresh:
            self._seed_watermarks(fresh)

    def _restore_sequence(self, state: SystemState, pos: Position) -> None:
        try:
            decoded = self.codec.decode(pos.comment)
        except MalformedIdentifier as e:
            self._log_event("malformed_identifier", system=state.system, ticket=pos.ticket,
                            comment=pos.comment, why=e.why)
            return
        if decoded.tier is CommentTier.COMPACT and decoded.sequence and len(decoded.sequence) >= 2:
            state.progression.restore_sequence(decoded.sequence)
            self._log_event("sequence_restored", system=state.system, ticket=pos.ticket,
                            seq=decoded.sequence)

    def _seed_watermarks(self, systems: List[str]) -> None:
        """Start fresh systems after the newest closure already in history."""
        try:
            history = self.venue.query_history(0)
        except VenueError as e:
            self._log_event("history_error", where="startup", err=str(e))
            return
        for system in systems:
            own = [r for r in history if self.codec.belongs_to(r.comment, system)]
            if not own:
                continue
            latest = max(r.close_time for r in own)
            state = self.systems[system]
            state.last_close_time = latest
            state.processed_tickets = {r.ticket for r in own if r.close_time == latest}

    # ------------------------------------------------------------------
    # Initial entry
    # ------------------------------------------------------------------

    def init_strategy(self, quote: Quote) -> bool:
        """
        First entry on an account with nothing open: the primary system at market
        in the configured direction, shadow pairs for the others.

        Returns:
            False when positions or orders already exist (nothing is sent)
        """
        with self._lock:
            positions = self._own_positions()
            orders = self._own_orders()
            if positions or orders:
                self._log_event("init_skipped", positions=len(positions), orders=len(orders))
                return False

            primary = self.settings.primary_system
            result = self._market_entry(self.systems[primary], self.settings.initial_side, quote, [])
            self._log_event("init_primary", system=primary, side=self.settings.initial_side,
                            status=result.status.value, ticket=result.ticket)

            for system in self.settings.systems[1:]:
                self._establish_pair(self.systems[system], quote, [])
            self._persist()
            return result.status is SubmitStatus.SUBMITTED

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def run_cycle(self, quote: Quote) -> CycleResult:
        """
        One full pass over every system. Serialized; a concurrent call blocks.

        Raises:
            ReconciliationConflict: more than one live position for a system
        """
        start = time.perf_counter()
        with self._lock:
            if not self._started:
                raise RuntimeError("startup() must run before run_cycle()")
            self._cycle_count += 1
            result = CycleResult()
            self._log_event("cycle_start", cycle=self._cycle_count, bid=quote.bid, ask=quote.ask)

            try:
                positions = self._own_positions()
                orders = self._own_orders()
            except VenueError as e:
                result.success = False
                result.errors.append(f"scan: {e}")
                self._log_event("system_cycle_error", system="*", where="scan", err=str(e))
                return self._finish(result, start)

            try:
                by_system = self._check_one_position(positions)
            except ReconciliationConflict as e:
                self._log_event("reconciliation_conflict", system=e.system, tickets=e.tickets)
                raise
            result.positions = len(positions)
            result.pending_orders = len(orders)

            legs: Dict[str, List[PendingOrder]] = {s: [] for s in self.systems}
            for order in orders:
                legs[order.system].append(order)

            held = set()
            for system, state in self.systems.items():
                if self._detect(state, by_system.get(system), legs, quote, result):
                    held.add(system)

            for system, state in self.systems.items():
                if system in held:
                    continue
                if by_system.get(system) is None and not legs[system]:
                    self._submit_for(state, quote, positions, result)

            self._process_closures(by_system, result)
            self._persist()
            return self._finish(result, start)

    def _detect(
        self,
        state: SystemState,
        pos: Optional[Position],
        legs: Dict[str, List[PendingOrder]],
        quote: Quote,
        result: CycleResult,
    ) -> bool:
        """
        Update the lifecycle and reconcile the system's legs and stops.

        Returns True when the system must not submit this cycle: a remembered
        pair broke with no position live, so a leg may have filled and closed
        between scans and its closure has to be folded in before re-entering.
        """
        system = state.system
        prior = state.lifecycle
        state.update_lifecycle(pos is not None)
        if state.lifecycle is not prior:
            self._log_event("lifecycle_change", system=system, prior=prior.value,
                            lifecycle=state.lifecycle.value)
        had_pair = system in self.oco.pairs
        try:
            outcome = self.oco.handle(system, pos, legs[system])
            if outcome.cancelled:
                result.cancelled += len(outcome.cancelled)
                gone = set(outcome.cancelled)
                legs[system] = [o for o in legs[system] if o.ticket not in gone]
            result.errors.extend(outcome.errors)
            if pos is not None and self.ensure_tpsl(pos, quote):
                result.modified += 1
        except VenueError as e:
            self._isolate(system, "detect", e, result)
            return False
        if pos is None and (outcome.action is OcoAction.INVALIDATED or (had_pair and outcome.needs_pair)):
            self._log_event("submission_held", system=system, oco=outcome.action.value)
            return True
        return False

    def _submit_for(self, state: SystemState, quote: Quote, positions: List[Position], result: CycleResult) -> None:
        if state.just_lost:
            return
        try:
            if state.reentry is not None:
                intent = state.reentry
                res = self._market_entry(state, intent.side, quote, positions)
                if res.status is SubmitStatus.SUBMITTED:
                    result.submitted += 1
                    state.reentry = None
                    self._log_event(
                        intent.event,
                        system=state.system,
                        side=intent.side,
                        closed_ticket=intent.ticket,
                        ticket=res.ticket,
                        price=res.request.price,
                        lots=res.request.lots,
                    )
                elif res.status is SubmitStatus.INDETERMINATE:
                    # the next scan shows whether it filled; never send twice
                    state.reentry = None
                    result.errors.append(f"{state.system}: reentry indeterminate")
                elif res.status is SubmitStatus.GATE_DENIED:
                    result.gate_denials += 1
                else:
                    result.errors.append(f"{state.system}: {res.error}")
            elif state.steadily_missing:
                outcome = self._establish_pair(state, quote, positions)
                if outcome.action is OcoAction.ESTABLISHED:
                    result.submitted += 2
                elif outcome.gate is not None:
                    result.gate_denials += 1
                elif outcome.errors:
                    result.errors.extend(f"{state.system}: {e}" for e in outcome.errors)
        except VenueError as e:
            self._isolate(state.system, "submit", e, result)

    def _process_closures(self, by_system: Dict[str, Position], result: CycleResult) -> None:
        since = min(st.last_close_time for st in self.systems.values())
        try:
            history: List[TradeRecord] = self.venue.query_history(since)
        except VenueError as e:
            result.errors.append(f"history: {e}")
            self._log_event("history_error", where="cycle", err=str(e))
            return

        history = [r for r in history if r.ticket not in self._ignored_tickets]
        for system, state in self.systems.items():
            scan = process_closed_trades(
                history,
                system,
                self.codec,
                self.settings.pip,
                watermark=state.last_close_time,
                processed_tickets=state.processed_tickets,
                tolerance_mode=self.settings.tolerance_mode,
                log_event=self._log_event,
            )
            for trade in scan.trades:
                state.apply_closed_trade(trade, reenter=system not in by_system)
                if self.metrics:
                    self.metrics.trade_closed(system, trade.reason)
            state.last_close_time = scan.watermark
            state.processed_tickets = scan.processed_tickets
            if scan.trades:
                result.closed_trades += len(scan.trades)
                self._log_event("progression_updated", system=system, seq=state.progression.seq,
                                stock=state.progression.stock, next_lot=state.progression.next_lot())
                if self.metrics:
                    self.metrics.set_risk_factor(system, state.progression.next_lot())

    def _finish(self, result: CycleResult, start: float) -> CycleResult:
        elapsed = time.perf_counter() - start
        result.duration_ms = elapsed * 1000.0
        if self.metrics:
            self.metrics.observe_cycle(elapsed)
        self._log_event("cycle_end", cycle=self._cycle_count, submitted=result.submitted,
                        cancelled=result.cancelled, closed=result.closed_trades,
                        errors=len(result.errors), duration_ms=round(result.duration_ms, 3))
        return result

    def _isolate(self, system: str, where: str, error: Exception, result: CycleResult) -> None:
        result.errors.append(f"{system}: {where}: {error}")
        self._log_event("system_cycle_error", system=system, where=where, err=str(error))
        if self.metrics:
            self.metrics.cycle_error(system)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def lot_for(self, state: SystemState) -> float:
        user_max = self.settings.user_max_lot or None
        return calc_lot(self.settings.base_lot, state.progression.next_lot(),
                        self.settings.lot_limits(), user_max)

    def _market_entry(self, state: SystemState, side: str, quote: Quote, positions: List[Position]) -> SubmitResult:
        cfg = self.settings
        price = round(quote.entry_price(side), quote.digits)
        sl, tp = grid_stops(side, price, cfg.grid_distance, quote.digits)
        seq = list(state.progression.seq)
        request = OrderRequest(
            system=state.system,
            side=side,
            kind=OrderKind.MARKET,
            price=price,
            lots=self.lot_for(state),
            sl=sl,
            tp=tp,
            comment=self.codec.encode(state.system, seq),
            sequence=seq,
        )
        decision = self.gate.evaluate(
            price,
            side == BUY,
            quote.spread_pips,
            distance_to_existing_positions(price, side == BUY, positions, quote.pip, quote.point),
            has_position=False,
            system=state.system,
        )
        if not decision.allowed:
            return SubmitResult(SubmitStatus.GATE_DENIED, request, error=decision.reason.value, gate=decision)
        return self.executor.submit(request, quote, cfg.grid_distance, positions)

    def _establish_pair(self, state: SystemState, quote: Quote, positions: List[Position]):
        seq = list(state.progression.seq)
        return self.oco.establish_pair(
            state.system,
            reference=quote.mid,
            quote=quote,
            grid_distance=self.settings.grid_distance,
            lots=self.lot_for(state),
            comment=self.codec.encode(state.system, seq),
            sequence=seq,
            positions=positions,
        )

    def ensure_tpsl(self, pos: Position, quote: Optional[Quote] = None) -> bool:
        """
        Hold SL/TP at open -/+ grid. Modifies only when off by more than the
        tolerance. Returns True if a modify was sent.
        """
        digits = quote.digits if quote is not None else self.settings.digits
        desired_sl, desired_tp = grid_stops(pos.side, pos.open_price, self.settings.grid_distance, digits)
        tol = self.settings.tolerance_mode.tolerance(self.settings.pip)
        if within(pos.sl, desired_sl, tol) and within(pos.tp, desired_tp, tol):
            return False
        try:
            self.venue.modify(pos.ticket, desired_sl, desired_tp)
        except VenueError as e:
            self._log_event("modify_error", system=pos.system, ticket=pos.ticket, err=str(e))
            raise
        self._log_event("tpsl_modified", system=pos.system, ticket=pos.ticket,
                        old_sl=pos.sl, old_tp=pos.tp, sl=desired_sl, tp=desired_tp)
        return True

    def close_all(self, reason: str) -> CloseAllResult:
        """
        Cancel every pending order and close every position of this strategy.

        Each ticket is preceded by a quote refresh; a ticket whose refresh fails
        is skipped and the rest continue.
        """
        with self._lock:
            out = CloseAllResult(reason=reason)
            try:
                orders = self._own_orders()
                positions = self._own_positions()
            except VenueError as e:
                out.errors.append(f"scan: {e}")
                self._log_event("close_all_skip", reason=reason, where="scan", err=str(e))
                return out

            for order in orders:
                if not self._refresh_for(order.ticket, out):
                    continue
                try:
                    self.venue.cancel(order.ticket)
                    out.cancelled.append(order.ticket)
                    if self.metrics:
                        self.metrics.order_cancelled(order.system, reason)
                except VenueError as e:
                    out.errors.append(f"cancel {order.ticket}: {e}")
                    self._log_event("cancel_error", system=order.system, ticket=order.ticket, err=str(e))

            for pos in positions:
                if not self._refresh_for(pos.ticket, out):
                    continue
                try:
                    self.venue.close_position(pos.ticket)
                    out.closed.append(pos.ticket)
                except VenueError as e:
                    out.errors.append(f"close {pos.ticket}: {e}")
                    self._log_event("close_error", system=pos.system, ticket=pos.ticket, err=str(e))

            for system in self.systems:
                self.oco.forget(system)
            self._log_event("close_all", reason=reason, cancelled=out.cancelled, closed=out.closed,
                            skipped=out.skipped)
            return out

    def _refresh_for(self, ticket: int, out: CloseAllResult) -> bool:
        try:
            self.venue.refresh_quotes()
        except VenueError as e:
            out.skipped.append(ticket)
            self._log_event("close_all_skip", ticket=ticket, err=str(e))
            return False
        return True

    # ------------------------------------------------------------------
    # Persistence / status
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        if self.store is None:
            return
        self.store.save({
            "version": STATE_VERSION,
            "symbol": self.settings.symbol,
            "saved_at": time.time(),
            "systems": {s: st.to_dict() for s, st in self.systems.items()},
        })

    def get_stats(self) -> Dict[str, Any]:
        return {
            "symbol": self.settings.symbol,
            "started": self._started,
            "cycle_count": self._cycle_count,
            "systems": {
                s: {
                    "lifecycle": st.lifecycle.value,
                    "next_lot": st.progression.next_lot(),
                    "reentry": st.reentry.event if st.reentry else None,
                    "last_close_time": st.last_close_time,
                }
                for s, st in self.systems.items()
            },
            "oco_pairs": {s: list(p.tickets) for s, p in self.oco.pairs.items()},
            "circuit_breaker": self.circuit_breaker.get_state() if self.circuit_breaker else None,
        }
