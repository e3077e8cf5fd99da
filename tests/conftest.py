"""
Pytest configuration and fixtures.
Adds src/ to Python path so tests can import the package without installing it.
"""

import sys
from pathlib import Path

repo_root = Path(__file__).parent.parent
src_path = repo_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from typing import Dict, List, Optional  # noqa: E402

import pytest  # noqa: E402

from movecatcher.config.config import Settings  # noqa: E402
from movecatcher.core.models import (  # noqa: E402
    OrderKind,
    OrderSpec,
    PendingOrder,
    Position,
    Quote,
    TradeRecord,
)
from movecatcher.execution.entry_gate import EntryGate  # noqa: E402
from movecatcher.execution.oco_detector import OCODetector  # noqa: E402
from movecatcher.execution.order_retry import OrderRetryExecutor  # noqa: E402
from movecatcher.orchestrator.strategy_controller import StrategyController  # noqa: E402
from movecatcher.risk.circuit_breaker import CircuitBreaker  # noqa: E402


class EventRecorder:
    """log_event stand-in that keeps every (event, data) pair."""

    def __init__(self):
        self.events: List[tuple] = []

    def __call__(self, event, **data):
        self.events.append((event, data))

    def names(self) -> List[str]:
        return [e for e, _ in self.events]

    def of(self, name: str) -> List[dict]:
        return [d for e, d in self.events if e == name]


class MockVenue:
    """
    In-memory ExecutionApi.

    Market orders fill immediately at the requested price; limit orders rest
    until a test moves them. `submit_errors` and `refresh_errors` are consumed
    one entry per call; a None entry means that call succeeds.
    """

    def __init__(self, quote: Optional[Quote] = None):
        self.quote = quote or Quote(bid=1.10000, ask=1.10010)
        self.positions: List[Position] = []
        self.orders: List[PendingOrder] = []
        self.history: List[TradeRecord] = []
        self.submitted: List[OrderSpec] = []
        self.submit_calls = 0
        self.cancelled: List[int] = []
        self.closed: List[int] = []
        self.modified: List[tuple] = []
        self.submit_errors: List[Optional[Exception]] = []
        self.refresh_errors: List[Optional[Exception]] = []
        self.cancel_errors: Dict[int, Exception] = {}
        self.close_errors: Dict[int, Exception] = {}
        self.modify_errors: Dict[int, Exception] = {}
        self.refresh_calls = 0
        self._next_ticket = 1000
        self._clock = 0

    def _ticket(self) -> int:
        self._next_ticket += 1
        return self._next_ticket

    def submit(self, spec: OrderSpec) -> int:
        self.submit_calls += 1
        if self.submit_errors:
            err = self.submit_errors.pop(0)
            if err is not None:
                raise err
        ticket = self._ticket()
        self.submitted.append(spec)
        if spec.kind is OrderKind.MARKET:
            self._clock += 1
            self.positions.append(Position(
                ticket=ticket, system=spec.system, side=spec.side, open_time=self._clock,
                open_price=spec.price, lots=spec.lots, sl=spec.sl, tp=spec.tp, comment=spec.comment,
            ))
        else:
            self.orders.append(PendingOrder(
                ticket=ticket, system=spec.system, side=spec.side, price=spec.price,
                lots=spec.lots, sl=spec.sl, tp=spec.tp, comment=spec.comment,
            ))
        return ticket

    def cancel(self, ticket: int) -> None:
        if ticket in self.cancel_errors:
            raise self.cancel_errors[ticket]
        self.cancelled.append(ticket)
        self.orders = [o for o in self.orders if o.ticket != ticket]

    def modify(self, ticket: int, sl: float, tp: float) -> None:
        if ticket in self.modify_errors:
            raise self.modify_errors[ticket]
        self.modified.append((ticket, sl, tp))
        for p in self.positions:
            if p.ticket == ticket:
                p.sl, p.tp = sl, tp

    def close_position(self, ticket: int) -> None:
        if ticket in self.close_errors:
            raise self.close_errors[ticket]
        self.closed.append(ticket)
        self.positions = [p for p in self.positions if p.ticket != ticket]

    def query_open_positions(self) -> List[Position]:
        return list(self.positions)

    def query_open_orders(self) -> List[PendingOrder]:
        return list(self.orders)

    def query_history(self, since: int) -> List[TradeRecord]:
        return [r for r in self.history if r.close_time >= since]

    def refresh_quotes(self) -> Quote:
        self.refresh_calls += 1
        if self.refresh_errors:
            err = self.refresh_errors.pop(0)
            if err is not None:
                raise err
        return self.quote

    # --- test helpers ---

    def fill_limit(self, ticket: int, open_time: int = 0) -> Position:
        """Turn a resting limit order into a position."""
        order = next(o for o in self.orders if o.ticket == ticket)
        self.orders = [o for o in self.orders if o.ticket != ticket]
        pos = Position(ticket=ticket, system=order.system, side=order.side, open_time=open_time,
                       open_price=order.price, lots=order.lots, sl=order.sl, tp=order.tp,
                       comment=order.comment)
        self.positions.append(pos)
        return pos

    def settle(self, ticket: int, close_price: float, close_time: int) -> TradeRecord:
        """Close a position as the venue would (stop or target hit) and record history."""
        pos = next(p for p in self.positions if p.ticket == ticket)
        self.positions = [p for p in self.positions if p.ticket != ticket]
        record = TradeRecord(ticket=pos.ticket, comment=pos.comment, side=pos.side,
                             open_price=pos.open_price, close_price=close_price,
                             close_time=close_time, tp=pos.tp, sl=pos.sl)
        self.history.append(record)
        return record


def build_components(settings: Settings, venue: MockVenue, recorder: EventRecorder, breaker=None):
    gate = EntryGate(settings.gate_config(), log_event=recorder)
    executor = OrderRetryExecutor(venue, settings.execution_config(), gate,
                                  circuit_breaker=breaker, log_event=recorder)
    oco = OCODetector(venue, gate, executor, log_event=recorder)
    return gate, executor, oco


def make_controller(settings: Settings, venue: MockVenue, store=None, breaker=None):
    recorder = EventRecorder()
    gate, executor, oco = build_components(settings, venue, recorder, breaker)
    controller = StrategyController(settings, venue, gate, executor, oco, store=store,
                                    circuit_breaker=breaker, log_event=recorder)
    return controller, recorder


@pytest.fixture
def quote():
    return Quote(bid=1.10000, ask=1.10010)


@pytest.fixture
def venue(quote):
    return MockVenue(quote)


@pytest.fixture
def settings(tmp_path):
    return Settings(state_dir=str(tmp_path), max_spread_pips=2.0)


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def breaker():
    return CircuitBreaker()
