"""
End-to-end tests for StrategyController against the in-memory venue.
"""

import pytest
from prometheus_client import CollectorRegistry

from conftest import MockVenue, make_controller

from movecatcher.config.config import Settings
from movecatcher.core.comment_codec import CommentCodec
from movecatcher.core.errors import (
    ReconciliationConflict,
    VenueFatalError,
    VenueTimeoutError,
    VenueTransientError,
)
from movecatcher.core.models import Position, Quote, TradeRecord
from movecatcher.factory import ControllerOptions, build_controller
from movecatcher.state.state_store import StateStore
from movecatcher.state.system_state import Lifecycle, ReentryIntent

CODEC = CommentCodec()
WIDE = Quote(bid=1.10000, ask=1.10050)


def _pos(ticket, system, open_time, side="buy", open_price=1.10000, seq=(0, 1), sl=0.0, tp=0.0):
    return Position(ticket=ticket, system=system, side=side, open_time=open_time,
                    open_price=open_price, lots=0.01, sl=sl, tp=tp,
                    comment=CODEC.encode(system, list(seq)))


def _initialized(settings, venue, quote, store=None):
    controller, recorder = make_controller(settings, venue, store=store)
    controller.startup()
    assert controller.init_strategy(quote)
    controller.run_cycle(quote)
    return controller, recorder


class TestStartup:
    """Duplicate correction and restore."""

    def test_closes_later_duplicates(self, settings, venue):
        venue.positions = [_pos(1, "A", 1), _pos(2, "A", 2), _pos(3, "B", 1)]
        controller, recorder = make_controller(settings, venue)

        retained = controller.startup()

        assert sorted(p.ticket for p in retained) == [1, 3]
        assert venue.closed == [2]
        assert recorder.of("duplicate_closed")[0]["ticket"] == 2
        assert controller.systems["A"].lifecycle is Lifecycle.ALIVE

    def test_duplicate_closure_does_not_feed_progression(self, settings, venue, quote):
        venue.positions = [_pos(1, "A", 1, tp=1.11, sl=1.09), _pos(2, "A", 2, tp=1.11, sl=1.09)]
        controller, _ = make_controller(settings, venue)
        controller.startup()
        venue.history.append(TradeRecord(ticket=2, comment=CODEC.encode("A", [0, 1]), side="buy",
                                         open_price=1.1, close_price=1.09, close_time=50,
                                         tp=1.11, sl=1.09))

        result = controller.run_cycle(quote)

        assert result.closed_trades == 0
        assert controller.systems["A"].progression.seq == [0, 1]

    def test_conflict_when_duplicate_cannot_be_closed(self, settings, venue):
        venue.positions = [_pos(1, "A", 1), _pos(2, "A", 2)]
        venue.close_errors[2] = VenueFatalError("trade disabled")
        controller, recorder = make_controller(settings, venue)

        with pytest.raises(ReconciliationConflict) as exc:
            controller.startup()

        assert exc.value.system == "A"
        assert recorder.of("reconciliation_conflict")[0]["tickets"] == [1, 2]

    def test_sequence_restored_from_live_comment(self, settings, venue):
        venue.positions = [_pos(1, "A", 1, seq=[0, 1, 2, 3])]
        controller, recorder = make_controller(settings, venue)

        controller.startup()

        assert controller.systems["A"].progression.seq == [0, 1, 2, 3]
        assert controller.systems["A"].progression.next_lot() == 3
        assert "sequence_restored" in recorder.names()

    def test_fresh_state_skips_old_history(self, settings, venue, quote):
        venue.history.append(TradeRecord(ticket=77, comment=CODEC.encode("A", [0, 1]), side="buy",
                                         open_price=1.1, close_price=1.09, close_time=40,
                                         tp=1.11, sl=1.09))
        controller, _ = make_controller(settings, venue)
        controller.startup()

        result = controller.run_cycle(quote)

        assert result.closed_trades == 0
        assert controller.systems["A"].last_close_time == 40
        assert controller.systems["A"].reentry is None

    def test_run_cycle_requires_startup(self, settings, venue, quote):
        controller, _ = make_controller(settings, venue)
        with pytest.raises(RuntimeError):
            controller.run_cycle(quote)


class TestInit:
    """First entry on an empty account."""

    def test_primary_at_market_others_paired(self, settings, venue, quote):
        controller, recorder = make_controller(settings, venue)
        controller.startup()

        assert controller.init_strategy(quote) is True

        assert [(p.system, p.side, p.open_price) for p in venue.positions] == [("A", "buy", 1.10010)]
        assert venue.positions[0].sl == 1.09010
        assert venue.positions[0].tp == 1.11010
        assert venue.positions[0].comment == "MoveCatcher_A_AB"
        assert [(o.system, o.side, o.price) for o in venue.orders] == [
            ("B", "buy", 1.09005),
            ("B", "sell", 1.11005),
        ]
        assert controller.oco.pairs["B"].tickets == (1002, 1003)
        assert recorder.of("init_primary")[0]["status"] == "submitted"

    def test_second_init_is_noop(self, settings, venue, quote):
        controller, recorder = make_controller(settings, venue)
        controller.startup()
        controller.init_strategy(quote)
        calls = venue.submit_calls

        assert controller.init_strategy(quote) is False
        assert venue.submit_calls == calls
        assert "init_skipped" in recorder.names()

    def test_initial_side_sell(self, tmp_path, venue, quote):
        settings = Settings(state_dir=str(tmp_path), initial_side="sell")
        controller, _ = make_controller(settings, venue)
        controller.startup()
        controller.init_strategy(quote)

        assert venue.positions[0].side == "sell"
        assert venue.positions[0].open_price == 1.10000


class TestReentry:
    """Closures drive the next entry one cycle later."""

    def test_take_profit_reverses(self, settings, venue, quote):
        controller, recorder = _initialized(settings, venue, quote)
        venue.settle(1001, close_price=1.11010, close_time=100)

        second = controller.run_cycle(quote)
        assert second.closed_trades == 1
        assert second.submitted == 0
        assert controller.systems["A"].reentry.side == "sell"

        third = controller.run_cycle(quote)

        assert third.submitted == 1
        assert controller.systems["A"].reentry is None
        new = venue.positions[-1]
        assert (new.system, new.side, new.open_price) == ("A", "sell", 1.10000)
        assert (new.sl, new.tp) == (1.11000, 1.09000)
        assert recorder.of("TP_REVERSE")[0]["closed_ticket"] == 1001

    def test_stop_loss_reenters_same_side(self, settings, venue, quote):
        controller, recorder = _initialized(settings, venue, quote)
        venue.settle(1001, close_price=1.09010, close_time=100)

        controller.run_cycle(quote)
        controller.run_cycle(quote)

        assert venue.positions[-1].side == "buy"
        assert recorder.of("SL_REENTRY")[0]["side"] == "buy"
        assert controller.systems["A"].progression.seq == [0, 1, 1]
        assert venue.positions[-1].comment == CODEC.encode("A", [0, 1, 1])

    def test_lot_follows_progression(self, tmp_path, venue, quote):
        settings = Settings(state_dir=str(tmp_path), base_lot=0.1)
        controller, _ = _initialized(settings, venue, quote)
        controller.systems["A"].progression.seq = [0, 1, 1, 1]
        venue.settle(1001, close_price=1.11010, close_time=100)

        controller.run_cycle(quote)
        controller.run_cycle(quote)

        assert controller.systems["A"].progression.seq == [0, 2]
        assert venue.positions[-1].lots == 0.2

    def test_gate_denial_keeps_intent(self, settings, venue, quote):
        controller, _ = _initialized(settings, venue, quote)
        venue.settle(1001, close_price=1.09010, close_time=100)
        controller.run_cycle(quote)

        denied = controller.run_cycle(WIDE)
        assert denied.gate_denials == 1
        assert controller.systems["A"].reentry is not None

        retried = controller.run_cycle(quote)
        assert retried.submitted == 1
        assert controller.systems["A"].reentry is None

    def test_indeterminate_submission_drops_intent(self, settings, venue, quote):
        controller, _ = _initialized(settings, venue, quote)
        venue.settle(1001, close_price=1.09010, close_time=100)
        controller.run_cycle(quote)
        venue.submit_errors = [VenueTimeoutError("no reply")]

        result = controller.run_cycle(quote)

        assert controller.systems["A"].reentry is None
        assert any("indeterminate" in e for e in result.errors)
        assert venue.submit_calls == 4

    def test_leg_filled_and_stopped_between_cycles(self, settings, venue, quote):
        """The closure is folded in before the system places anything new."""
        controller, recorder = _initialized(settings, venue, quote)
        leg = venue.fill_limit(1002, open_time=5)
        venue.settle(1002, close_price=leg.sl, close_time=100)

        held = controller.run_cycle(quote)

        state = controller.systems["B"]
        assert 1003 in venue.cancelled
        assert held.submitted == 0
        assert [o for o in venue.orders if o.system == "B"] == []
        assert state.progression.seq == [0, 1, 1]
        assert state.reentry.side == "buy"
        assert recorder.of("submission_held")[0]["system"] == "B"

        controller.run_cycle(quote)

        assert state.reentry is None
        assert recorder.of("SL_REENTRY")[0]["system"] == "B"
        new = venue.positions[-1]
        assert (new.system, new.side) == ("B", "buy")
        assert new.comment == CODEC.encode("B", [0, 1, 1])
        assert [o for o in venue.orders if o.system == "B"] == []

    def test_recovered_position_suppresses_reentry(self, settings, venue, quote):
        controller, _ = make_controller(settings, venue)
        controller.startup()
        controller.run_cycle(quote)  # both systems missing: pairs placed
        state = controller.systems["A"]
        state.reentry = ReentryIntent(side="sell", reason="TP", ticket=1, close_time=1, close_price=1.1)
        venue.fill_limit(1001, open_time=9)

        result = controller.run_cycle(quote)

        assert state.lifecycle is Lifecycle.MISSING_RECOVERED
        assert state.reentry is None
        assert result.submitted == 0
        assert 1002 in venue.cancelled


class TestShadowPairs:
    """Systems without position or legs get a pair."""

    def test_steadily_missing_systems_get_pairs(self, settings, venue, quote):
        controller, _ = make_controller(settings, venue)
        controller.startup()

        result = controller.run_cycle(quote)

        assert result.submitted == 4
        assert sorted(controller.oco.pairs) == ["A", "B"]
        assert len(venue.orders) == 4

    def test_wide_spread_defers_pairs(self, settings, venue):
        controller, _ = make_controller(settings, venue)
        controller.startup()

        result = controller.run_cycle(WIDE)

        assert result.submitted == 0
        assert result.gate_denials == 2
        assert venue.orders == []

    def test_filled_leg_becomes_position(self, settings, venue, quote):
        controller, _ = _initialized(settings, venue, quote)
        venue.fill_limit(1003, open_time=5)

        result = controller.run_cycle(quote)

        assert result.cancelled == 1
        assert venue.orders == []
        assert controller.systems["B"].lifecycle is Lifecycle.MISSING_RECOVERED


class TestProtection:
    """SL/TP enforcement and error isolation."""

    def test_missing_stops_are_set(self, settings, venue, quote):
        venue.positions = [_pos(500, "A", 1, open_price=1.10000)]
        controller, recorder = make_controller(settings, venue)
        controller.startup()

        result = controller.run_cycle(quote)

        assert result.modified == 1
        assert venue.modified == [(500, 1.09, 1.11)]
        assert "tpsl_modified" in recorder.names()

    def test_stops_within_tolerance_left_alone(self, settings, venue, quote):
        venue.positions = [_pos(500, "A", 1, open_price=1.10000, sl=1.09003, tp=1.10998)]
        controller, _ = make_controller(settings, venue)
        controller.startup()

        controller.run_cycle(quote)

        assert venue.modified == []

    def test_error_in_one_system_does_not_stop_others(self, settings, venue, quote):
        venue.positions = [_pos(500, "A", 1)]
        venue.modify_errors[500] = VenueTransientError("busy")
        controller, recorder = make_controller(settings, venue)
        controller.startup()

        result = controller.run_cycle(quote)

        assert any(e.startswith("A: detect") for e in result.errors)
        assert "B" in controller.oco.pairs
        assert recorder.of("system_cycle_error")[0]["system"] == "A"

    def test_duplicate_mid_run_raises(self, settings, venue, quote):
        controller, recorder = _initialized(settings, venue, quote)
        venue.positions.append(_pos(900, "A", 50))

        with pytest.raises(ReconciliationConflict):
            controller.run_cycle(quote)
        assert "reconciliation_conflict" in recorder.names()

    def test_scan_failure_fails_cycle(self, settings, quote):
        class BrokenScanVenue(MockVenue):
            def query_open_positions(self):
                raise VenueTransientError("no connection")

        venue = BrokenScanVenue(quote)
        controller, _ = make_controller(settings, venue)
        controller._started = True

        result = controller.run_cycle(quote)

        assert result.success is False
        assert result.errors[0].startswith("scan")


class TestCloseAll:
    """Emergency flatten."""

    def test_skips_ticket_whose_refresh_fails(self, settings, venue, quote):
        controller, recorder = _initialized(settings, venue, quote)
        venue.refresh_errors = [VenueTransientError("no quote")]

        out = controller.close_all("manual")

        assert out.skipped == [1002]
        assert out.cancelled == [1003]
        assert out.closed == [1001]
        assert controller.oco.pairs == {}
        assert recorder.of("close_all")[0]["reason"] == "manual"


class TestPersistence:
    """State survives a restart."""

    def test_owed_reentry_survives_restart(self, settings, venue, quote):
        store = StateStore(settings.symbol, settings.state_dir)
        controller, _ = _initialized(settings, venue, quote, store=store)
        venue.settle(1001, close_price=1.09010, close_time=100)
        controller.run_cycle(quote)

        restarted, recorder = make_controller(settings, venue, store=StateStore(settings.symbol, settings.state_dir))
        restarted.startup()
        result = restarted.run_cycle(quote)

        assert result.closed_trades == 0
        assert result.submitted == 1
        assert recorder.of("SL_REENTRY")[0]["side"] == "buy"
        assert restarted.systems["A"].progression.seq == [0, 1, 1]

    def test_saved_file_layout(self, settings, venue, quote):
        store = StateStore(settings.symbol, settings.state_dir)
        _initialized(settings, venue, quote, store=store)

        data = store.load()

        assert data["version"] == 1
        assert data["symbol"] == "EURUSD"
        assert sorted(data["systems"]) == ["A", "B"]
        assert data["systems"]["A"]["decomp_mc"] == "0|0|0,1"


class TestFactory:

    def test_build_controller_wires_metrics(self, settings, venue, quote):
        registry = CollectorRegistry()
        controller = build_controller(settings, venue, ControllerOptions(persist=False, registry=registry))

        controller.startup()
        controller.init_strategy(quote)
        controller.run_cycle(quote)

        assert controller.store is None
        assert registry.get_sample_value(
            "mc_orders_submitted_total", {"symbol": "EURUSD", "system": "A", "kind": "market"}) == 1
        assert registry.get_sample_value(
            "mc_orders_submitted_total", {"symbol": "EURUSD", "system": "B", "kind": "limit"}) == 2
        stats = controller.get_stats()
        assert stats["systems"]["A"]["lifecycle"] == "MissingRecovered"
        assert stats["oco_pairs"] == {"B": [1002, 1003]}
        assert stats["circuit_breaker"]["tripped"] is False

    def test_build_controller_refuses_invalid_settings(self, tmp_path, venue, caplog):
        settings = Settings(state_dir=str(tmp_path), lot_min=2.0, lot_max=1.0)

        with pytest.raises(ValueError, match="validation failed"):
            build_controller(settings, venue, ControllerOptions(persist=False, registry=CollectorRegistry()))
        assert any("lot_min" in r.getMessage() for r in caplog.records)
