"""
Tests for the DecompMC progression.
"""

import pytest

from movecatcher.risk.decomp_mc import DecompMC


class TestProgression:
    """Win/loss updates."""

    def test_initial_state(self):
        mc = DecompMC()
        assert mc.seq == [0, 1]
        assert mc.stock == 0
        assert mc.streak == 0
        assert mc.next_lot() == 1

    def test_loss_appends_end_sum_and_resets_streak(self):
        mc = DecompMC(seq=[1, 2], streak=3)
        mc.on_trade(False)
        assert mc.seq == [1, 2, 3]
        assert mc.streak == 0
        assert mc.next_lot() == 4

    @pytest.mark.parametrize("seq", [[0, 1], [0, 1, 1], [1, 2], [0, 2, 3, 5], [2, 4, 7]])
    def test_factor_never_decreases_after_loss(self, seq):
        mc = DecompMC(seq=list(seq))
        before = mc.next_lot()
        mc.on_trade(False)
        assert mc.next_lot() >= before

    def test_win_on_short_sequence_banks_and_resets(self):
        mc = DecompMC(seq=[0, 5, 7], stock=1)
        mc.on_trade(True)
        assert mc.seq == [0, 1]
        assert mc.stock == 6
        assert mc.streak == 1

    def test_win_redistributes_left_and_stock(self):
        mc = DecompMC(seq=[0, 1, 2, 3], stock=5)
        mc.on_trade(True)
        # [1, 2] left; pool 1 + 5 = 6 over one slot
        assert mc.seq == [0, 8]
        assert mc.stock == 0

    def test_win_keeps_undivided_remainder_in_stock(self):
        mc = DecompMC(seq=[0, 1, 2, 3, 4])
        mc.on_trade(True)
        # [1, 2, 3] left; pool 1 over two slots
        assert mc.seq == [0, 2, 3]
        assert mc.stock == 1
        assert mc.next_lot() == 3

    def test_losses_then_win_raise_factor(self):
        mc = DecompMC()
        mc.on_trade(False)
        mc.on_trade(False)
        assert mc.seq == [0, 1, 1, 1]
        mc.on_trade(True)
        assert mc.seq == [0, 2]
        assert mc.next_lot() == 2


class TestSerialization:
    """serialize / deserialize."""

    def test_roundtrip(self):
        original = DecompMC(seq=[0, 1, 2, 3], stock=5, streak=7)
        data = original.serialize()
        assert data == "5|7|0,1,2,3"

        restored = DecompMC.deserialize(data)
        assert restored.seq == original.seq
        assert restored.stock == original.stock
        assert restored.streak == original.streak

    @pytest.mark.parametrize("data", ["1|2", "1|2|3", "a|b|1,2", "1|2|3|4"])
    def test_rejects_malformed(self, data):
        with pytest.raises(ValueError):
            DecompMC.deserialize(data)

    def test_restore_sequence(self):
        mc = DecompMC()
        mc.restore_sequence([0, 2, 3])
        assert mc.seq == [0, 2, 3]
        with pytest.raises(ValueError):
            mc.restore_sequence([4])
