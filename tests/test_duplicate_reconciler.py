"""
Tests for duplicate-position correction.
"""

from movecatcher.core.models import Position
from movecatcher.execution.duplicate_reconciler import group_by_system, reconcile_duplicates


def _pos(ticket, system, open_time):
    return Position(ticket=ticket, system=system, side="buy", open_time=open_time,
                    open_price=1.1, lots=0.1)


class TestReconcileDuplicates:
    """Earliest position per system survives."""

    def test_keeps_earliest_per_system(self):
        positions = [
            _pos(1, "A", 1),
            _pos(2, "A", 2),
            _pos(3, "B", 1),
        ]

        retained, to_close = reconcile_duplicates(positions)

        assert sorted(p.ticket for p in retained) == [1, 3]
        assert [p.ticket for p in to_close] == [2]

    def test_input_order_does_not_matter(self):
        positions = [_pos(2, "A", 2), _pos(3, "B", 1), _pos(1, "A", 1)]

        retained, to_close = reconcile_duplicates(positions)

        assert sorted(p.ticket for p in retained) == [1, 3]
        assert [p.ticket for p in to_close] == [2]

    def test_ticket_breaks_open_time_tie(self):
        positions = [_pos(8, "A", 5), _pos(7, "A", 5), _pos(9, "A", 5)]

        retained, to_close = reconcile_duplicates(positions)

        assert [p.ticket for p in retained] == [7]
        assert [p.ticket for p in to_close] == [8, 9]

    def test_no_duplicates(self):
        retained, to_close = reconcile_duplicates([_pos(1, "A", 1), _pos(2, "B", 1)])
        assert len(retained) == 2
        assert to_close == []

    def test_empty(self):
        assert reconcile_duplicates([]) == ([], [])


def test_group_by_system():
    groups = group_by_system([_pos(1, "A", 1), _pos(2, "B", 1), _pos(3, "A", 2)])
    assert {k: [p.ticket for p in v] for k, v in groups.items()} == {"A": [1, 3], "B": [2]}
