"""
Duplicate-position correction, run once before the first cycle.

A system may hold at most one position. If a crash or a double fill left more,
the earliest (open time, then ticket) is kept and the rest are marked to close.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Tuple

from movecatcher.core.models import Position


def reconcile_duplicates(positions: Iterable[Position]) -> Tuple[List[Position], List[Position]]:
    """
    Split positions into (retained, to_close).

    Retained holds exactly one position per system; everything else for that
    system is in to_close. Order of both lists follows (open_time, ticket).
    """
    retained: Dict[str, Position] = {}
    to_close: List[Position] = []
    for pos in sorted(positions, key=lambda p: (p.open_time, p.ticket)):
        if pos.system in retained:
            to_close.append(pos)
        else:
            retained[pos.system] = pos
    return list(retained.values()), to_close


def group_by_system(positions: Iterable[Position]) -> Dict[str, List[Position]]:
    groups: Dict[str, List[Position]] = {}
    for pos in positions:
        groups.setdefault(pos.system, []).append(pos)
    return groups
