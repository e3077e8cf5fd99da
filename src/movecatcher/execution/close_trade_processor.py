"""
CloseTradeProcessor: fold a system's closed trades into its memory exactly once.

The history scan keeps a watermark (latest close time seen) plus the tickets
already handled at exactly that time. Several trades can close in the same
second, so the time alone cannot tell a new closure from a re-read one:

    close_time <  watermark                      skip
    close_time == watermark, ticket processed    skip
    otherwise                                    classify, emit, advance

Records are visited in (close_time, ticket) order, so feeding a result's
watermark and ticket set back in yields no new trades.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional, Set

from movecatcher.core.comment_codec import CommentCodec
from movecatcher.core.errors import MalformedIdentifier
from movecatcher.core.models import BUY, ClosedTrade, TradeRecord

log = logging.getLogger("movecatcher")

TP = "TP"
SL = "SL"


class ToleranceMode(Enum):
    HALF_PIP = 0.5
    FULL_PIP = 1.0

    def tolerance(self, pip: float) -> float:
        return pip * self.value


@dataclass
class CloseScanResult:
    trades: List[ClosedTrade] = field(default_factory=list)
    watermark: int = 0
    processed_tickets: Set[int] = field(default_factory=set)


def estimate_reason(record: TradeRecord, tolerance: float) -> str:
    """
    Classify a closed trade as "TP" or "SL".

    Order of evidence: close price within tolerance of a set TP, then of a set
    SL, then "tp"/"sl" in the comment (case-insensitive, TP first), then the
    direction of the move relative to the open price.
    """
    close_price = record.close_price
    if record.tp > 0 and abs(close_price - record.tp) <= tolerance:
        return TP
    if record.sl > 0 and abs(close_price - record.sl) <= tolerance:
        return SL

    comment = (record.comment or "").upper()
    if TP in comment:
        return TP
    if SL in comment:
        return SL

    if record.side == BUY:
        return TP if close_price >= record.open_price else SL
    return TP if close_price <= record.open_price else SL


def process_closed_trades(
    history: Iterable[TradeRecord],
    system: str,
    codec: CommentCodec,
    pip: float,
    watermark: int = 0,
    processed_tickets: Optional[Iterable[int]] = None,
    tolerance_mode: ToleranceMode = ToleranceMode.HALF_PIP,
    log_event: Optional[Callable[..., None]] = None,
) -> CloseScanResult:
    """
    Emit the system's closures that are newer than the watermark.

    Args:
        history: Venue history (any order, any systems)
        system: System tag to scan for
        codec: Identifies the system from the comment prefix
        pip: Pip size in price units
        watermark: Latest close time already folded in
        processed_tickets: Tickets already folded in at exactly `watermark`
        tolerance_mode: Half- or full-pip price matching
        log_event: Structured event sink

    Returns:
        CloseScanResult with the new trades, watermark and ticket set
    """
    emit = log_event or _default_log
    tolerance = tolerance_mode.tolerance(pip)
    new_watermark = watermark
    seen: Set[int] = set(processed_tickets or ())
    trades: List[ClosedTrade] = []

    own = [r for r in history if codec.belongs_to(r.comment, system)]
    for record in sorted(own, key=lambda r: (r.close_time, r.ticket)):
        if record.close_time < new_watermark:
            continue
        if record.close_time == new_watermark and record.ticket in seen:
            continue

        sequence = None
        try:
            sequence = codec.decode(record.comment).sequence
        except MalformedIdentifier as e:
            emit("malformed_identifier", system=system, ticket=record.ticket,
                 comment=record.comment, why=e.why)

        reason = estimate_reason(record, tolerance)
        trades.append(ClosedTrade(
            ticket=record.ticket,
            system=system,
            side=record.side,
            reason=reason,
            close_time=record.close_time,
            close_price=record.close_price,
            open_price=record.open_price,
            sequence=sequence,
        ))
        emit("trade_closed", system=system, ticket=record.ticket, reason=reason,
             close_time=record.close_time, close_price=record.close_price)

        if record.close_time > new_watermark:
            new_watermark = record.close_time
            seen = {record.ticket}
        else:
            seen.add(record.ticket)

    return CloseScanResult(trades=trades, watermark=new_watermark, processed_tickets=seen)


def _default_log(event: str, **kwargs: Any) -> None:
    log.info(json.dumps({"event": event, **kwargs}))
