"""
Per-system strategy memory.

Lifecycle of one logical system, driven once per cycle by "does a live position
exist for this system":

    prior              no position   position
    None               Missing       Alive
    Alive              Missing       Alive
    Missing            Missing       MissingRecovered
    MissingRecovered   Missing       Alive

MissingRecovered means a position reappeared while the system was missing
(typically a shadow leg filled); it suppresses any pending re-entry so the
system is not entered twice.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Set

from movecatcher.core.models import ClosedTrade, opposite
from movecatcher.risk.decomp_mc import DecompMC


class Lifecycle(Enum):
    NONE = "None"
    ALIVE = "Alive"
    MISSING = "Missing"
    MISSING_RECOVERED = "MissingRecovered"


# prior -> {exists: next}
LIFECYCLE_TRANSITIONS: Dict[Lifecycle, Dict[bool, Lifecycle]] = {
    Lifecycle.NONE: {False: Lifecycle.MISSING, True: Lifecycle.ALIVE},
    Lifecycle.ALIVE: {False: Lifecycle.MISSING, True: Lifecycle.ALIVE},
    Lifecycle.MISSING: {False: Lifecycle.MISSING, True: Lifecycle.MISSING_RECOVERED},
    Lifecycle.MISSING_RECOVERED: {False: Lifecycle.MISSING, True: Lifecycle.ALIVE},
}


def next_lifecycle(prior: Lifecycle, exists: bool) -> Lifecycle:
    return LIFECYCLE_TRANSITIONS[prior][bool(exists)]


REENTRY_EVENTS = {"TP": "TP_REVERSE", "SL": "SL_REENTRY"}


@dataclass
class ReentryIntent:
    """Market re-entry owed after a closure: reverse after TP, same side after SL."""
    side: str
    reason: str
    ticket: int
    close_time: int
    close_price: float

    @property
    def event(self) -> str:
        return REENTRY_EVENTS[self.reason]

    @classmethod
    def after(cls, trade: ClosedTrade) -> "ReentryIntent":
        side = opposite(trade.side) if trade.is_win else trade.side
        return cls(side=side, reason=trade.reason, ticket=trade.ticket,
                   close_time=trade.close_time, close_price=trade.close_price)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "side": self.side,
            "reason": self.reason,
            "ticket": self.ticket,
            "close_time": self.close_time,
            "close_price": self.close_price,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReentryIntent":
        return cls(
            side=str(data["side"]),
            reason=str(data["reason"]),
            ticket=int(data["ticket"]),
            close_time=int(data["close_time"]),
            close_price=float(data["close_price"]),
        )


@dataclass
class SystemState:
    system: str
    lifecycle: Lifecycle = Lifecycle.NONE
    previous: Lifecycle = Lifecycle.NONE
    last_close_time: int = 0
    processed_tickets: Set[int] = field(default_factory=set)
    progression: DecompMC = field(default_factory=DecompMC)
    reentry: Optional[ReentryIntent] = None

    def update_lifecycle(self, exists: bool) -> Lifecycle:
        self.previous = self.lifecycle
        self.lifecycle = next_lifecycle(self.lifecycle, exists)
        if self.lifecycle is Lifecycle.MISSING_RECOVERED:
            self.reentry = None
        return self.lifecycle

    @property
    def just_lost(self) -> bool:
        """Position disappeared this cycle; its closure is not folded in yet."""
        return self.lifecycle is Lifecycle.MISSING and self.previous in (
            Lifecycle.ALIVE, Lifecycle.MISSING_RECOVERED)

    @property
    def steadily_missing(self) -> bool:
        return self.lifecycle is Lifecycle.MISSING and self.previous in (
            Lifecycle.MISSING, Lifecycle.NONE)

    def apply_closed_trade(self, trade: ClosedTrade, reenter: bool = True) -> None:
        """Fold a closure into the progression; owe a re-entry unless a position is live again."""
        self.progression.on_trade(trade.is_win)
        if reenter:
            self.reentry = ReentryIntent.after(trade)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "system": self.system,
            "lifecycle": self.lifecycle.value,
            "previous": self.previous.value,
            "last_close_time": self.last_close_time,
            "processed_tickets": sorted(self.processed_tickets),
            "decomp_mc": self.progression.serialize(),
            "reentry": self.reentry.to_dict() if self.reentry else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SystemState":
        reentry = data.get("reentry")
        decomp = data.get("decomp_mc")
        return cls(
            system=str(data["system"]),
            lifecycle=Lifecycle(data.get("lifecycle", Lifecycle.NONE.value)),
            previous=Lifecycle(data.get("previous", Lifecycle.NONE.value)),
            last_close_time=int(data.get("last_close_time", 0)),
            processed_tickets={int(t) for t in data.get("processed_tickets", [])},
            progression=DecompMC.deserialize(decomp) if decomp else DecompMC(),
            reentry=ReentryIntent.from_dict(reentry) if reentry else None,
        )
