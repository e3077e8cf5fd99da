"""
Domain records exchanged with the execution venue.

Sides are plain strings ("buy" / "sell") throughout, matching how the venue
reports them. Prices are floats already normalized to the symbol's digits.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional

from movecatcher.core.utils import pip_size, price_to_pips

BUY = "buy"
SELL = "sell"


def opposite(side: str) -> str:
    return SELL if side == BUY else BUY


class OrderKind(Enum):
    MARKET = "market"
    LIMIT = "limit"


@dataclass(frozen=True)
class Quote:
    """Bid/ask snapshot plus the symbol's price granularity."""
    bid: float
    ask: float
    point: float = 0.00001
    digits: int = 5

    @property
    def pip(self) -> float:
        return pip_size(self.point, self.digits)

    @property
    def spread_pips(self) -> float:
        return price_to_pips(self.ask - self.bid, self.pip, self.point)

    @property
    def mid(self) -> float:
        return round((self.bid + self.ask) / 2.0, self.digits)

    def entry_price(self, side: str) -> float:
        """Price a market order on this side would fill at."""
        return self.ask if side == BUY else self.bid


@dataclass
class Position:
    """An open trade owned by one logical system."""
    ticket: int
    system: str
    side: str
    open_time: int
    open_price: float
    lots: float
    sl: float = 0.0
    tp: float = 0.0
    comment: str = ""

    @property
    def is_buy(self) -> bool:
        return self.side == BUY


@dataclass
class PendingOrder:
    """An unfilled limit order."""
    ticket: int
    system: str
    side: str
    price: float
    lots: float = 0.0
    sl: float = 0.0
    tp: float = 0.0
    comment: str = ""

    @property
    def is_buy(self) -> bool:
        return self.side == BUY


@dataclass(frozen=True)
class TradeRecord:
    """A closed trade as reported by the venue's history."""
    ticket: int
    comment: str
    side: str
    open_price: float
    close_price: float
    close_time: int
    tp: float = 0.0
    sl: float = 0.0


@dataclass
class OrderRequest:
    """
    Strategy-level order intent before slippage is applied.

    `shadow` marks a speculative pending order placed alongside a market entry;
    it is gated with its own distance-band toggle.
    """
    system: str
    side: str
    kind: OrderKind
    price: float
    lots: float
    sl: float
    tp: float
    comment: str
    shadow: bool = False
    sequence: List[int] = field(default_factory=list)

    @property
    def is_buy(self) -> bool:
        return self.side == BUY

    def repriced(self, price: float, grid_distance: float, digits: int) -> "OrderRequest":
        """Move the entry to `price` and rebuild SL/TP at entry -/+ grid."""
        sl, tp = grid_stops(self.side, price, grid_distance, digits)
        return replace(self, price=round(price, digits), sl=sl, tp=tp)


@dataclass(frozen=True)
class OrderSpec:
    """What actually goes to the venue."""
    system: str
    side: str
    kind: OrderKind
    price: float
    lots: float
    sl: float
    tp: float
    comment: str
    slippage: int


def grid_stops(side: str, entry: float, grid_distance: float, digits: int) -> tuple:
    """
    SL/TP at one grid distance either side of the entry.

    buy: SL = entry - grid, TP = entry + grid; sell mirrored.
    """
    if side == BUY:
        sl = entry - grid_distance
        tp = entry + grid_distance
    else:
        sl = entry + grid_distance
        tp = entry - grid_distance
    return round(sl, digits), round(tp, digits)


@dataclass
class OcoLevels:
    """Entry and stop levels for both legs of a shadow OCO pair."""
    reference: float
    buy_entry: float
    buy_sl: float
    buy_tp: float
    sell_entry: float
    sell_sl: float
    sell_tp: float


@dataclass
class ClosedTrade:
    """A classified history record emitted by the close-trade scan."""
    ticket: int
    system: str
    side: str
    reason: str  # "TP" or "SL"
    close_time: int
    close_price: float
    open_price: float
    sequence: Optional[List[int]] = None

    @property
    def is_win(self) -> bool:
        return self.reason == "TP"
