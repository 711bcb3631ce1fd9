"""
Data types for PolyBook.

Prices and sizes travel as the decimal strings the venue sends; numeric
comparisons go through Decimal so "0.5" and "0.50" are the same level.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import NamedTuple

InstrumentId = str


class Side(str, Enum):
    """Book side as named on the feed. BUY = bids, SELL = asks."""
    BUY = "BUY"
    SELL = "SELL"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"
    ERRORED = "errored"


class PriceLevel(NamedTuple):
    """Single resting level on one side of a book."""
    price: str
    size: str

    @property
    def price_value(self) -> Decimal:
        return Decimal(self.price)

    @property
    def size_value(self) -> Decimal:
        return Decimal(self.size)


class OrderBook(NamedTuple):
    """
    Immutable read snapshot of one instrument's book.

    bids are sorted best first (descending), asks best first (ascending).
    """
    instrument: InstrumentId
    bids: tuple[PriceLevel, ...]
    asks: tuple[PriceLevel, ...]
    last_updated: float
    stale: bool = False

    @property
    def best_bid(self) -> Decimal | None:
        return self.bids[0].price_value if self.bids else None

    @property
    def best_ask(self) -> Decimal | None:
        return self.asks[0].price_value if self.asks else None

    @property
    def mid_price(self) -> Decimal | None:
        bb, ba = self.best_bid, self.best_ask
        if bb is not None and ba is not None:
            return (bb + ba) / 2
        return bb if bb is not None else ba

    @property
    def spread(self) -> Decimal | None:
        bb, ba = self.best_bid, self.best_ask
        if bb is None or ba is None:
            return None
        return ba - bb


class FullBook(NamedTuple):
    """Full-book record from the market feed. Replaces both sides."""
    instrument: InstrumentId
    bids: tuple[PriceLevel, ...]
    asks: tuple[PriceLevel, ...]
    market: str | None = None


class PriceChange(NamedTuple):
    """Single-level delta from the market feed. size "0" removes the level."""
    instrument: InstrumentId
    side: Side
    price: str
    size: str


class Fill(NamedTuple):
    """Trade on the user channel involving one of the user's orders."""
    trade_id: str
    instrument: InstrumentId
    side: Side
    price: str
    size: str
    outcome: str = ""
    status: str = ""
    market: str = ""


class DepthRow(NamedTuple):
    """One ladder row for rendering, with cumulative depth from the touch."""
    price: float
    size: float
    cumulative: float
    depth_ratio: float  # cumulative / total size on this side, 0..1
