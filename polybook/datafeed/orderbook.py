"""
Local order book state for every instrument currently on screen.

HOT PATH: apply_delta() runs for every price change on the feed.

Performance strategy:
1. dict[Decimal, PriceLevel] per side for O(1) upsert/remove by price
2. Sorted views rebuilt lazily, only when a reader asks and the book is dirty
3. Read snapshots are cached immutable tuples until the next mutation
4. Instruments are indexed directly by id, so routing a frame is O(1)
"""

from __future__ import annotations

import time
from decimal import Decimal, InvalidOperation
from typing import Iterable

from ..types import InstrumentId, OrderBook, PriceLevel, Side

ZERO = Decimal(0)


def _to_decimal(value: str) -> Decimal:
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"not a decimal: {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"not a finite decimal: {value!r}")
    return result


class LiveBook:
    """
    Mutable book for one instrument.

    Thread-safety: NOT thread-safe. Mutated only from the event loop.
    """

    __slots__ = (
        'instrument', 'bids', 'asks', 'last_updated', 'stale',
        '_snapshot', '_update_count',
    )

    def __init__(self, instrument: InstrumentId) -> None:
        self.instrument = instrument

        # Core data: numeric price -> level as received
        self.bids: dict[Decimal, PriceLevel] = {}
        self.asks: dict[Decimal, PriceLevel] = {}

        self.last_updated: float = time.time()
        self.stale: bool = False

        # Cached read snapshot - None when dirty
        self._snapshot: OrderBook | None = None
        self._update_count: int = 0

    def replace(self, bids: Iterable[PriceLevel], asks: Iterable[PriceLevel]) -> None:
        """Replace both sides wholesale. Zero-size levels are dropped."""
        new_bids: dict[Decimal, PriceLevel] = {}
        new_asks: dict[Decimal, PriceLevel] = {}

        for level in bids:
            price, size = _to_decimal(level.price), _to_decimal(level.size)
            if size > ZERO:
                new_bids[price] = PriceLevel(level.price, level.size)

        for level in asks:
            price, size = _to_decimal(level.price), _to_decimal(level.size)
            if size > ZERO:
                new_asks[price] = PriceLevel(level.price, level.size)

        # Swap only after both sides parsed, so a bad level leaves the book intact
        self.bids = new_bids
        self.asks = new_asks
        self._touch()

    def apply(self, side: Side, price: str, size: str) -> None:
        """
        Upsert or remove one level.

        HOT PATH - called for every price change.
        """
        key = _to_decimal(price)
        qty = _to_decimal(size)
        book_side = self.bids if side is Side.BUY else self.asks

        if qty == ZERO:
            book_side.pop(key, None)
        else:
            book_side[key] = PriceLevel(price, size)

        self._touch()

    def _touch(self) -> None:
        self.last_updated = time.time()
        self.stale = False
        self._snapshot = None
        self._update_count += 1

    def mark_stale(self) -> None:
        if not self.stale:
            self.stale = True
            self._snapshot = None

    def snapshot(self) -> OrderBook:
        """Immutable sorted view. Rebuilt only if the book changed since the last read."""
        if self._snapshot is None:
            self._snapshot = OrderBook(
                instrument=self.instrument,
                bids=tuple(self.bids[p] for p in sorted(self.bids, reverse=True)),
                asks=tuple(self.asks[p] for p in sorted(self.asks)),
                last_updated=self.last_updated,
                stale=self.stale,
            )
        return self._snapshot

    @property
    def update_count(self) -> int:
        return self._update_count


class BookStore:
    """
    InstrumentId -> LiveBook.

    Entries are created when an instrument is selected (empty, then replaced
    by the REST snapshot), mutated by feed frames and deleted on deselection.
    """

    def __init__(self) -> None:
        self._books: dict[InstrumentId, LiveBook] = {}

    def seed(self, instrument: InstrumentId) -> None:
        """Create an empty book if the instrument has none yet."""
        if instrument not in self._books:
            self._books[instrument] = LiveBook(instrument)

    def apply_full_book(
        self,
        instrument: InstrumentId,
        bids: Iterable[PriceLevel],
        asks: Iterable[PriceLevel],
    ) -> None:
        """Replace the instrument's book unconditionally. Last snapshot wins."""
        book = self._books.get(instrument)
        if book is None:
            book = self._books[instrument] = LiveBook(instrument)
        book.replace(bids, asks)

    def apply_delta(self, instrument: InstrumentId, side: Side | str, price: str, size: str) -> None:
        """
        Apply one level change.

        size == 0 removes the level (no-op if absent); anything else upserts.
        Applying the same change twice leaves the same state as applying it once.
        """
        book = self._books.get(instrument)
        if book is None:
            book = self._books[instrument] = LiveBook(instrument)
        book.apply(Side(side), price, size)

    def remove(self, instrument: InstrumentId) -> None:
        self._books.pop(instrument, None)

    def mark_stale(self, instruments: Iterable[InstrumentId] | None = None) -> None:
        """Flag books as possibly out of date (e.g. after a disconnect)."""
        targets = self._books.keys() if instruments is None else instruments
        for instrument in list(targets):
            book = self._books.get(instrument)
            if book is not None:
                book.mark_stale()

    def get(self, instrument: InstrumentId) -> OrderBook | None:
        book = self._books.get(instrument)
        return book.snapshot() if book is not None else None

    @property
    def instruments(self) -> frozenset[InstrumentId]:
        return frozenset(self._books)

    def total_updates(self) -> int:
        return sum(book.update_count for book in self._books.values())

    def __contains__(self, instrument: object) -> bool:
        return instrument in self._books

    def __len__(self) -> int:
        return len(self._books)
