"""
Column definitions for the markets and events tables.

Each column knows how to pull a sortable value out of a catalog row and how
to render it. Sorting and filtering live here so the Textual widgets only
repopulate.

Sort order: clicking a new column sorts it descending (ascending for text
columns), clicking the same column again flips it. Missing values always
sort last.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, NamedTuple, Sequence, TypeVar

from ..datafeed.catalog import Event, Market
from .formatting import (
    format_change,
    format_count,
    format_date,
    format_money,
    format_price,
    format_tags,
)

Row = TypeVar("Row", Market, Event)


class Column(NamedTuple):
    key: str
    label: str
    value: Callable[[Any], Any]
    render: Callable[[Any], str]
    text: bool = False  # sorts ascending on first click


def _text(limit: int) -> Callable[[Any], str]:
    return lambda value: (value or "")[:limit]


MARKET_COLUMNS: tuple[Column, ...] = (
    Column("question", "Question", lambda m: m.question, _text(80), text=True),
    Column("last", "Last", lambda m: m.last_trade_price, format_price),
    Column("bid", "Bid", lambda m: m.best_bid, format_price),
    Column("ask", "Ask", lambda m: m.best_ask, format_price),
    Column("change", "1d Δ", lambda m: m.one_day_price_change, format_change),
    Column("volume", "Volume", lambda m: m.volume, format_money),
    Column("volume_24hr", "24h Vol", lambda m: m.volume_24hr, format_money),
    Column("liquidity", "Liquidity", lambda m: m.liquidity_clob, format_money),
)

EVENT_COLUMNS: tuple[Column, ...] = (
    Column("title", "Title", lambda e: e.title, _text(60), text=True),
    Column("ticker", "Ticker", lambda e: e.ticker, _text(20), text=True),
    Column("markets", "Mkts", lambda e: len(e.markets), format_count),
    Column("volume", "Volume", lambda e: e.volume, format_money),
    Column("volume_24hr", "24h Vol", lambda e: e.volume_24hr, format_money),
    Column("volume_1wk", "1wk Vol", lambda e: e.volume_1wk, format_money),
    Column("volume_1mo", "1mo Vol", lambda e: e.volume_1mo, format_money),
    Column("volume_1yr", "1yr Vol", lambda e: e.volume_1yr, format_money),
    Column("liquidity", "Liquidity", lambda e: e.liquidity, format_money),
    Column("open_interest", "Open Int", lambda e: e.open_interest, format_money),
    Column("comments", "Comments", lambda e: e.comment_count, format_count),
    Column("tags", "Tags", lambda e: [t.label for t in e.tags if t.label], format_tags),
    Column("end_date", "Ends", lambda e: e.end_date, format_date, text=True),
)


def column(columns: Sequence[Column], key: str) -> Column:
    for col in columns:
        if col.key == key:
            return col
    raise KeyError(key)


class SortState:
    """Current sort column and direction for one table."""

    def __init__(self, key: str, descending: bool = True) -> None:
        self.key = key
        self.descending = descending

    def toggle(self, col: Column) -> None:
        if col.key == self.key:
            self.descending = not self.descending
        else:
            self.key = col.key
            self.descending = not col.text

    def describe(self, columns: Sequence[Column]) -> str:
        arrow = "↓" if self.descending else "↑"
        return f"{column(columns, self.key).label} {arrow}"


def _sort_value(value: Any) -> Any:
    if isinstance(value, str):
        return value.lower()
    if isinstance(value, list):
        return len(value)
    return value


def sort_rows(rows: Iterable[Row], col: Column, descending: bool) -> list[Row]:
    """Stable sort on one column; rows without a value go last either way."""
    present: list[tuple[Any, Row]] = []
    missing: list[Row] = []
    for row in rows:
        value = col.value(row)
        if value is None or value == "":
            missing.append(row)
        else:
            present.append((_sort_value(value), row))

    present.sort(key=lambda pair: pair[0], reverse=descending)
    return [row for _, row in present] + missing


def render_row(row: Market | Event, columns: Sequence[Column]) -> tuple[str, ...]:
    return tuple(col.render(col.value(row)) for col in columns)


def market_matches(market: Market, needle: str) -> bool:
    return needle in market.question.lower() or needle in market.slug.lower()


def event_matches(event: Event, needle: str) -> bool:
    if needle in event.title.lower() or needle in event.ticker.lower() or needle in event.slug.lower():
        return True
    return any(needle in tag.label.lower() for tag in event.tags)
