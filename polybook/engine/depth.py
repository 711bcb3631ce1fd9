"""
Cumulative depth for the ladder view.

Each side is walked outward from the touch; every row carries the running
total and its share of the whole side, which the UI uses for bar shading.

Performance strategy:
1. One numpy cumsum per side instead of a Python running total
2. Only the visible `limit` rows are converted to DepthRow objects
"""

from __future__ import annotations

from typing import NamedTuple, Sequence

import numpy as np

from ..types import DepthRow, OrderBook, PriceLevel


class DepthLadder(NamedTuple):
    """Display-ready book: asks (best first) and bids (best first)."""
    instrument: str
    asks: list[DepthRow]
    bids: list[DepthRow]
    best_bid: float
    best_ask: float
    spread: float
    max_cumulative: float  # largest cumulative over both sides, for shared bar scaling
    stale: bool


def build_depth(levels: Sequence[PriceLevel], limit: int | None = None) -> list[DepthRow]:
    """
    Rows with cumulative size from the touch outward.

    `levels` must already be sorted best first (as OrderBook provides).
    depth_ratio is relative to the whole side, not just the visible rows.
    """
    if not levels:
        return []

    prices = np.fromiter((float(level.price) for level in levels), dtype=np.float64, count=len(levels))
    sizes = np.fromiter((float(level.size) for level in levels), dtype=np.float64, count=len(levels))
    cumulative = np.cumsum(sizes)
    total = cumulative[-1]
    ratios = cumulative / total if total > 0 else np.zeros_like(cumulative)

    count = len(levels) if limit is None else min(limit, len(levels))
    return [
        DepthRow(
            price=float(prices[i]),
            size=float(sizes[i]),
            cumulative=float(cumulative[i]),
            depth_ratio=float(ratios[i]),
        )
        for i in range(count)
    ]


def build_ladder(book: OrderBook, levels: int = 15) -> DepthLadder:
    """Both sides of `book`, truncated to `levels` rows each."""
    asks = build_depth(book.asks, levels)
    bids = build_depth(book.bids, levels)

    best_bid = bids[0].price if bids else 0.0
    best_ask = asks[0].price if asks else 0.0
    spread = best_ask - best_bid if bids and asks else 0.0
    max_cumulative = max(
        asks[-1].cumulative if asks else 0.0,
        bids[-1].cumulative if bids else 0.0,
    )

    return DepthLadder(
        instrument=book.instrument,
        asks=asks,
        bids=bids,
        best_bid=best_bid,
        best_ask=best_ask,
        spread=spread,
        max_cumulative=max_cumulative,
        stale=book.stale,
    )
