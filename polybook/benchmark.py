#!/usr/bin/env python3
"""
Micro-benchmark for PolyBook's hot paths.

Tests:
1. Price-change application throughput (BookStore.apply_delta)
2. Full frame decode + apply throughput (FeedSession frame handler path)
3. Read snapshot + depth ladder build speed

Usage:
    python -m polybook.benchmark
"""

from __future__ import annotations

import random
import time
from statistics import mean, stdev

from .datafeed.messages import decode_market_frame, json_dumps
from .datafeed.orderbook import BookStore
from .engine.depth import build_ladder
from .types import FullBook, PriceLevel, Side

TOKEN = "benchmark-token"


def generate_mock_book(levels: int = 99) -> tuple[list[PriceLevel], list[PriceLevel]]:
    """Generate a full book on a 0.001 tick grid around 0.50."""
    bids = [PriceLevel(f"{0.50 - (i + 1) * 0.001:.3f}", f"{random.uniform(1, 5000):.2f}") for i in range(levels)]
    asks = [PriceLevel(f"{0.50 + (i + 1) * 0.001:.3f}", f"{random.uniform(1, 5000):.2f}") for i in range(levels)]
    return bids, asks


def generate_mock_changes(count: int) -> list[tuple[Side, str, str]]:
    """Random level changes; ~20% are removals."""
    changes = []
    for _ in range(count):
        side = Side.BUY if random.random() > 0.5 else Side.SELL
        offset = random.randint(1, 99) * 0.001
        price = 0.50 - offset if side is Side.BUY else 0.50 + offset
        size = "0" if random.random() < 0.2 else f"{random.uniform(1, 5000):.2f}"
        changes.append((side, f"{price:.3f}", size))
    return changes


def benchmark_deltas(iterations: int = 100_000) -> None:
    """Benchmark single-level delta throughput."""
    print("\n=== Price Change Benchmark ===")

    store = BookStore()
    store.apply_full_book(TOKEN, *generate_mock_book())
    changes = generate_mock_changes(iterations)

    start = time.perf_counter()
    for side, price, size in changes:
        store.apply_delta(TOKEN, side, price, size)
    elapsed = time.perf_counter() - start

    rate = iterations / elapsed
    print(f"  Changes applied: {iterations:,}")
    print(f"  Time: {elapsed*1000:.1f}ms")
    print(f"  Rate: {rate:,.0f} changes/sec")
    print(f"  Per change: {elapsed/iterations*1_000_000:.2f}µs")


def benchmark_frames(iterations: int = 10_000, changes_per_frame: int = 5) -> None:
    """Benchmark decode + apply of price_changes frames."""
    print("\n=== Frame Decode + Apply Benchmark ===")

    store = BookStore()
    store.apply_full_book(TOKEN, *generate_mock_book())

    frames = []
    for _ in range(iterations):
        frames.append(json_dumps({
            "event_type": "price_change",
            "price_changes": [
                {"asset_id": TOKEN, "side": side.value, "price": price, "size": size}
                for side, price, size in generate_mock_changes(changes_per_frame)
            ],
        }))

    start = time.perf_counter()
    for raw in frames:
        for event in decode_market_frame(raw):
            if isinstance(event, FullBook):
                store.apply_full_book(event.instrument, event.bids, event.asks)
            else:
                store.apply_delta(event.instrument, event.side, event.price, event.size)
    elapsed = time.perf_counter() - start

    print(f"  Frames: {iterations:,} ({changes_per_frame} changes each)")
    print(f"  Time: {elapsed*1000:.1f}ms")
    print(f"  Rate: {iterations / elapsed:,.0f} frames/sec")


def benchmark_ladder(iterations: int = 2_000) -> None:
    """Benchmark snapshot + ladder build after each change (what the UI does)."""
    print("\n=== Snapshot + Ladder Benchmark ===")

    store = BookStore()
    store.apply_full_book(TOKEN, *generate_mock_book())
    changes = generate_mock_changes(iterations)

    # Warm up
    for _ in range(10):
        build_ladder(store.get(TOKEN), 15)

    times = []
    for side, price, size in changes:
        store.apply_delta(TOKEN, side, price, size)
        start = time.perf_counter()
        build_ladder(store.get(TOKEN), 15)
        times.append(time.perf_counter() - start)

    avg_time = mean(times) * 1000
    std_time = stdev(times) * 1000

    print(f"  Iterations: {iterations}")
    print(f"  Avg time: {avg_time:.3f}ms")
    print(f"  Std dev: {std_time:.3f}ms")
    print(f"  Max FPS possible: {1000/avg_time:,.0f}")


def main() -> None:
    """Run all benchmarks."""
    print("=" * 60)
    print("PolyBook Performance Benchmark")
    print("=" * 60)

    benchmark_deltas()
    benchmark_frames()
    benchmark_ladder()

    print("\n" + "=" * 60)
    print("Benchmark complete.")
    print("=" * 60)


if __name__ == "__main__":
    main()
