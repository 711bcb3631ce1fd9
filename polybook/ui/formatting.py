"""
Display formatting shared by the TUI and the headless printouts.

Prices are outcome probabilities (0..1) and render in cents; sizes and
dollar amounts are abbreviated to fit narrow ladder columns.
"""

from __future__ import annotations

from typing import Sequence

from rich.style import Style
from rich.text import Text

BAR_BG = "#1e293b"


def format_qty(qty: float) -> str:
    """Format quantity for display."""
    if qty >= 1_000_000:
        return f"{qty/1_000_000:.1f}M"
    elif qty >= 1000:
        return f"{qty/1000:.1f}K"
    elif qty >= 1:
        return f"{qty:.1f}"
    elif qty > 0:
        return f"{qty:.2f}"
    return ""


def format_money(value: float | None) -> str:
    if value is None:
        return "$0"
    return f"${value:,.0f}"


def format_price(value: float | None) -> str:
    """Prices are probabilities; show them in cents."""
    if value is None:
        return "-"
    return f"{value * 100:.1f}¢"


def make_bar(value: float, max_value: float, width: int, color: str) -> Text:
    """Create a horizontal bar using block characters."""
    if max_value <= 0:
        return Text(" " * width)

    fill_ratio = min(1.0, value / max_value)
    fill_width = int(fill_ratio * width)

    bar = "█" * fill_width + " " * (width - fill_width)
    return Text(bar, style=Style(color=color, bgcolor=BAR_BG))


def format_change(value: float | None) -> str:
    """One-day price change in cents, signed."""
    if value is None:
        return "-"
    return f"{value * 100:+.1f}¢"


def format_count(value: int | None) -> str:
    return "-" if value is None else f"{value:,}"


def format_date(value: str | None) -> str:
    """ISO timestamp -> YYYY-MM-DD."""
    if not value:
        return "-"
    return value[:10]


def format_tags(labels: Sequence[str], limit: int = 3) -> str:
    """First few tag labels, then a +N for the rest."""
    if not labels:
        return "-"
    shown = ", ".join(labels[:limit])
    if len(labels) > limit:
        shown += f" +{len(labels) - limit}"
    return shown
