#!/usr/bin/env python3
"""
PolyBook - Live Polymarket order books and fill alerts in the terminal.

Usage:
    polybook                                  # markets browser + books (TUI)
    polybook ui --token <TOKEN_ID>            # open straight into a book
    polybook book <TOKEN_ID> [<TOKEN_ID> ...] # headless ladder printout
    polybook fills                            # headless fill monitor

Controls (TUI):
    enter  - Open the selected market's books
    escape - Close the open books
    r      - Re-fetch the open books
    f      - Toggle the fill monitor
    q      - Quit
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time

from rich.console import Console, Group
from rich.table import Table

from .config import Settings, get_settings
from .errors import CredentialsError
from .log import get_logger, setup_logging

console = Console()


async def run_book(settings: Settings, tokens: list[str], interval: float) -> None:
    """Stream the given tokens' books and print ladders every `interval` seconds."""
    from .datafeed.session import FeedSession
    from .engine.depth import build_ladder
    from .ui.formatting import format_price, format_qty

    logger = get_logger("book")

    async with FeedSession(settings) as session:
        session.select(tokens)
        await session.wait_snapshots()
        logger.info(f"Streaming {len(tokens)} book(s), state={session.state.value}")

        while True:
            tables = []
            for token in tokens:
                book = session.book(token)
                if book is None:
                    continue
                ladder = build_ladder(book, settings.book_levels)

                table = Table(title=f"{token[:16]}…{' (stale)' if ladder.stale else ''}", box=None)
                table.add_column("Bid total", justify="right")
                table.add_column("Bid size", justify="right", style="green")
                table.add_column("Bid", justify="right", style="green")
                table.add_column("Ask", justify="left", style="red")
                table.add_column("Ask size", justify="left", style="red")
                table.add_column("Ask total", justify="left")

                for i in range(max(len(ladder.bids), len(ladder.asks))):
                    bid = ladder.bids[i] if i < len(ladder.bids) else None
                    ask = ladder.asks[i] if i < len(ladder.asks) else None
                    table.add_row(
                        format_qty(bid.cumulative) if bid else "",
                        format_qty(bid.size) if bid else "",
                        format_price(bid.price) if bid else "",
                        format_price(ask.price) if ask else "",
                        format_qty(ask.size) if ask else "",
                        format_qty(ask.cumulative) if ask else "",
                    )
                tables.append(table)

            console.print(Group(*tables))
            console.print(
                f"[dim]{time.strftime('%H:%M:%S')}  state={session.state.value}  "
                f"frames={session.frames_applied}  parse_errors={session.parse_errors}[/dim]"
            )
            await asyncio.sleep(interval)


async def run_fills(settings: Settings, args: argparse.Namespace) -> None:
    """Derive (or load) credentials and log every fill until interrupted."""
    import aiohttp

    from .datafeed.fills import ApiCredentials, FillMonitor, derive_api_credentials

    logger = get_logger("fills")

    async with aiohttp.ClientSession() as http:
        if args.address or args.signature:
            credentials = await derive_api_credentials(
                http, settings, args.address or "", args.signature or "", args.timestamp or "", args.nonce
            )
        else:
            credentials = ApiCredentials.from_settings(settings)

        def notify(fill) -> None:
            console.bell()
            console.print(
                f"[bold green]FILLED[/bold green] {fill.side.value} {fill.size} "
                f"{fill.outcome or fill.instrument[:16]} @ {fill.price} [dim]({fill.status})[/dim]"
            )

        monitor = FillMonitor(credentials, notify, settings, http=http)
        monitor.start()
        logger.info("Waiting for fills (Ctrl-C to stop)")
        try:
            await asyncio.Event().wait()
        finally:
            await monitor.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="polybook",
        description="PolyBook - Live Polymarket order books and fill alerts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    polybook
    polybook book 71321045679252212594626385532706912750332728571942532289631379312455583992563
    polybook fills --address 0xabc... --signature 0x... --timestamp 1700000000
        """
    )

    parser.add_argument("--log-level", default=None, help="Log level (default: from settings, INFO)")
    parser.add_argument("--log-file", default=None, help="Write logs to this file")

    parser.set_defaults(token=[])

    sub = parser.add_subparsers(dest="command")

    ui = sub.add_parser("ui", help="Markets browser with live books (default)")
    ui.add_argument("--token", action="append", default=[], help="Open this token's book at start")
    ui.add_argument("--levels", type=int, default=None, help="Levels per book side")

    book = sub.add_parser("book", help="Print live ladders for tokens")
    book.add_argument("tokens", nargs="+", help="CLOB token ids")
    book.add_argument("--levels", type=int, default=None, help="Levels per book side")
    book.add_argument("--interval", type=float, default=2.0, help="Seconds between printouts (default: 2)")

    fills = sub.add_parser("fills", help="Notify on your order fills")
    fills.add_argument("--address", help="Wallet address (derive credentials)")
    fills.add_argument("--signature", help="Wallet signature for credential derivation")
    fills.add_argument("--timestamp", help="Timestamp that was signed")
    fills.add_argument("--nonce", type=int, default=0, help="Nonce that was signed (default: 0)")

    return parser


def cli() -> None:
    """CLI entry point."""
    args = build_parser().parse_args()
    command = args.command or "ui"

    overrides = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_file:
        overrides["log_file"] = args.log_file
    if getattr(args, "levels", None):
        overrides["book_levels"] = args.levels
    settings = get_settings().model_copy(update=overrides)

    # The TUI owns the terminal: file logging only
    log_file = settings.log_file or ("polybook.log" if command == "ui" else None)
    setup_logging(settings.log_level, log_file=log_file, console=command != "ui")

    try:
        if command == "ui":
            from .ui.dom_view import run_ui
            asyncio.run(run_ui(settings, args.token))
        elif command == "book":
            asyncio.run(run_book(settings, args.tokens, args.interval))
        elif command == "fills":
            asyncio.run(run_fills(settings, args))
    except CredentialsError as exc:
        console.print(f"[red]{exc}[/red]")
        sys.exit(2)
    except KeyboardInterrupt:
        print("\nShutdown requested.")
        sys.exit(0)


if __name__ == "__main__":
    cli()
