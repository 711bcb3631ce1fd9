"""
Markets browser + live order book TUI using Textual.

Displays:
- Left: Markets and Events tabs sharing one search box; click a column
  header to sort, select an event to list only its markets
- Right: One depth ladder per outcome of the open market, asks above bids,
  with cumulative-size bars
- Top: Connection state and feed counters

Performance notes:
- Feed callbacks only mark books dirty; redraw runs at ~10 FPS
- Ladders are built from cached immutable book snapshots
"""

from __future__ import annotations

from typing import Sequence

import aiohttp
from rich.console import RenderableType
from rich.table import Table
from rich.text import Text

from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.widgets import DataTable, Footer, Input, Static, TabbedContent, TabPane

from ..config import Settings
from ..datafeed.catalog import CatalogClient, Event, Market
from ..datafeed.fills import ApiCredentials, FillMonitor
from ..datafeed.session import FeedSession
from ..engine.depth import DepthLadder, build_ladder
from ..errors import CredentialsError, FetchError
from ..log import get_logger
from ..types import ConnectionState, Fill, InstrumentId
from .catalog_tables import (
    EVENT_COLUMNS,
    MARKET_COLUMNS,
    Column,
    SortState,
    column,
    event_matches,
    market_matches,
    render_row,
    sort_rows,
)
from .formatting import format_price, format_qty, make_bar

logger = get_logger("ui")

# Color scheme (dark theme)
BID_COLOR = "#22c55e"      # Green
ASK_COLOR = "#ef4444"      # Red
PRICE_COLOR = "#f8fafc"
HEADER_COLOR = "#94a3b8"
STALE_COLOR = "#eab308"

STATE_COLORS = {
    ConnectionState.CONNECTED: BID_COLOR,
    ConnectionState.CONNECTING: STALE_COLOR,
    ConnectionState.CLOSING: STALE_COLOR,
    ConnectionState.ERRORED: ASK_COLOR,
    ConnectionState.DISCONNECTED: HEADER_COLOR,
}

REDRAW_INTERVAL = 0.1


class BookTable(Static):
    """Depth ladder for one outcome."""

    DEFAULT_CSS = """
    BookTable {
        width: 1fr;
        height: auto;
        padding: 0 1;
    }
    """

    def __init__(self, instrument: InstrumentId, outcome: str, levels: int) -> None:
        super().__init__()
        self.instrument = instrument
        self.outcome = outcome
        self.levels = levels
        self._ladder: DepthLadder | None = None

    def update_ladder(self, ladder: DepthLadder | None) -> None:
        self._ladder = ladder
        self.refresh(layout=True)

    def render(self) -> RenderableType:
        title = Text(f" {self.outcome} ", style="bold white on #1e40af")

        ladder = self._ladder
        if ladder is None or (not ladder.asks and not ladder.bids):
            return Text.assemble(title, "\n", Text("Loading book...", style="dim"))

        table = Table(
            title=title,
            show_header=True,
            header_style=HEADER_COLOR,
            box=None,
            padding=(0, 1),
            collapse_padding=True,
        )

        table.add_column("Price", justify="right", width=8)
        table.add_column("Size", justify="right", width=9)
        table.add_column("Total", justify="right", width=9)
        table.add_column("Depth", justify="left", width=16, no_wrap=True)

        scale = ladder.max_cumulative

        # Asks: worst at the top, best next to the spread
        for row in reversed(ladder.asks):
            table.add_row(
                Text(format_price(row.price), style=ASK_COLOR),
                Text(format_qty(row.size), style=ASK_COLOR),
                Text(format_qty(row.cumulative), style="dim"),
                make_bar(row.cumulative, scale, 16, ASK_COLOR),
            )

        spread = format_price(ladder.spread) if ladder.asks and ladder.bids else "-"
        spread_style = STALE_COLOR if ladder.stale else PRICE_COLOR
        label = "stale, reconnecting" if ladder.stale else "spread"
        table.add_row(Text(spread, style=spread_style), Text(label, style="dim"), Text(""), Text(""))

        for row in ladder.bids:
            table.add_row(
                Text(format_price(row.price), style=BID_COLOR),
                Text(format_qty(row.size), style=BID_COLOR),
                Text(format_qty(row.cumulative), style="dim"),
                make_bar(row.cumulative, scale, 16, BID_COLOR),
            )

        return table


class StatusBar(Static):
    """Status bar showing connection state, open market and feed counters."""

    DEFAULT_CSS = """
    StatusBar {
        dock: top;
        height: 1;
        padding: 0 2;
        background: #0f172a;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self.state = ConnectionState.DISCONNECTED
        self.market: str = ""
        self.frames = 0
        self.fills_on = False
        self.message = ""

    def render(self) -> RenderableType:
        parts = [
            Text(f" {self.state.value.upper()} ", style=f"bold black on {STATE_COLORS[self.state]}"),
            Text("  "),
            Text(self.market or "No market open", style="bold" if self.market else "dim"),
            Text("  │  ", style="dim"),
            Text("Frames: ", style="dim"),
            Text(f"{self.frames}", style="cyan"),
            Text("  │  ", style="dim"),
            Text("Fills: ", style="dim"),
            Text("on" if self.fills_on else "off", style=BID_COLOR if self.fills_on else "dim"),
        ]
        if self.message:
            parts += [Text("  │  ", style="dim"), Text(self.message, style="yellow")]

        result = Text()
        for p in parts:
            result.append(p)
        return result


class PolyBookApp(App):
    """Main PolyBook application."""

    CSS = """
    Screen {
        background: #0f172a;
    }

    #markets-pane {
        width: 3fr;
    }

    #catalog-tabs {
        height: 1fr;
    }

    #book-pane {
        width: 2fr;
        border-left: solid #1e293b;
    }

    #book-panel {
        height: auto;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("escape", "close_book", "Close book"),
        ("r", "refresh", "Refresh book"),
        ("f", "toggle_fills", "Fill monitor"),
    ]

    def __init__(self, settings: Settings, tokens: list[str] | None = None) -> None:
        super().__init__()
        self.settings = settings
        self._initial_tokens = tokens or []

        self._http: aiohttp.ClientSession | None = None
        self.catalog: CatalogClient | None = None
        self.session: FeedSession | None = None
        self.fill_monitor: FillMonitor | None = None

        # Catalog
        self._markets: list[Market] = []
        self._markets_by_id: dict[str, Market] = {}
        self._events: list[Event] = []
        self._events_by_id: dict[str, Event] = {}
        self._query = ""
        self._event_scope: Event | None = None
        self._market_sort = SortState("volume_24hr")
        self._event_sort = SortState("volume_24hr")

        # Books
        self._book_tables: dict[InstrumentId, BookTable] = {}
        self._dirty: set[InstrumentId] = set()
        self._status_dirty = True

    @staticmethod
    def _make_table(table_id: str, columns: Sequence[Column]) -> DataTable:
        table = DataTable(id=table_id, cursor_type="row", zebra_stripes=True)
        for col in columns:
            table.add_column(col.label, key=col.key)
        return table

    def compose(self) -> ComposeResult:
        self._status_bar = StatusBar()
        yield self._status_bar
        with Horizontal():
            with Vertical(id="markets-pane"):
                yield Input(placeholder="Search markets and events...", id="search")
                with TabbedContent(id="catalog-tabs"):
                    with TabPane("Markets", id="markets-tab"):
                        yield self._make_table("markets", MARKET_COLUMNS)
                    with TabPane("Events", id="events-tab"):
                        yield self._make_table("events", EVENT_COLUMNS)
            with VerticalScroll(id="book-pane"):
                yield Horizontal(id="book-panel")
        yield Footer()

    async def on_mount(self) -> None:
        """Open the HTTP session and feed, then load the catalog."""
        self._http = aiohttp.ClientSession()
        self.catalog = CatalogClient(self._http, self.settings)
        self.session = FeedSession(self.settings, http=self._http)
        await self.session.open()
        self.session.add_listener(self._on_feed_change)

        self.set_interval(REDRAW_INTERVAL, self._redraw)
        self.run_worker(self._load_catalog(), exclusive=True, group="catalog")

        if self._initial_tokens:
            await self._open_tokens(
                [(f"Token {token[:8]}", token) for token in self._initial_tokens],
                label=", ".join(token[:8] for token in self._initial_tokens),
            )

    async def on_unmount(self) -> None:
        if self.fill_monitor is not None:
            await self.fill_monitor.stop()
        if self.session is not None:
            await self.session.close()
        if self._http is not None:
            await self._http.close()

    async def _load_catalog(self) -> None:
        catalog = self.catalog
        if catalog is None:
            return

        def progress(events: int, markets: int) -> None:
            self._set_message(f"Loading... {events:,} events / {markets:,} markets")

        try:
            events = await catalog.fetch_all_events(on_progress=progress)
        except FetchError as exc:
            logger.error(f"Catalog load failed: {exc}")
            self._set_message(f"Error: {exc}")
            return

        self._events = [e for e in events if not e.closed]
        self._events_by_id = {e.id: e for e in self._events}
        self._markets = [
            m for e in self._events for m in e.markets
            if m.has_book and not m.closed
        ]
        self._markets_by_id = {m.id: m for m in self._markets}

        self._populate_markets()
        self._populate_events()
        self._set_message(f"{len(self._markets):,} active markets in {len(self._events):,} events")

    def _populate_markets(self) -> None:
        if self._event_scope is not None:
            rows = [m for m in self._event_scope.markets if m.id in self._markets_by_id]
        else:
            rows = self._markets
        if self._query:
            rows = [m for m in rows if market_matches(m, self._query)]
        rows = sort_rows(rows, column(MARKET_COLUMNS, self._market_sort.key), self._market_sort.descending)

        table = self.query_one("#markets", DataTable)
        table.clear()
        for market in rows:
            table.add_row(*render_row(market, MARKET_COLUMNS), key=market.id)

    def _populate_events(self) -> None:
        rows = self._events
        if self._query:
            rows = [e for e in rows if event_matches(e, self._query)]
        rows = sort_rows(rows, column(EVENT_COLUMNS, self._event_sort.key), self._event_sort.descending)

        table = self.query_one("#events", DataTable)
        table.clear()
        for event in rows:
            table.add_row(*render_row(event, EVENT_COLUMNS), key=event.id)

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input.id == "search":
            self._query = event.value.strip().lower()
            self._event_scope = None
            self._populate_markets()
            self._populate_events()

    def on_data_table_header_selected(self, event: DataTable.HeaderSelected) -> None:
        key = str(event.column_key.value)
        if event.data_table.id == "markets":
            self._market_sort.toggle(column(MARKET_COLUMNS, key))
            self._populate_markets()
            self._set_message(f"Markets by {self._market_sort.describe(MARKET_COLUMNS)}")
        elif event.data_table.id == "events":
            self._event_sort.toggle(column(EVENT_COLUMNS, key))
            self._populate_events()
            self._set_message(f"Events by {self._event_sort.describe(EVENT_COLUMNS)}")

    async def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        key = str(event.row_key.value)
        if event.data_table.id == "events":
            scope = self._events_by_id.get(key)
            if scope is None:
                return
            # List only this event's markets; typing in the search box clears it
            self._event_scope = scope
            self._populate_markets()
            self.query_one("#catalog-tabs", TabbedContent).active = "markets-tab"
            self._set_message(f"Markets of: {scope.title[:50]}")
            return

        market = self._markets_by_id.get(key)
        if market is not None:
            await self._open_tokens(market.outcome_tokens(), label=market.question)

    async def _open_tokens(self, outcome_tokens: list[tuple[str, str]], label: str) -> None:
        if self.session is None:
            return

        panel = self.query_one("#book-panel", Horizontal)
        await panel.remove_children()
        self._book_tables = {
            token: BookTable(token, outcome, self.settings.book_levels)
            for outcome, token in outcome_tokens
        }
        await panel.mount(*self._book_tables.values())

        self._status_bar.market = label[:60]
        self.session.select(self._book_tables)
        self._dirty.update(self._book_tables)

    async def action_close_book(self) -> None:
        if self.session is None:
            return
        self.session.deselect()
        await self.query_one("#book-panel", Horizontal).remove_children()
        self._book_tables = {}
        self._status_bar.market = ""
        self._status_dirty = True

    def action_refresh(self) -> None:
        if self.session is not None and self.session.desired:
            self.run_worker(self.session.refresh_all(), group="refresh")

    async def action_toggle_fills(self) -> None:
        if self.fill_monitor is not None:
            await self.fill_monitor.stop()
            self.fill_monitor = None
            self._status_bar.fills_on = False
            self._status_dirty = True
            return

        try:
            credentials = ApiCredentials.from_settings(self.settings)
        except CredentialsError as exc:
            self.notify(str(exc), title="Fill monitor", severity="error")
            return

        self.fill_monitor = FillMonitor(credentials, self._on_fill, self.settings, http=self._http)
        self.fill_monitor.start()
        self._status_bar.fills_on = True
        self._status_dirty = True
        self.notify("Monitoring your fills", title="Fill monitor")

    def _on_fill(self, fill: Fill) -> None:
        self.notify(
            f"{fill.side.value} {fill.size} {fill.outcome or fill.instrument[:10]} @ {fill.price}",
            title="Order filled",
        )

    def _on_feed_change(self, instrument: InstrumentId | None) -> None:
        """Feed listener - only marks things dirty, _redraw does the work."""
        if instrument is None:
            self._status_dirty = True
        else:
            self._dirty.add(instrument)

    def _set_message(self, message: str) -> None:
        self._status_bar.message = message
        self._status_dirty = True

    def _redraw(self) -> None:
        session = self.session
        if session is None:
            return

        if self._dirty:
            for instrument in self._dirty:
                table = self._book_tables.get(instrument)
                book = session.book(instrument)
                if table is not None:
                    table.update_ladder(build_ladder(book, table.levels) if book is not None else None)
            self._dirty.clear()
            self._status_dirty = True

        if self._status_dirty:
            self._status_bar.state = session.state
            self._status_bar.frames = session.frames_applied
            self._status_bar.refresh()
            self._status_dirty = False


async def run_ui(settings: Settings, tokens: list[str] | None = None) -> None:
    """Run the TUI application."""
    app = PolyBookApp(settings, tokens)
    await app.run_async()
