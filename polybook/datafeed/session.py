"""
Feed session: one market-data connection, its subscriptions and book state.

Composes the snapshot fetcher, the stream connection, the subscription
reconciler and the book store into a single owner. The UI only calls
select()/deselect() and reads books; everything else reacts to events on
the loop.

Usage:
    async with FeedSession(settings) as session:
        session.add_listener(lambda token: redraw(token))
        session.select([yes_token, no_token])
"""

from __future__ import annotations

import asyncio
from typing import Callable, Iterable

import aiohttp

from ..config import Settings, get_settings
from ..errors import FetchError, ParseError
from ..log import get_logger
from ..types import ConnectionState, FullBook, InstrumentId, OrderBook
from .connection import Connector, Scheduler, StreamConnection
from .messages import decode_market_frame
from .orderbook import BookStore
from .snapshot import SnapshotFetcher
from .subscriptions import SubscriptionReconciler

logger = get_logger("session")

# Called with the instrument whose book changed, or None for a connection change
Listener = Callable[[InstrumentId | None], None]


class FeedSession:
    """
    Live books for the instruments currently selected in the UI.

    Thread-safety: NOT thread-safe. Every mutation happens inside one event
    handler on the loop, so readers never see a half-applied frame.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        http: aiohttp.ClientSession | None = None,
        fetcher: SnapshotFetcher | None = None,
        connector: Connector | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._http = http
        self._owns_http = False
        self._fetcher = fetcher

        self.store = BookStore()
        self.connection = StreamConnection(
            self.settings.market_ws_url,
            self._handle_frame,
            on_open=self._on_connected,
            on_state_change=self._on_state_change,
            http=http,
            connector=connector,
            scheduler=scheduler,
            ping_interval=self.settings.ping_interval,
            reconnect_delay=self.settings.reconnect_delay,
            name="market",
        )
        self.reconciler = SubscriptionReconciler(self.connection)

        self._fetches: dict[InstrumentId, asyncio.Task] = {}
        self._listeners: list[Listener] = []
        self._has_connected = False

        self.frames_applied = 0
        self.parse_errors = 0

    async def __aenter__(self) -> FeedSession:
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def open(self) -> None:
        if self._fetcher is None:
            if self._http is None:
                self._http = aiohttp.ClientSession()
                self._owns_http = True
            self._fetcher = SnapshotFetcher(
                self._http,
                self.settings.clob_url,
                timeout=self.settings.request_timeout,
            )

    async def close(self) -> None:
        for task in self._fetches.values():
            task.cancel()
        await self.wait_snapshots()

        await self.connection.stop()

        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None
            self._owns_http = False

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select(self, instruments: Iterable[InstrumentId]) -> None:
        """
        Make `instruments` the set of books on screen.

        Newly selected instruments get an empty book and a snapshot fetch;
        dropped ones lose their book at once. The feed subscription follows.
        """
        if self._fetcher is None:
            raise RuntimeError("FeedSession.open() must be called before selecting instruments")

        desired = set(instruments)
        previous = self.reconciler.desired

        for instrument in previous - desired:
            task = self._fetches.pop(instrument, None)
            if task is not None:
                task.cancel()
            self.store.remove(instrument)

        for instrument in desired - previous:
            self.store.seed(instrument)
            self._spawn_fetch(instrument)

        self.reconciler.set_desired(desired)

        if desired:
            self.connection.start()

        for instrument in previous ^ desired:
            self._notify(instrument)

    def deselect(self) -> None:
        self.select(())

    async def refresh(self, instrument: InstrumentId) -> None:
        """Re-fetch one selected instrument's snapshot (manual retry)."""
        if not self.reconciler.wants(instrument):
            return
        await asyncio.gather(self._spawn_fetch(instrument), return_exceptions=True)

    async def refresh_all(self) -> None:
        for instrument in self.reconciler.desired:
            self._spawn_fetch(instrument)
        await self.wait_snapshots()

    async def wait_snapshots(self) -> None:
        """Wait for every in-flight snapshot fetch to settle."""
        pending = list(self._fetches.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _spawn_fetch(self, instrument: InstrumentId) -> asyncio.Task:
        fetcher = self._fetcher
        if fetcher is None:
            raise RuntimeError("FeedSession.open() must be called before selecting instruments")

        previous = self._fetches.get(instrument)
        if previous is not None and not previous.done():
            previous.cancel()

        task = asyncio.get_running_loop().create_task(self._load_snapshot(fetcher, instrument))
        self._fetches[instrument] = task

        def _forget(done: asyncio.Task, instrument: InstrumentId = instrument) -> None:
            if self._fetches.get(instrument) is done:
                del self._fetches[instrument]

        task.add_done_callback(_forget)
        return task

    async def _load_snapshot(self, fetcher: SnapshotFetcher, instrument: InstrumentId) -> None:
        try:
            book = await fetcher.fetch(instrument)
        except FetchError as exc:
            logger.warning(f"Keeping empty book for {instrument[:12]}: {exc}")
            return

        if not self.reconciler.wants(instrument):
            logger.debug(f"Discarding snapshot for deselected {instrument[:12]}")
            return

        self.store.apply_full_book(instrument, book.bids, book.asks)
        self._notify(instrument)

    # ------------------------------------------------------------------
    # Feed events
    # ------------------------------------------------------------------

    def _handle_frame(self, raw: str) -> None:
        """
        Apply one inbound frame.

        HOT PATH - called for every market-channel frame.
        """
        try:
            events = decode_market_frame(raw)
        except ParseError as exc:
            self.parse_errors += 1
            logger.warning(f"Dropping malformed frame: {exc}")
            return

        touched: set[InstrumentId] = set()
        for event in events:
            # Direct lookup; frames for instruments no longer on screen are dropped
            if not self.reconciler.wants(event.instrument):
                continue
            if isinstance(event, FullBook):
                self.store.apply_full_book(event.instrument, event.bids, event.asks)
            else:
                self.store.apply_delta(event.instrument, event.side, event.price, event.size)
            touched.add(event.instrument)

        if touched:
            self.frames_applied += 1
        for instrument in touched:
            self._notify(instrument)

    def _on_connected(self) -> None:
        # Nothing carries over from a previous connection
        self.reconciler.reset()
        self.reconciler.reconcile()

        if self._has_connected:
            logger.info("Reconnected, re-fetching open books")
            for instrument in self.reconciler.desired:
                self._spawn_fetch(instrument)
        self._has_connected = True

    def _on_state_change(self, state: ConnectionState) -> None:
        if state in (ConnectionState.CLOSING, ConnectionState.ERRORED):
            self.store.mark_stale()
            self.reconciler.reset()
        self._notify(None)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a change callback. Returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self, instrument: InstrumentId | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(instrument)
            except Exception:
                # One broken listener must not stop the others or the feed
                logger.exception(f"Listener {listener!r} failed for {instrument}")

    def book(self, instrument: InstrumentId) -> OrderBook | None:
        return self.store.get(instrument)

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def desired(self) -> frozenset[InstrumentId]:
        return self.reconciler.desired

    @property
    def subscribed(self) -> frozenset[InstrumentId]:
        return self.reconciler.subscribed
