"""Shared fakes and fixtures for polybook tests."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, NamedTuple

import aiohttp
import pytest

from polybook.config import Settings
from polybook.errors import FetchError
from polybook.types import OrderBook


# ─── Fake clock ───────────────────────────────────────────────────────────────

class FakeTimer:
    def __init__(self, when: float, callback: Callable[..., Any], args: tuple) -> None:
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """call_later() stand-in; time only moves on advance()."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> FakeTimer:
        timer = FakeTimer(self.now + delay, callback, args)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def pending_for(self, callback_name: str) -> list[FakeTimer]:
        return [t for t in self.pending if t.callback.__name__ == callback_name]

    def advance(self, seconds: float) -> None:
        self.now += seconds
        while True:
            due = sorted((t for t in self.pending if t.when <= self.now), key=lambda t: t.when)
            if not due:
                return
            for timer in due:
                if timer.cancelled:
                    continue
                timer.fired = True
                timer.callback(*timer.args)


# ─── Fake transport ───────────────────────────────────────────────────────────

class FakeMessage(NamedTuple):
    type: aiohttp.WSMsgType
    data: Any
    extra: Any = None


class FakeWebSocket:
    """Minimal ClientWebSocketResponse: async-iterable inbox, recorded sends."""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False
        self.close_code: int | None = None
        self._inbox: asyncio.Queue[FakeMessage | None] = asyncio.Queue()
        self._exception: BaseException | None = None

    def feed(self, text: str) -> None:
        self._inbox.put_nowait(FakeMessage(aiohttp.WSMsgType.TEXT, text))

    def fail(self, exc: BaseException) -> None:
        self._exception = exc
        self._inbox.put_nowait(FakeMessage(aiohttp.WSMsgType.ERROR, exc))

    def drop(self) -> None:
        """Remote end closes the connection."""
        self.close_code = 1006
        self._inbox.put_nowait(None)

    def exception(self) -> BaseException | None:
        return self._exception

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent.append(data)

    async def close(self) -> bool:
        if self.closed:
            return False
        self.closed = True
        self.close_code = 1000
        self._inbox.put_nowait(None)
        return True

    def __aiter__(self) -> FakeWebSocket:
        return self

    async def __anext__(self) -> FakeMessage:
        msg = await self._inbox.get()
        if msg is None:
            self.closed = True
            raise StopAsyncIteration
        return msg


class FakeConnector:
    """Async connector returning a fresh FakeWebSocket per connect."""

    def __init__(self) -> None:
        self.sockets: list[FakeWebSocket] = []
        self.urls: list[str] = []
        self.fail_next = 0

    async def __call__(self, url: str) -> FakeWebSocket:
        self.urls.append(url)
        if self.fail_next:
            self.fail_next -= 1
            raise aiohttp.ClientConnectionError("connection refused")
        ws = FakeWebSocket()
        self.sockets.append(ws)
        return ws

    @property
    def latest(self) -> FakeWebSocket:
        return self.sockets[-1]


# ─── Fake snapshot source ─────────────────────────────────────────────────────

class FakeFetcher:
    """SnapshotFetcher stand-in with canned books and optional gating."""

    def __init__(self, books: dict[str, OrderBook] | None = None) -> None:
        self.books = books or {}
        self.failing: set[str] = set()
        self.calls: list[str] = []
        self.gate: asyncio.Event | None = None

    async def fetch(self, instrument: str) -> OrderBook:
        self.calls.append(instrument)
        if self.gate is not None:
            await self.gate.wait()
        if instrument in self.failing:
            raise FetchError(f"HTTP 500 for {instrument}", status=500)
        return self.books.get(instrument, OrderBook(instrument, (), (), 0.0))


async def drain(rounds: int = 10) -> None:
    """Let pending tasks (connect, reader, writer, fetches) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ─── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        clob_url="http://clob.test",
        market_ws_url="wss://feed.test/ws/market",
        user_ws_url="wss://feed.test/ws/user",
        ping_interval=30.0,
        reconnect_delay=5.0,
    )


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()
