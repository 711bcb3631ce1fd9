"""
Persistent WebSocket connection with keep-alive and automatic reconnect.

State machine:
    DISCONNECTED -> CONNECTING -> CONNECTED -> (CLOSING | ERRORED) -> DISCONNECTED

- Keep-alive: a bare PING text frame every ping_interval while CONNECTED.
- Reconnect: fixed delay, unlimited attempts, single pending timer at most.
- stop() clears the reconnect flag before closing, so the close never re-arms.

Timers go through a scheduler (the running loop by default) so tests can use
a fake clock.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Awaitable, Callable, Protocol

import aiohttp

from ..errors import TransportClosed, TransportError
from ..log import get_logger
from ..types import ConnectionState
from .messages import PING, json_dumps

logger = get_logger("connection")

Connector = Callable[[str], Awaitable[Any]]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class StreamConnection:
    """
    One duplex connection to a feed endpoint.

    Inbound text frames are handed to on_message strictly in arrival order.
    Outbound frames go through a per-connection queue drained by one writer
    task, so they hit the wire in the order they were sent.

    Thread-safety: NOT thread-safe. Designed for single-threaded async use.
    """

    def __init__(
        self,
        url: str,
        on_message: Callable[[str], None],
        *,
        on_open: Callable[[], None] | None = None,
        on_state_change: Callable[[ConnectionState], None] | None = None,
        http: aiohttp.ClientSession | None = None,
        connector: Connector | None = None,
        scheduler: Scheduler | None = None,
        ping_interval: float = 30.0,
        reconnect_delay: float = 5.0,
        name: str = "feed",
    ) -> None:
        self.url = url
        self.name = name
        self.ping_interval = ping_interval
        self.reconnect_delay = reconnect_delay

        self._on_message = on_message
        self._on_open = on_open
        self._on_state_change = on_state_change
        self._connector = connector
        self._scheduler = scheduler
        self._http = http
        self._owns_http = False

        # Connection state
        self._state = ConnectionState.DISCONNECTED
        self._should_reconnect = False
        self._ws: Any = None
        self._task: asyncio.Task | None = None

        # Outbound frames for the live transport
        self._outbox: asyncio.Queue[str] | None = None
        self._writer_task: asyncio.Task | None = None

        # Timers - both single slot
        self._heartbeat: TimerHandle | None = None
        self._reconnect: TimerHandle | None = None

        # Stats
        self.connect_count = 0
        self.reconnect_count = 0
        self.messages_received = 0
        self.handler_errors = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def should_reconnect(self) -> bool:
        return self._should_reconnect

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect is not None

    def _get_scheduler(self) -> Scheduler:
        return self._scheduler if self._scheduler is not None else asyncio.get_running_loop()

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.debug(f"[{self.name}] {self._state.value} -> {state.value}")
        self._state = state
        if self._on_state_change is not None:
            self._on_state_change(state)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Connect now (if idle) and keep reconnecting until stop()."""
        self._should_reconnect = True
        if self._state is ConnectionState.DISCONNECTED and self._reconnect is None:
            self._connect()

    def _connect(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        logger.info(f"[{self.name}] Connecting to {self.url}")
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        """Tear down for good: no reconnect is armed by the resulting close."""
        self._should_reconnect = False
        self._cancel_reconnect()

        task = self._task
        ws = self._ws

        if ws is not None and not ws.closed:
            self._set_state(ConnectionState.CLOSING)
            await ws.close()
        elif task is not None and not task.done():
            # Still connecting
            task.cancel()

        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self._leave_connected()
        self._ws = None
        self._task = None
        self._set_state(ConnectionState.DISCONNECTED)

        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None
            self._owns_http = False

        logger.info(f"[{self.name}] Stopped")

    async def _open_transport(self) -> Any:
        if self._connector is not None:
            return await self._connector(self.url)

        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession()
            self._owns_http = True
        return await self._http.ws_connect(self.url)

    async def _run(self) -> None:
        """Open the transport, then pump frames until it closes or fails."""
        try:
            ws = await self._open_transport()
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
            self._on_transport_error(TransportError(f"connect to {self.url} failed: {exc!r}"))
            return

        self._ws = ws
        self._on_transport_open(ws)

        error: TransportError | None = None
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self.messages_received += 1
                    try:
                        self._on_message(msg.data)
                    except Exception:
                        # A handler bug costs one frame, never the stream
                        self.handler_errors += 1
                        logger.exception(f"[{self.name}] Message handler failed, frame dropped")
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = TransportError(f"stream error: {ws.exception()!r}")
                    break
        except (aiohttp.ClientError, OSError) as exc:
            error = TransportError(f"stream failed: {exc!r}")

        if not ws.closed:
            await ws.close()
        self._ws = None

        if error is not None:
            self._on_transport_error(error)
        else:
            self._on_transport_closed(TransportClosed(f"closed with code {ws.close_code}"))

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    def _on_transport_open(self, ws: Any) -> None:
        self.connect_count += 1
        self._outbox = asyncio.Queue()
        self._writer_task = asyncio.get_running_loop().create_task(self._writer(ws, self._outbox))

        self._set_state(ConnectionState.CONNECTED)
        logger.info(f"[{self.name}] Connected")
        self._arm_heartbeat()

        if self._on_open is not None:
            self._on_open()

    def _on_transport_error(self, exc: TransportError) -> None:
        logger.warning(f"[{self.name}] {exc}")
        self._leave_connected()
        self._set_state(ConnectionState.ERRORED)
        self._set_state(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    def _on_transport_closed(self, exc: TransportClosed) -> None:
        if self._should_reconnect:
            logger.warning(f"[{self.name}] Connection {exc}")
        self._leave_connected()
        self._set_state(ConnectionState.CLOSING)
        self._set_state(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    def _leave_connected(self) -> None:
        self._cancel_heartbeat()
        if self._writer_task is not None:
            self._writer_task.cancel()
            self._writer_task = None
        self._outbox = None

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _arm_heartbeat(self) -> None:
        self._cancel_heartbeat()
        self._heartbeat = self._get_scheduler().call_later(self.ping_interval, self._on_heartbeat)

    def _cancel_heartbeat(self) -> None:
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None

    def _on_heartbeat(self) -> None:
        self._heartbeat = None
        if not self.is_open:
            return
        self.send_text(PING)
        self._arm_heartbeat()

    def _schedule_reconnect(self) -> None:
        if not self._should_reconnect:
            return
        self._cancel_reconnect()
        logger.info(f"[{self.name}] Reconnecting in {self.reconnect_delay:.1f}s")
        self._reconnect = self._get_scheduler().call_later(self.reconnect_delay, self._on_reconnect_timer)

    def _cancel_reconnect(self) -> None:
        if self._reconnect is not None:
            self._reconnect.cancel()
            self._reconnect = None

    def _on_reconnect_timer(self) -> None:
        self._reconnect = None
        if self._should_reconnect and self._state is ConnectionState.DISCONNECTED:
            self.reconnect_count += 1
            self._connect()

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def send_text(self, text: str) -> bool:
        """Queue a text frame. Returns False (and drops it) if not connected."""
        if not self.is_open or self._outbox is None:
            logger.debug(f"[{self.name}] Not connected, dropping frame {text[:60]!r}")
            return False
        self._outbox.put_nowait(text)
        return True

    def send_json(self, payload: Any) -> bool:
        return self.send_text(json_dumps(payload))

    async def _writer(self, ws: Any, outbox: asyncio.Queue[str]) -> None:
        while True:
            text = await outbox.get()
            try:
                await ws.send_str(text)
            except (aiohttp.ClientError, ConnectionError) as exc:
                # The read side sees the close and drives the reconnect
                logger.warning(f"[{self.name}] Send failed: {exc!r}")
                return

    def get_stats(self) -> dict:
        return {
            'state': self._state.value,
            'url': self.url,
            'connects': self.connect_count,
            'reconnects': self.reconnect_count,
            'messages_received': self.messages_received,
            'handler_errors': self.handler_errors,
            'reconnect_pending': self.reconnect_pending,
        }
