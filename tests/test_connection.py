"""Tests for StreamConnection: state machine, heartbeat, reconnect timer."""

import asyncio

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from polybook.datafeed.connection import StreamConnection
from polybook.errors import TransportClosed
from polybook.types import ConnectionState

from .conftest import drain


def _connection(connector, scheduler, **kwargs):
    received: list[str] = []
    states: list[ConnectionState] = []
    conn = StreamConnection(
        "wss://feed.test/ws/market",
        received.append,
        on_state_change=states.append,
        connector=connector,
        scheduler=scheduler,
        ping_interval=30.0,
        reconnect_delay=5.0,
        **kwargs,
    )
    return conn, received, states


class TestLifecycle:
    async def test_open_and_stop_transitions(self, connector, scheduler):
        conn, _, states = _connection(connector, scheduler)

        conn.start()
        await drain()
        assert conn.state is ConnectionState.CONNECTED
        assert conn.connect_count == 1

        await conn.stop()

        assert states == [
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.CLOSING,
            ConnectionState.DISCONNECTED,
        ]
        assert connector.latest.closed

    async def test_stop_does_not_arm_reconnect(self, connector, scheduler):
        conn, _, _ = _connection(connector, scheduler)
        conn.start()
        await drain()

        await conn.stop()

        assert not conn.should_reconnect
        assert not conn.reconnect_pending
        assert scheduler.pending == []

        scheduler.advance(60)
        await drain()
        assert len(connector.sockets) == 1
        assert conn.state is ConnectionState.DISCONNECTED

    async def test_stop_while_connecting(self, connector, scheduler):
        conn, _, _ = _connection(connector, scheduler)

        conn.start()
        assert conn.state is ConnectionState.CONNECTING
        await conn.stop()

        assert conn.state is ConnectionState.DISCONNECTED
        assert scheduler.pending == []

    async def test_start_is_idempotent(self, connector, scheduler):
        conn, _, _ = _connection(connector, scheduler)
        conn.start()
        await drain()

        conn.start()
        await drain()

        assert len(connector.sockets) == 1
        await conn.stop()


class TestFrames:
    async def test_frames_delivered_in_arrival_order(self, connector, scheduler):
        conn, received, _ = _connection(connector, scheduler)
        conn.start()
        await drain()

        for text in ("one", "two", "three"):
            connector.latest.feed(text)
        await drain()

        assert received == ["one", "two", "three"]
        assert conn.messages_received == 3
        await conn.stop()

    async def test_handler_error_drops_only_that_frame(self, connector, scheduler):
        received: list[str] = []

        def handler(text: str) -> None:
            if text == "bad":
                raise ValueError("boom")
            received.append(text)

        conn = StreamConnection(
            "wss://feed.test/ws/market",
            handler,
            connector=connector,
            scheduler=scheduler,
            ping_interval=30.0,
            reconnect_delay=5.0,
        )
        conn.start()
        await drain()

        for text in ("one", "bad", "two"):
            connector.latest.feed(text)
        await drain()

        assert received == ["one", "two"]
        assert conn.state is ConnectionState.CONNECTED
        assert conn.handler_errors == 1
        assert conn.get_stats()["handler_errors"] == 1
        assert scheduler.pending_for("_on_reconnect_timer") == []
        await conn.stop()

    async def test_sends_go_out_in_order(self, connector, scheduler):
        conn, _, _ = _connection(connector, scheduler)
        conn.start()
        await drain()

        assert conn.send_text("a")
        assert conn.send_json({"b": 1})
        await drain()

        assert connector.latest.sent == ["a", '{"b":1}']
        await conn.stop()

    async def test_send_while_disconnected_returns_false(self, connector, scheduler):
        conn, _, _ = _connection(connector, scheduler)

        assert conn.send_text("hello") is False
        assert conn.send_json({"x": 1}) is False

    async def test_on_open_runs_after_connected(self, connector, scheduler):
        seen = []
        conn = StreamConnection(
            "wss://feed.test/ws",
            lambda raw: None,
            connector=connector,
            scheduler=scheduler,
        )
        conn._on_open = lambda: seen.append(conn.state)

        conn.start()
        await drain()

        assert seen == [ConnectionState.CONNECTED]
        await conn.stop()


class TestHeartbeat:
    async def test_ping_every_interval(self, connector, scheduler):
        conn, _, _ = _connection(connector, scheduler)
        conn.start()
        await drain()

        scheduler.advance(30)
        await drain()
        assert connector.latest.sent == ["PING"]

        scheduler.advance(30)
        await drain()
        assert connector.latest.sent == ["PING", "PING"]
        await conn.stop()

    async def test_heartbeat_cancelled_on_close(self, connector, scheduler):
        conn, _, _ = _connection(connector, scheduler)
        conn.start()
        await drain()

        connector.latest.drop()
        await drain()

        assert scheduler.pending_for("_on_heartbeat") == []
        await conn.stop()


class TestReconnect:
    async def test_remote_close_schedules_reconnect(self, connector, scheduler):
        conn, _, states = _connection(connector, scheduler)
        conn.start()
        await drain()

        connector.latest.drop()
        await drain()

        assert conn.state is ConnectionState.DISCONNECTED
        assert ConnectionState.CLOSING in states
        assert len(scheduler.pending_for("_on_reconnect_timer")) == 1

        scheduler.advance(5)
        await drain()

        assert conn.state is ConnectionState.CONNECTED
        assert len(connector.sockets) == 2
        assert conn.reconnect_count == 1
        await conn.stop()

    async def test_repeated_close_events_leave_one_timer(self, connector, scheduler):
        conn, _, _ = _connection(connector, scheduler)
        conn.start()
        await drain()

        for _ in range(3):
            conn._on_transport_closed(TransportClosed("closed with code 1006"))

        assert len(scheduler.pending_for("_on_reconnect_timer")) == 1
        await conn.stop()
        assert scheduler.pending == []

    async def test_connect_failures_retry_with_single_timer(self, connector, scheduler):
        connector.fail_next = 2
        conn, _, states = _connection(connector, scheduler)

        conn.start()
        await drain()
        assert ConnectionState.ERRORED in states
        assert conn.state is ConnectionState.DISCONNECTED
        assert len(scheduler.pending_for("_on_reconnect_timer")) == 1

        scheduler.advance(5)
        await drain()
        assert conn.state is ConnectionState.DISCONNECTED
        assert len(scheduler.pending_for("_on_reconnect_timer")) == 1

        scheduler.advance(5)
        await drain()
        assert conn.state is ConnectionState.CONNECTED
        assert connector.urls == ["wss://feed.test/ws/market"] * 3
        await conn.stop()

    async def test_stream_error_goes_through_errored(self, connector, scheduler):
        conn, _, states = _connection(connector, scheduler)
        conn.start()
        await drain()

        connector.latest.fail(RuntimeError("boom"))
        await drain()

        assert states[-2:] == [ConnectionState.ERRORED, ConnectionState.DISCONNECTED]
        assert conn.reconnect_pending
        await conn.stop()

    async def test_start_while_reconnect_pending_waits_for_timer(self, connector, scheduler):
        conn, _, _ = _connection(connector, scheduler)
        conn.start()
        await drain()
        connector.latest.drop()
        await drain()

        conn.start()
        await drain()

        assert len(connector.sockets) == 1
        await conn.stop()


@pytest.fixture
async def echo_server():
    async def handler(request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        await ws.send_str("hello")
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT and msg.data == "PING":
                await ws.send_str("PONG")
        return ws

    app = web.Application()
    app.router.add_get("/ws", handler)
    server = TestServer(app)
    await server.start_server()
    yield server
    await server.close()


async def test_real_websocket_roundtrip(echo_server):
    received: list[str] = []
    conn = StreamConnection(str(echo_server.make_url("/ws")), received.append, ping_interval=0.05)

    conn.start()
    for _ in range(200):
        if "PONG" in received:
            break
        await asyncio.sleep(0.01)

    assert received[0] == "hello"
    assert "PONG" in received

    await conn.stop()
    assert conn.state is ConnectionState.DISCONNECTED
