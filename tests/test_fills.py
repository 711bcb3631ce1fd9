"""Credential derivation and the user-channel fill monitor."""

import aiohttp
import orjson
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from polybook.config import Settings
from polybook.datafeed.fills import ApiCredentials, FillMonitor, derive_api_credentials
from polybook.errors import CredentialsError
from polybook.types import Side

from .conftest import drain

ADDRESS = "0x1234567890abcdef1234567890abcdef12345678"


def _trade(trade_id: str, status: str = "MATCHED") -> dict:
    return {
        "event_type": "trade",
        "id": trade_id,
        "asset_id": "tok-yes",
        "market": "0xmarket",
        "side": "BUY",
        "price": "0.52",
        "size": "25",
        "outcome": "Yes",
        "status": status,
    }


class TestApiCredentials:
    def test_from_settings(self):
        settings = Settings(_env_file=None, api_key="k", api_secret="s", api_passphrase="p")

        assert ApiCredentials.from_settings(settings) == ApiCredentials("k", "s", "p")

    def test_missing_values_raise(self):
        settings = Settings(_env_file=None, api_key="k", api_secret="", api_passphrase="p")

        with pytest.raises(CredentialsError):
            ApiCredentials.from_settings(settings)


@pytest.fixture
async def auth_server():
    seen: list = []

    async def derive(request):
        seen.append(request.headers.copy())
        if request.headers.get("POLY_SIGNATURE") == "bad":
            return web.json_response({"error": "Invalid L1 Request headers"}, status=401)
        if request.headers.get("POLY_SIGNATURE") == "weird":
            return web.json_response({"unexpected": True})
        return web.json_response({"apiKey": "key-1", "secret": "sec-1", "passphrase": "pass-1"})

    app = web.Application()
    app.router.add_post("/auth/derive-api-key", derive)
    server = TestServer(app)
    await server.start_server()
    server.seen = seen
    yield server
    await server.close()


@pytest.fixture
async def http():
    async with aiohttp.ClientSession() as session:
        yield session


class TestDeriveCredentials:
    async def test_derive_sends_l1_headers(self, auth_server, http):
        settings = Settings(_env_file=None, clob_url=str(auth_server.make_url("/")))

        creds = await derive_api_credentials(http, settings, ADDRESS, "0xsig", 1700000000, nonce=3)

        assert creds == ApiCredentials("key-1", "sec-1", "pass-1")
        headers = auth_server.seen[0]
        assert headers["POLY_ADDRESS"] == ADDRESS
        assert headers["POLY_SIGNATURE"] == "0xsig"
        assert headers["POLY_TIMESTAMP"] == "1700000000"
        assert headers["POLY_NONCE"] == "3"

    async def test_rejected_signature(self, auth_server, http):
        settings = Settings(_env_file=None, clob_url=str(auth_server.make_url("/")))

        with pytest.raises(CredentialsError):
            await derive_api_credentials(http, settings, ADDRESS, "bad", 1700000000)

    async def test_unexpected_body(self, auth_server, http):
        settings = Settings(_env_file=None, clob_url=str(auth_server.make_url("/")))

        with pytest.raises(CredentialsError):
            await derive_api_credentials(http, settings, ADDRESS, "weird", 1700000000)

    async def test_missing_inputs_fail_before_request(self, auth_server, http):
        settings = Settings(_env_file=None, clob_url=str(auth_server.make_url("/")))

        with pytest.raises(CredentialsError):
            await derive_api_credentials(http, settings, ADDRESS, "", 1700000000)
        assert auth_server.seen == []


@pytest.fixture
async def monitor(settings, connector, scheduler):
    fills = []
    mon = FillMonitor(
        ApiCredentials("k", "s", "p"),
        fills.append,
        settings,
        connector=connector,
        scheduler=scheduler,
    )
    mon.fills = fills
    mon.start()
    await drain()
    yield mon
    await mon.stop()


class TestFillMonitor:
    async def test_authenticates_on_open(self, monitor, connector):
        assert connector.urls == ["wss://feed.test/ws/user"]
        assert orjson.loads(connector.latest.sent[0]) == {
            "auth": {"apiKey": "k", "secret": "s", "passphrase": "p"},
            "type": "user",
            "markets": [],
        }
        assert monitor.is_running

    async def test_each_trade_reported_once(self, monitor, connector):
        ws = connector.latest
        ws.feed(orjson.dumps([_trade("t-1")]).decode())
        ws.feed(orjson.dumps(_trade("t-1", status="MINED")).decode())
        ws.feed(orjson.dumps([_trade("t-2"), _trade("t-1", status="CONFIRMED")]).decode())
        await drain()

        assert [f.trade_id for f in monitor.fills] == ["t-1", "t-2"]
        assert monitor.fills[0].side is Side.BUY
        assert monitor.fills_reported == 2

    async def test_dedupe_memory_is_bounded(self, settings, connector, scheduler):
        fills = []
        mon = FillMonitor(
            ApiCredentials("k", "s", "p"),
            fills.append,
            settings,
            connector=connector,
            scheduler=scheduler,
            max_tracked=2,
        )
        mon.start()
        await drain()

        ws = connector.latest
        for trade_id in ("t-1", "t-2", "t-3", "t-1", "t-3"):
            ws.feed(orjson.dumps(_trade(trade_id)).decode())
        await drain()

        # t-1 was forgotten once t-3 arrived; t-3 is still remembered
        assert [f.trade_id for f in fills] == ["t-1", "t-2", "t-3", "t-1"]
        assert len(mon._seen) <= 2
        await mon.stop()

    async def test_non_trade_and_malformed_frames_ignored(self, monitor, connector):
        ws = connector.latest
        ws.feed(orjson.dumps({"event_type": "order", "id": "o-1", "type": "PLACEMENT"}).decode())
        ws.feed("garbage{")
        ws.feed("PONG")
        ws.feed(orjson.dumps(_trade("t-9")).decode())
        await drain()

        assert [f.trade_id for f in monitor.fills] == ["t-9"]

    async def test_reauthenticates_after_reconnect(self, monitor, connector, scheduler):
        connector.latest.drop()
        await drain()
        scheduler.advance(5)
        await drain()

        assert len(connector.sockets) == 2
        assert orjson.loads(connector.latest.sent[0])["type"] == "user"

    async def test_stop(self, monitor, scheduler):
        await monitor.stop()

        assert not monitor.is_running
        assert scheduler.pending == []
