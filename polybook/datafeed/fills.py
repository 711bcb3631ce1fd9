"""
Fill notifications from the authenticated user channel.

Two steps:
1. Derive CLOB API credentials from a wallet signature (the signature itself
   is produced by the user's wallet, outside this program).
2. Open a second stream to the user channel, authenticate, and hand every
   trade involving the user's orders to a notify callback.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Callable, NamedTuple

import aiohttp

from ..config import Settings, get_settings
from ..errors import CredentialsError, ParseError
from ..log import get_logger
from ..types import Fill
from .connection import Connector, Scheduler, StreamConnection
from .messages import decode_user_frame, json_loads, user_auth_frame

logger = get_logger("fills")

# Trade ids remembered for dedupe; the oldest are forgotten first
MAX_TRACKED_TRADES = 5000


class ApiCredentials(NamedTuple):
    api_key: str
    secret: str
    passphrase: str

    @classmethod
    def from_settings(cls, settings: Settings) -> ApiCredentials:
        if not settings.has_credentials:
            raise CredentialsError(
                "POLYBOOK_API_KEY, POLYBOOK_API_SECRET and POLYBOOK_API_PASSPHRASE must all be set"
            )
        return cls(settings.api_key, settings.api_secret, settings.api_passphrase)


async def derive_api_credentials(
    http: aiohttp.ClientSession,
    settings: Settings,
    address: str,
    signature: str,
    timestamp: int | str,
    nonce: int = 0,
) -> ApiCredentials:
    """
    POST /auth/derive-api-key with the wallet's L1 auth headers.

    Raises CredentialsError for missing inputs or a rejected request.
    """
    if not address or not signature or not timestamp:
        raise CredentialsError("address, signature and timestamp are required")

    url = f"{settings.clob_url.rstrip('/')}/auth/derive-api-key"
    headers = {
        "Content-Type": "application/json",
        "POLY_ADDRESS": address,
        "POLY_SIGNATURE": signature,
        "POLY_TIMESTAMP": str(timestamp),
        "POLY_NONCE": str(nonce),
    }

    try:
        async with http.post(
            url,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=settings.request_timeout),
        ) as resp:
            body = await resp.read()
            if resp.status >= 400:
                logger.error(f"Credential derivation rejected: HTTP {resp.status} {body[:200]!r}")
                raise CredentialsError(f"failed to derive API credentials: HTTP {resp.status}")
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        raise CredentialsError(f"failed to derive API credentials: {exc!r}") from exc

    try:
        data = json_loads(body)
        credentials = ApiCredentials(
            api_key=data["apiKey"],
            secret=data["secret"],
            passphrase=data["passphrase"],
        )
    except (ParseError, KeyError, TypeError) as exc:
        raise CredentialsError(f"unexpected credential response: {exc}") from exc

    logger.info(f"Derived API credentials for {address[:6]}...{address[-4:]}")
    return credentials


class FillMonitor:
    """
    Watches the user channel and calls notify(fill) once per trade id.

    The venue republishes a trade as it moves MATCHED -> MINED -> CONFIRMED;
    only the first sighting is reported.
    """

    def __init__(
        self,
        credentials: ApiCredentials,
        notify: Callable[[Fill], None],
        settings: Settings | None = None,
        *,
        http: aiohttp.ClientSession | None = None,
        connector: Connector | None = None,
        scheduler: Scheduler | None = None,
        max_tracked: int = MAX_TRACKED_TRADES,
    ) -> None:
        self.settings = settings or get_settings()
        self._credentials = credentials
        self._notify = notify

        # Recently reported trade ids
        self._seen: set[str] = set()
        self._seen_order: deque[str] = deque()
        self._max_tracked = max_tracked

        self.connection = StreamConnection(
            self.settings.user_ws_url,
            self._handle_frame,
            on_open=self._authenticate,
            http=http,
            connector=connector,
            scheduler=scheduler,
            ping_interval=self.settings.ping_interval,
            reconnect_delay=self.settings.reconnect_delay,
            name="user",
        )

        self.fills_reported = 0

    @property
    def is_running(self) -> bool:
        return self.connection.should_reconnect

    def start(self) -> None:
        logger.info("Fill monitor started")
        self.connection.start()

    async def stop(self) -> None:
        await self.connection.stop()
        logger.info("Fill monitor stopped")

    def _authenticate(self) -> None:
        creds = self._credentials
        self.connection.send_json(user_auth_frame(creds.api_key, creds.secret, creds.passphrase))

    def _handle_frame(self, raw: str) -> None:
        try:
            fills = decode_user_frame(raw)
        except ParseError as exc:
            logger.warning(f"Dropping malformed user frame: {exc}")
            return

        for fill in fills:
            if fill.trade_id in self._seen:
                continue
            self._remember(fill.trade_id)
            self.fills_reported += 1
            logger.success(
                f"Fill: {fill.side.value} {fill.size} {fill.outcome or fill.instrument[:12]} @ {fill.price}"
            )
            self._notify(fill)

    def _remember(self, trade_id: str) -> None:
        self._seen.add(trade_id)
        self._seen_order.append(trade_id)
        while len(self._seen_order) > self._max_tracked:
            self._seen.discard(self._seen_order.popleft())
