"""
REST order book snapshot for one instrument.

Used to seed the local book when an instrument is opened. No retries here:
on FetchError the caller keeps its empty book and the user can re-open or
refresh the instrument.
"""

from __future__ import annotations

import asyncio
import time

import aiohttp

from ..errors import FetchError, ParseError
from ..log import get_logger
from ..types import InstrumentId, OrderBook
from .messages import json_loads, parse_levels

logger = get_logger("snapshot")


class SnapshotFetcher:
    """
    Fetches full books from the CLOB REST API.

    Usage:
        fetcher = SnapshotFetcher(http, "https://clob.polymarket.com")
        book = await fetcher.fetch(token_id)
    """

    def __init__(self, http: aiohttp.ClientSession, base_url: str, timeout: float = 10.0) -> None:
        self._http = http
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def fetch(self, instrument: InstrumentId) -> OrderBook:
        """GET /book?token_id=... and return it as an OrderBook."""
        url = f"{self.base_url}/book"

        try:
            async with self._http.get(
                url,
                params={"token_id": instrument},
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            ) as resp:
                if resp.status >= 400:
                    raise FetchError(
                        f"book snapshot for {instrument} failed: HTTP {resp.status} {resp.reason}",
                        url=url,
                        status=resp.status,
                    )
                body = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise FetchError(f"book snapshot for {instrument} failed: {exc!r}", url=url) from exc

        try:
            data = json_loads(body)
            if not isinstance(data, dict):
                raise ParseError("book response is not an object")
            bids = parse_levels(data.get("bids"))
            asks = parse_levels(data.get("asks"))
        except ParseError as exc:
            raise FetchError(f"book snapshot for {instrument} unreadable: {exc}", url=url) from exc

        logger.debug(f"Snapshot {instrument[:12]}: {len(bids)} bids, {len(asks)} asks")

        return OrderBook(
            instrument=instrument,
            bids=bids,
            asks=asks,
            last_updated=time.time(),
        )
