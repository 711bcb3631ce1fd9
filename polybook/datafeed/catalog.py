"""
Event / market catalog from the Gamma API.

Open events are listed newest first in pages of `events_page_size`; paging
stops at the first empty or short page. The full list is cached in memory for
`catalog_cache_ttl` seconds since it takes several requests to build.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..config import Settings, get_settings
from ..errors import FetchError, ParseError
from ..log import get_logger
from .messages import json_loads

logger = get_logger("catalog")


def _json_list(value: Any) -> Any:
    """Gamma sends some list fields as JSON-encoded strings ('["Yes", "No"]')."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        try:
            return json_loads(value)
        except ParseError:
            return [value]
    return value


class Tag(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = ""
    label: str = ""
    slug: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> str:
        return "" if value is None else str(value)


class Market(BaseModel):
    """One binary (or multi-outcome) market; each outcome is an instrument."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    question: str = ""
    slug: str = ""
    condition_id: str = Field(default="", alias="conditionId")
    outcomes: list[str] = Field(default_factory=list)
    token_ids: list[str] = Field(default_factory=list, alias="clobTokenIds")
    last_trade_price: float | None = Field(default=None, alias="lastTradePrice")
    best_bid: float | None = Field(default=None, alias="bestBid")
    best_ask: float | None = Field(default=None, alias="bestAsk")
    volume: float | None = None
    volume_24hr: float | None = Field(default=None, alias="volume24hr")
    liquidity: float | None = None
    liquidity_clob: float | None = Field(default=None, alias="liquidityClob")
    one_day_price_change: float | None = Field(default=None, alias="oneDayPriceChange")
    active: bool = True
    closed: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> str:
        return str(value)

    @field_validator("outcomes", "token_ids", mode="before")
    @classmethod
    def _decode_lists(cls, value: Any) -> Any:
        return [str(item) for item in _json_list(value)]

    @field_validator("question", "slug", "condition_id", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def has_book(self) -> bool:
        return bool(self.token_ids)

    def outcome_tokens(self) -> list[tuple[str, str]]:
        """(outcome name, token id) pairs; unnamed outcomes get a positional label."""
        return [
            (self.outcomes[i] if i < len(self.outcomes) else f"Outcome {i + 1}", token)
            for i, token in enumerate(self.token_ids)
        ]


class Event(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    title: str = ""
    slug: str = ""
    ticker: str = ""
    description: str = ""
    end_date: str | None = Field(default=None, alias="endDate")
    markets: list[Market] = Field(default_factory=list)
    volume: float | None = None
    volume_24hr: float | None = Field(default=None, alias="volume24hr")
    volume_1wk: float | None = Field(default=None, alias="volume1wk")
    volume_1mo: float | None = Field(default=None, alias="volume1mo")
    volume_1yr: float | None = Field(default=None, alias="volume1yr")
    liquidity: float | None = None
    liquidity_clob: float | None = Field(default=None, alias="liquidityClob")
    competitive: float | None = None
    open_interest: float | None = Field(default=None, alias="openInterest")
    comment_count: int | None = Field(default=None, alias="commentCount")
    tags: list[Tag] = Field(default_factory=list)
    active: bool = True
    closed: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> str:
        return str(value)

    @field_validator("title", "slug", "ticker", "description", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("markets", "tags", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value


ProgressCallback = Callable[[int, int], None]


class CatalogClient:
    """
    Paginated event listing with an in-memory TTL cache.

    Usage:
        catalog = CatalogClient(http, settings)
        markets = await catalog.fetch_all_markets()
    """

    def __init__(
        self,
        http: aiohttp.ClientSession,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._http = http
        self.settings = settings or get_settings()
        self._clock = clock
        self._timeout = aiohttp.ClientTimeout(total=self.settings.request_timeout)

        self._cached_events: list[Event] | None = None
        self._cached_at: float = 0.0

    async def fetch_events_page(self, limit: int, offset: int) -> list[Event]:
        url = f"{self.settings.gamma_url.rstrip('/')}/events"
        params = {
            "closed": "false",
            "order": "id",
            "ascending": "false",
            "limit": str(limit),
            "offset": str(offset),
        }

        try:
            async with self._http.get(url, params=params, timeout=self._timeout) as resp:
                if resp.status >= 400:
                    raise FetchError(
                        f"events page at offset {offset} failed: HTTP {resp.status} {resp.reason}",
                        url=url,
                        status=resp.status,
                    )
                body = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise FetchError(f"events page at offset {offset} failed: {exc!r}", url=url) from exc

        try:
            data = json_loads(body)
        except ParseError as exc:
            raise FetchError(f"events page at offset {offset} unreadable: {exc}", url=url) from exc
        if not isinstance(data, list):
            raise FetchError(f"events page at offset {offset} is not a list", url=url)

        events = []
        for raw in data:
            try:
                events.append(Event.model_validate(raw))
            except ValidationError as exc:
                logger.warning(f"Skipping malformed event {raw.get('id') if isinstance(raw, dict) else raw!r}: "
                               f"{exc.error_count()} errors")
        return events

    async def fetch_all_events(
        self,
        on_progress: ProgressCallback | None = None,
        use_cache: bool = True,
    ) -> list[Event]:
        """Every open event. on_progress(events_loaded, markets_loaded) after each page."""
        if use_cache and self._cache_valid():
            logger.debug(f"Catalog cache hit ({len(self._cached_events or [])} events)")
            return list(self._cached_events or [])

        limit = self.settings.events_page_size
        offset = 0
        events: list[Event] = []
        market_count = 0

        while True:
            page = await self.fetch_events_page(limit, offset)
            if not page:
                break

            events.extend(page)
            market_count += sum(len(event.markets) for event in page)
            if on_progress is not None:
                on_progress(len(events), market_count)

            if len(page) < limit:
                break
            offset += limit

        logger.info(f"Loaded {len(events)} events / {market_count} markets")

        self._cached_events = events
        self._cached_at = self._clock()
        return list(events)

    async def fetch_all_markets(
        self,
        on_progress: ProgressCallback | None = None,
        use_cache: bool = True,
    ) -> list[Market]:
        """Markets flattened out of every open event, in event order."""
        events = await self.fetch_all_events(on_progress, use_cache=use_cache)
        return [market for event in events for market in event.markets]

    def _cache_valid(self) -> bool:
        if self._cached_events is None:
            return False
        return self._clock() - self._cached_at < self.settings.catalog_cache_ttl

    def invalidate(self) -> None:
        self._cached_events = None
        self._cached_at = 0.0
