"""
Frame codec for the Polymarket WebSocket channels.

Inbound market frames come in a few shapes:
- [ {asset_id, bids: [{price, size}], asks: [...]}, ... ]    full books
- {price_changes: [{asset_id, side, price, size}, ...]}       deltas
- {event_type: "book", asset_id, bids, asks}                   single full book
- {asset_id, changes: [{side, price, size}, ...]}             legacy deltas
- "PONG"                                                       heartbeat ack

Anything else that parses as JSON is ignored. Anything that does not parse,
or is missing a required field, raises ParseError.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Union

import orjson

from ..errors import ParseError
from ..types import Fill, FullBook, InstrumentId, PriceChange, PriceLevel, Side

PING = "PING"
PONG = "PONG"

MarketEvent = Union[FullBook, PriceChange]


def json_loads(data: bytes | str) -> Any:
    try:
        return orjson.loads(data)
    except orjson.JSONDecodeError as exc:
        raise ParseError(f"invalid JSON frame: {exc}") from exc


def json_dumps(obj: Any) -> str:
    return orjson.dumps(obj).decode()


def _decimal_str(value: Any, field: str) -> str:
    """Validate a decimal price/size and return it as the string we store."""
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ParseError(f"{field} is not a decimal: {value!r}")
    text = value if isinstance(value, str) else str(value)
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        raise ParseError(f"{field} is not a decimal: {value!r}") from None
    if not parsed.is_finite() or parsed < 0:
        raise ParseError(f"{field} out of range: {value!r}")
    return text


def _side(value: Any) -> Side:
    try:
        return Side(str(value).upper())
    except ValueError:
        raise ParseError(f"unknown side: {value!r}") from None


def _levels(raw_levels: Any) -> tuple[PriceLevel, ...]:
    if raw_levels is None:
        return ()
    if not isinstance(raw_levels, list):
        raise ParseError(f"levels must be a list, got {type(raw_levels).__name__}")

    levels = []
    for item in raw_levels:
        try:
            levels.append(PriceLevel(
                _decimal_str(item["price"], "price"),
                _decimal_str(item["size"], "size"),
            ))
        except (KeyError, TypeError):
            raise ParseError(f"malformed level: {item!r}") from None
    return tuple(levels)


def parse_levels(raw_levels: Any) -> tuple[PriceLevel, ...]:
    """Levels from a REST or WS payload ([{price, size}, ...])."""
    return _levels(raw_levels)


def _change(record: dict, instrument: InstrumentId | None) -> PriceChange:
    try:
        asset_id = record.get("asset_id") or instrument
        if not asset_id:
            raise KeyError("asset_id")
        return PriceChange(
            instrument=str(asset_id),
            side=_side(record["side"]),
            price=_decimal_str(record["price"], "price"),
            size=_decimal_str(record["size"], "size"),
        )
    except (KeyError, AttributeError, TypeError) as exc:
        raise ParseError(f"malformed price change: {exc}") from None


def _decode_record(record: dict) -> list[MarketEvent]:
    if "price_changes" in record:
        changes = record["price_changes"]
        if not isinstance(changes, list):
            raise ParseError("price_changes must be a list")
        parent = record.get("asset_id")
        return [_change(change, parent) for change in changes]

    if "changes" in record and "asset_id" in record:
        changes = record["changes"]
        if not isinstance(changes, list):
            raise ParseError("changes must be a list")
        return [_change(change, record["asset_id"]) for change in changes]

    bids = record.get("bids", record.get("buys"))
    asks = record.get("asks", record.get("sells"))
    if bids is not None or asks is not None or record.get("event_type") == "book":
        asset_id = record.get("asset_id")
        if not asset_id:
            raise ParseError("book record without asset_id")
        return [FullBook(
            instrument=str(asset_id),
            bids=_levels(bids),
            asks=_levels(asks),
            market=record.get("market"),
        )]

    # last_trade_price, tick_size_change, ... are not book events
    return []


def decode_market_frame(raw: bytes | str) -> list[MarketEvent]:
    """
    Decode one market-channel frame into book events, in frame order.

    Returns an empty list for frames that carry no book data.
    """
    if isinstance(raw, str) and raw.strip() == PONG:
        return []

    data = json_loads(raw)

    if isinstance(data, list):
        events: list[MarketEvent] = []
        for record in data:
            if isinstance(record, dict):
                events.extend(_decode_record(record))
        return events

    if isinstance(data, dict):
        return _decode_record(data)

    return []


def _fill(record: dict) -> Fill:
    try:
        return Fill(
            trade_id=str(record["id"]),
            instrument=str(record["asset_id"]),
            side=_side(record["side"]),
            price=_decimal_str(record["price"], "price"),
            size=_decimal_str(record["size"], "size"),
            outcome=str(record.get("outcome") or ""),
            status=str(record.get("status") or ""),
            market=str(record.get("market") or ""),
        )
    except KeyError as exc:
        raise ParseError(f"malformed trade event, missing {exc}") from None


def decode_user_frame(raw: bytes | str) -> list[Fill]:
    """Decode one user-channel frame into fills. Order updates are ignored."""
    if isinstance(raw, str) and raw.strip() == PONG:
        return []

    data = json_loads(raw)
    records = data if isinstance(data, list) else [data]

    return [
        _fill(record)
        for record in records
        if isinstance(record, dict) and record.get("event_type") == "trade"
    ]


def subscribe_frame(instruments: Iterable[InstrumentId]) -> dict:
    return {"assets_ids": sorted(instruments), "type": "market"}


def unsubscribe_frame(instruments: Iterable[InstrumentId]) -> dict:
    return {"assets_ids": sorted(instruments), "type": "unsubscribe"}


def user_auth_frame(api_key: str, secret: str, passphrase: str, markets: Iterable[str] = ()) -> dict:
    return {
        "auth": {"apiKey": api_key, "secret": secret, "passphrase": passphrase},
        "type": "user",
        "markets": list(markets),
    }
