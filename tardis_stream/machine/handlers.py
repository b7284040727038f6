"""
Message decoding for normalized streams.

Parsers turn one JSON envelope from the server into a normalized dataclass:
- TradeParser: trade
- BookChangeParser: book_change (incremental L2)
- BookSnapshotParser: book_snapshot (incl. the "quote" snapshot)
- DerivativeTickerParser: derivative_ticker
- TradeBarParser: trade_bar
- DisconnectParser: disconnect marker
- ServerErrorParser: error envelope

Envelope shape:
{
    "type": "trade",
    "symbol": "BTCUSDT",
    "exchange": "bybit",
    "timestamp": "2022-10-01T00:00:00.000Z",
    "localTimestamp": "2022-10-01T00:00:00.050Z",
    ... type-specific fields ...
}
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Generic, Optional, TypeVar, Union

import orjson

from tardis_stream.machine.errors import DecodeError, MalformedFrameError
from tardis_stream.machine.types import (
    BookChange,
    BookLevel,
    BookSnapshot,
    DerivativeTicker,
    Disconnect,
    NormalizedMessage,
    ServerError,
    Trade,
    TradeBar,
    TradeBarKind,
    TradeSide,
    UnknownMessage,
)
from tardis_stream.types.types import Exchange

logger = logging.getLogger(__name__)

T = TypeVar("T")

DecodedFrame = Union[NormalizedMessage, ServerError]

# 2022-10-01T00:00:00.123456789Z, 2022-10-01T02:00:00+02:00
_TIMESTAMP_RE = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d+))?"
    r"(?P<tz>Z|z|[+-]\d{2}:?\d{2})?$"
)


@dataclass
class DecoderStats:
    """Statistics for the frame decoder."""

    frames_decoded: int = 0
    malformed_frames: int = 0
    decode_errors: int = 0
    unknown_types: int = 0
    by_type: dict[str, int] = field(default_factory=dict)


def _safe_float(value: Any, field_name: str, message_type: Optional[str] = None) -> float:
    """Safely convert a value to float."""
    if isinstance(value, bool):
        raise DecodeError(
            f"Invalid float value for {field_name}: {value}",
            message_type=message_type,
            field=field_name,
        )
    try:
        if isinstance(value, float):
            return value
        return float(value)
    except (ValueError, TypeError) as e:
        raise DecodeError(
            f"Invalid float value for {field_name}: {value}",
            message_type=message_type,
            field=field_name,
        ) from e


def _safe_int(value: Any, field_name: str, message_type: Optional[str] = None) -> int:
    """Safely convert a value to int."""
    if isinstance(value, bool):
        raise DecodeError(
            f"Invalid integer value for {field_name}: {value}",
            message_type=message_type,
            field=field_name,
        )
    try:
        return int(value)
    except (ValueError, TypeError) as e:
        raise DecodeError(
            f"Invalid integer value for {field_name}: {value}",
            message_type=message_type,
            field=field_name,
        ) from e


def parse_timestamp(value: Any, field_name: str = "timestamp", message_type: Optional[str] = None) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Fractions beyond microseconds are truncated, a missing fraction means
    whole seconds. A timestamp without an offset is rejected.
    """
    if not isinstance(value, str):
        raise DecodeError(
            f"Invalid timestamp for {field_name}: {value!r}",
            message_type=message_type,
            field=field_name,
        )

    match = _TIMESTAMP_RE.match(value.strip())
    if match is None or match.group("tz") is None:
        raise DecodeError(
            f"Invalid timestamp for {field_name}: {value!r}",
            message_type=message_type,
            field=field_name,
        )

    try:
        base = datetime.strptime(match.group("base").replace(" ", "T"), "%Y-%m-%dT%H:%M:%S")
    except ValueError as e:
        raise DecodeError(
            f"Invalid timestamp for {field_name}: {value!r}",
            message_type=message_type,
            field=field_name,
        ) from e

    fraction = match.group("fraction") or ""
    microsecond = int((fraction + "000000")[:6])

    tz = match.group("tz")
    if tz in ("Z", "z"):
        offset = timezone.utc
    else:
        sign = -1 if tz[0] == "-" else 1
        digits = tz[1:].replace(":", "")
        try:
            offset = timezone(sign * timedelta(hours=int(digits[:2]), minutes=int(digits[2:])))
        except ValueError as e:
            raise DecodeError(
                f"Invalid timestamp offset for {field_name}: {value!r}",
                message_type=message_type,
                field=field_name,
            ) from e

    return base.replace(microsecond=microsecond, tzinfo=offset).astimezone(timezone.utc)


class BaseParser(ABC, Generic[T]):
    """
    Abstract base class for envelope parsers.

    Each parser:
    1. Receives the decoded JSON object of one frame
    2. Validates and converts the type-specific fields
    3. Returns the normalized dataclass, or raises DecodeError
    """

    message_type: str = ""

    def parse(self, data: dict[str, Any]) -> T:
        return self._parse(data)

    @abstractmethod
    def _parse(self, data: dict[str, Any]) -> T:
        """Parse the envelope into a message."""
        ...

    # -- field helpers -------------------------------------------------

    def _require(self, data: dict[str, Any], key: str) -> Any:
        value = data.get(key)
        if value is None:
            raise DecodeError(
                f"Missing required field: {key}",
                message_type=self.message_type,
                field=key,
            )
        return value

    def _str(self, data: dict[str, Any], key: str) -> str:
        value = self._require(data, key)
        if not isinstance(value, str):
            raise DecodeError(
                f"Field {key} must be a string",
                message_type=self.message_type,
                field=key,
            )
        return value

    def _float(self, data: dict[str, Any], key: str) -> float:
        return _safe_float(self._require(data, key), key, self.message_type)

    def _optional_float(self, data: dict[str, Any], key: str) -> Optional[float]:
        value = data.get(key)
        if value is None:
            return None
        return _safe_float(value, key, self.message_type)

    def _int(self, data: dict[str, Any], key: str) -> int:
        return _safe_int(self._require(data, key), key, self.message_type)

    def _timestamp(self, data: dict[str, Any], key: str) -> datetime:
        return parse_timestamp(self._require(data, key), key, self.message_type)

    def _exchange(self, data: dict[str, Any]) -> Exchange:
        value = self._require(data, "exchange")
        try:
            return Exchange(value)
        except ValueError as e:
            raise DecodeError(
                f"Unknown exchange: {value}",
                message_type=self.message_type,
                field="exchange",
            ) from e

    def _levels(self, data: dict[str, Any], key: str) -> tuple[BookLevel, ...]:
        raw = data.get(key)
        if raw is None:
            return ()
        if not isinstance(raw, list):
            raise DecodeError(
                f"Field {key} must be a list of levels",
                message_type=self.message_type,
                field=key,
            )
        levels: list[BookLevel] = []
        for level in raw:
            # {"price": .., "amount": ..} or [price, amount]
            if isinstance(level, dict):
                price, amount = level.get("price"), level.get("amount")
            elif isinstance(level, (list, tuple)) and len(level) >= 2:
                price, amount = level[0], level[1]
            else:
                raise DecodeError(
                    f"Invalid level in {key}: {level!r}",
                    message_type=self.message_type,
                    field=key,
                )
            levels.append(
                BookLevel(
                    price=_safe_float(price, f"{key}.price", self.message_type),
                    amount=_safe_float(amount, f"{key}.amount", self.message_type),
                )
            )
        return tuple(levels)


class TradeParser(BaseParser[Trade]):
    message_type = "trade"

    def _parse(self, data: dict[str, Any]) -> Trade:
        side_raw = data.get("side", "unknown")
        try:
            side = TradeSide(side_raw)
        except ValueError:
            side = TradeSide.UNKNOWN

        trade_id = data.get("id")
        return Trade(
            exchange=self._exchange(data),
            symbol=self._str(data, "symbol"),
            id=str(trade_id) if trade_id is not None else None,
            price=self._float(data, "price"),
            amount=self._float(data, "amount"),
            side=side,
            timestamp=self._timestamp(data, "timestamp"),
            local_timestamp=self._timestamp(data, "localTimestamp"),
        )


class BookChangeParser(BaseParser[BookChange]):
    message_type = "book_change"

    def _parse(self, data: dict[str, Any]) -> BookChange:
        return BookChange(
            exchange=self._exchange(data),
            symbol=self._str(data, "symbol"),
            is_snapshot=bool(data.get("isSnapshot", False)),
            bids=self._levels(data, "bids"),
            asks=self._levels(data, "asks"),
            timestamp=self._timestamp(data, "timestamp"),
            local_timestamp=self._timestamp(data, "localTimestamp"),
        )


class BookSnapshotParser(BaseParser[BookSnapshot]):
    message_type = "book_snapshot"

    def _parse(self, data: dict[str, Any]) -> BookSnapshot:
        return BookSnapshot(
            exchange=self._exchange(data),
            symbol=self._str(data, "symbol"),
            name=self._str(data, "name"),
            depth=self._int(data, "depth"),
            interval=self._int(data, "interval"),
            bids=self._levels(data, "bids"),
            asks=self._levels(data, "asks"),
            timestamp=self._timestamp(data, "timestamp"),
            local_timestamp=self._timestamp(data, "localTimestamp"),
        )


class DerivativeTickerParser(BaseParser[DerivativeTicker]):
    message_type = "derivative_ticker"

    def _parse(self, data: dict[str, Any]) -> DerivativeTicker:
        return DerivativeTicker(
            exchange=self._exchange(data),
            symbol=self._str(data, "symbol"),
            last_price=self._optional_float(data, "lastPrice"),
            open_interest=self._optional_float(data, "openInterest"),
            funding_rate=self._optional_float(data, "fundingRate"),
            index_price=self._optional_float(data, "indexPrice"),
            mark_price=self._optional_float(data, "markPrice"),
            timestamp=self._timestamp(data, "timestamp"),
            local_timestamp=self._timestamp(data, "localTimestamp"),
        )


class TradeBarParser(BaseParser[TradeBar]):
    message_type = "trade_bar"

    def _parse(self, data: dict[str, Any]) -> TradeBar:
        kind_raw = self._str(data, "kind")
        try:
            kind = TradeBarKind(kind_raw)
        except ValueError as e:
            raise DecodeError(
                f"Unknown trade bar kind: {kind_raw}",
                message_type=self.message_type,
                field="kind",
            ) from e

        return TradeBar(
            exchange=self._exchange(data),
            symbol=self._str(data, "symbol"),
            name=self._str(data, "name"),
            interval=self._int(data, "interval"),
            kind=kind,
            open=self._float(data, "open"),
            high=self._float(data, "high"),
            low=self._float(data, "low"),
            close=self._float(data, "close"),
            volume=self._float(data, "volume"),
            buy_volume=self._float(data, "buyVolume"),
            sell_volume=self._float(data, "sellVolume"),
            trades=self._int(data, "trades"),
            vwap=self._float(data, "vwap"),
            open_timestamp=self._timestamp(data, "openTimestamp"),
            close_timestamp=self._timestamp(data, "closeTimestamp"),
            timestamp=self._timestamp(data, "timestamp"),
            local_timestamp=self._timestamp(data, "localTimestamp"),
        )


class DisconnectParser(BaseParser[Disconnect]):
    message_type = "disconnect"

    def _parse(self, data: dict[str, Any]) -> Disconnect:
        timestamp = data.get("timestamp")
        local_timestamp = data.get("localTimestamp") or timestamp
        if local_timestamp is None:
            raise DecodeError(
                "Missing required field: localTimestamp",
                message_type=self.message_type,
                field="localTimestamp",
            )

        symbol = data.get("symbol")
        target = data.get("dataType")
        return Disconnect(
            exchange=self._exchange(data),
            symbol=symbol if isinstance(symbol, str) else None,
            timestamp=parse_timestamp(timestamp, "timestamp", self.message_type) if timestamp else None,
            local_timestamp=parse_timestamp(local_timestamp, "localTimestamp", self.message_type),
            target_data_type=target if isinstance(target, str) else None,
        )


class ServerErrorParser(BaseParser[ServerError]):
    message_type = "error"

    def _parse(self, data: dict[str, Any]) -> ServerError:
        message = data.get("message") or data.get("details") or "Unknown server error"
        return ServerError(message=str(message), raw=data)


class MessageDecoder:
    """
    Decodes raw frames into normalized messages.

    The decoder dispatches on the envelope's ``type`` field. Unrecognized
    types decode into UnknownMessage so that new server message shapes
    never abort an otherwise healthy stream.
    """

    def __init__(self, parsers: Optional[list[BaseParser[Any]]] = None) -> None:
        if parsers is None:
            parsers = [
                TradeParser(),
                BookChangeParser(),
                BookSnapshotParser(),
                DerivativeTickerParser(),
                TradeBarParser(),
                DisconnectParser(),
                ServerErrorParser(),
            ]
        self._parsers: dict[str, BaseParser[Any]] = {p.message_type: p for p in parsers}
        self._stats = DecoderStats()

    @property
    def stats(self) -> DecoderStats:
        """Get decoder statistics."""
        return self._stats

    def decode(self, raw: Union[str, bytes]) -> DecodedFrame:
        """
        Decode one frame.

        Raises:
            MalformedFrameError: If the frame is not a JSON object
            DecodeError: If a recognized type has missing/invalid fields
        """
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            self._stats.malformed_frames += 1
            raise MalformedFrameError(
                f"Frame is not valid JSON: {e}",
                raw_data=raw if isinstance(raw, str) else raw.decode("utf-8", "replace"),
                component="MessageDecoder",
            ) from e

        if not isinstance(data, dict):
            self._stats.malformed_frames += 1
            raise MalformedFrameError(
                f"Frame is not a JSON object: {type(data).__name__}",
                raw_data=raw if isinstance(raw, str) else raw.decode("utf-8", "replace"),
                component="MessageDecoder",
            )

        return self.decode_payload(data)

    def decode_payload(self, data: dict[str, Any]) -> DecodedFrame:
        """Decode an already parsed envelope."""
        message_type = data.get("type")
        parser = self._parsers.get(message_type) if isinstance(message_type, str) else None

        if parser is None:
            self._stats.unknown_types += 1
            logger.debug(f"Unknown message type: {message_type!r}")
            exchange = data.get("exchange")
            symbol = data.get("symbol")
            return UnknownMessage(
                type=message_type if isinstance(message_type, str) else None,
                exchange=exchange if isinstance(exchange, str) else None,
                symbol=symbol if isinstance(symbol, str) else None,
                raw=data,
            )

        try:
            message = parser.parse(data)
        except DecodeError:
            self._stats.decode_errors += 1
            raise

        self._stats.frames_decoded += 1
        self._stats.by_type[parser.message_type] = self._stats.by_type.get(parser.message_type, 0) + 1
        return message

    def reset_stats(self) -> None:
        """Reset decoder statistics."""
        self._stats = DecoderStats()


def decode_frame(raw: Union[str, bytes]) -> DecodedFrame:
    """Decode one frame without keeping statistics."""
    return MessageDecoder().decode(raw)
