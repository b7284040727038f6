"""
Configuration and request types for the normalized streaming client.

Provides immutable, validated dataclasses describing what to stream
(RequestOptions, LiveOptions) and how a session behaves (SessionConfig).
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Sequence, Union

from tardis_stream.machine.errors import ConfigurationError, InvalidRequestError
from tardis_stream.types.types import Exchange

REPLAY_NORMALIZED_PATH = "/ws-replay-normalized"
STREAM_NORMALIZED_PATH = "/ws-stream-normalized"


class ErrorPolicy(str, Enum):
    """What a session does with a frame that fails to decode."""

    YIELD = "yield"  # Surface the error as an item and keep streaming
    SKIP = "skip"  # Log and drop the frame
    RAISE = "raise"  # Raise it from the iterator and end the session


def _coerce_exchange(value: Union[Exchange, str]) -> Exchange:
    try:
        return Exchange(value)
    except ValueError as e:
        raise InvalidRequestError(
            f"Unsupported exchange: {value}",
            field="exchange",
            value=value,
        ) from e


def _coerce_symbols(value: Optional[Sequence[str]]) -> Optional[tuple[str, ...]]:
    if value is None:
        return None
    if isinstance(value, str):
        value = [value]
    symbols = tuple(value)
    for symbol in symbols:
        if not isinstance(symbol, str) or not symbol.strip():
            raise InvalidRequestError("symbols must be non-empty strings", field="symbols", value=symbol)
    return symbols


def _coerce_data_types(value: Sequence[str]) -> tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    data_types = tuple(value)
    if not data_types:
        raise InvalidRequestError("data_types must not be empty", field="data_types")
    for data_type in data_types:
        if not isinstance(data_type, str) or not data_type or "," in data_type or data_type != data_type.strip():
            raise InvalidRequestError(
                f"Invalid data type: {data_type!r}",
                field="data_types",
                value=data_type,
            )
    return data_types


def _coerce_date(value: Union[dt.date, str], field_name: str) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    try:
        return dt.date.fromisoformat(value)
    except (TypeError, ValueError) as e:
        raise InvalidRequestError(
            f"{field_name} must be a date or YYYY-MM-DD string",
            field=field_name,
            value=value,
        ) from e


@dataclass(frozen=True)
class RequestOptions:
    """
    One replay sub-request: exchange, optional symbols, date range and data types.

    Example:
        RequestOptions(
            exchange=Exchange.BYBIT,
            symbols=["BTCUSDT"],
            from_date=dt.date(2022, 10, 1),
            to_date=dt.date(2022, 10, 2),
            data_types=["trade", "book_change"],
        )
    """

    exchange: Exchange
    from_date: dt.date
    to_date: dt.date
    data_types: tuple[str, ...]
    symbols: Optional[tuple[str, ...]] = None
    with_disconnect_messages: Optional[bool] = None

    def __post_init__(self) -> None:
        # Normalize inputs in place (frozen dataclass)
        object.__setattr__(self, "exchange", _coerce_exchange(self.exchange))
        object.__setattr__(self, "from_date", _coerce_date(self.from_date, "from_date"))
        object.__setattr__(self, "to_date", _coerce_date(self.to_date, "to_date"))
        object.__setattr__(self, "data_types", _coerce_data_types(self.data_types))
        object.__setattr__(self, "symbols", _coerce_symbols(self.symbols))

        if self.from_date > self.to_date:
            raise InvalidRequestError(
                f"from_date {self.from_date} is after to_date {self.to_date}",
                field="from_date",
                value=self.from_date,
            )

    def query_params(self) -> list[tuple[str, str]]:
        """Flat query parameters for a single-request handshake."""
        params = [
            ("exchange", self.exchange.value),
            ("from", self.from_date.isoformat()),
            ("to", self.to_date.isoformat()),
        ]
        if self.symbols:
            params.append(("symbols", ",".join(self.symbols)))
        params.append(("data_types", ",".join(self.data_types)))
        if self.with_disconnect_messages:
            params.append(("withDisconnectMessages", "true"))
        return params

    def to_payload(self) -> dict[str, Any]:
        """camelCase object used inside a multiplexed ``options`` array."""
        payload: dict[str, Any] = {
            "exchange": self.exchange.value,
            "from": self.from_date.isoformat(),
            "to": self.to_date.isoformat(),
            "dataTypes": list(self.data_types),
        }
        if self.symbols:
            payload["symbols"] = list(self.symbols)
        if self.with_disconnect_messages is not None:
            payload["withDisconnectMessages"] = self.with_disconnect_messages
        return payload


@dataclass(frozen=True)
class LiveOptions:
    """One live sub-request. Same as RequestOptions without a date range."""

    exchange: Exchange
    data_types: tuple[str, ...]
    symbols: Optional[tuple[str, ...]] = None
    with_disconnect_messages: Optional[bool] = None
    timeout_interval_ms: Optional[int] = None  # Server-side inactivity timeout

    def __post_init__(self) -> None:
        object.__setattr__(self, "exchange", _coerce_exchange(self.exchange))
        object.__setattr__(self, "data_types", _coerce_data_types(self.data_types))
        object.__setattr__(self, "symbols", _coerce_symbols(self.symbols))

        if self.timeout_interval_ms is not None and self.timeout_interval_ms <= 0:
            raise InvalidRequestError(
                "timeout_interval_ms must be positive",
                field="timeout_interval_ms",
                value=self.timeout_interval_ms,
            )

    def query_params(self) -> list[tuple[str, str]]:
        params = [("exchange", self.exchange.value)]
        if self.symbols:
            params.append(("symbols", ",".join(self.symbols)))
        params.append(("data_types", ",".join(self.data_types)))
        if self.with_disconnect_messages:
            params.append(("withDisconnectMessages", "true"))
        if self.timeout_interval_ms is not None:
            params.append(("timeoutIntervalMS", str(self.timeout_interval_ms)))
        return params

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "exchange": self.exchange.value,
            "dataTypes": list(self.data_types),
        }
        if self.symbols:
            payload["symbols"] = list(self.symbols)
        if self.with_disconnect_messages is not None:
            payload["withDisconnectMessages"] = self.with_disconnect_messages
        if self.timeout_interval_ms is not None:
            payload["timeoutIntervalMS"] = self.timeout_interval_ms
        return payload


AnyOptions = Union[RequestOptions, LiveOptions]


@dataclass(frozen=True)
class SessionConfig:
    """Configuration for a single stream session."""

    # Connection behavior
    connect_timeout_s: float = 30.0  # Bounds connect + handshake
    heartbeat_s: Optional[float] = None  # Client pings; None disables
    max_msg_size: int = 0  # 0 = unlimited (book snapshots can be large)

    # Decoding behavior
    error_policy: ErrorPolicy = ErrorPolicy.YIELD
    max_decode_errors: Optional[int] = None  # Consecutive failures before giving up

    # Replay: end normally once every sub-feed has sent its disconnect marker
    end_on_disconnect: bool = True

    # Logging
    log_raw_frames: bool = False
    extra_headers: tuple[tuple[str, str], ...] = ()

    def __post_init__(self) -> None:
        if self.connect_timeout_s <= 0:
            raise ConfigurationError(
                "connect_timeout_s must be positive",
                field="connect_timeout_s",
                value=self.connect_timeout_s,
            )
        if self.heartbeat_s is not None and self.heartbeat_s <= 0:
            raise ConfigurationError(
                "heartbeat_s must be positive",
                field="heartbeat_s",
                value=self.heartbeat_s,
            )
        if self.max_msg_size < 0:
            raise ConfigurationError(
                "max_msg_size must be non-negative",
                field="max_msg_size",
                value=self.max_msg_size,
            )
        if self.max_decode_errors is not None and self.max_decode_errors < 0:
            raise ConfigurationError(
                "max_decode_errors must be non-negative",
                field="max_decode_errors",
                value=self.max_decode_errors,
            )
        try:
            object.__setattr__(self, "error_policy", ErrorPolicy(self.error_policy))
        except ValueError as e:
            raise ConfigurationError(
                "error_policy must be one of yield, skip, raise",
                field="error_policy",
                value=self.error_policy,
            ) from e
