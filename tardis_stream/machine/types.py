"""
Shared types, enums, and normalized message structures for the streaming client.

Every normalized message is a frozen dataclass attributable to exactly one
(exchange, symbol, data_type) triple. ``NormalizedMessage`` is the closed
union of all variants; ``UnknownMessage`` is its catch-all arm for message
types this client does not know yet.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from tardis_stream.types.types import Exchange


class SessionState(str, Enum):
    """State machine for a StreamSession."""

    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    STREAMING = "streaming"
    DRAINING = "draining"
    CLOSED = "closed"
    ERRORED = "errored"


class StreamMode(str, Enum):
    REPLAY = "replay"
    LIVE = "live"


class TradeSide(str, Enum):
    """Liquidity taker side (aggressor)."""

    BUY = "buy"
    SELL = "sell"
    UNKNOWN = "unknown"


class TradeBarKind(str, Enum):
    TIME = "time"
    VOLUME = "volume"
    TICK = "tick"


@dataclass(frozen=True, slots=True)
class BookLevel:
    """A price level; amount is the updated amount, 0 removes the level."""

    price: float
    amount: float


@dataclass(frozen=True, slots=True)
class Trade:
    """Individual trade."""

    exchange: Exchange
    symbol: str
    id: Optional[str]  # Trade id if provided by exchange
    price: float
    amount: float
    side: TradeSide
    timestamp: datetime  # Exchange timestamp (UTC)
    local_timestamp: datetime  # Message arrival timestamp (UTC)

    @property
    def data_type(self) -> str:
        return "trade"


@dataclass(frozen=True, slots=True)
class BookChange:
    """
    Incremental L2 order book update.

    The first message per symbol has is_snapshot=True and carries the full
    initial book.
    """

    exchange: Exchange
    symbol: str
    is_snapshot: bool
    bids: tuple[BookLevel, ...]
    asks: tuple[BookLevel, ...]
    timestamp: datetime
    local_timestamp: datetime

    @property
    def data_type(self) -> str:
        return "book_change"


@dataclass(frozen=True, slots=True)
class BookSnapshot:
    """Top-N order book snapshot named book_snapshot_{depth}_{interval}{unit}."""

    exchange: Exchange
    symbol: str
    name: str
    depth: int
    interval: int  # Snapshot interval in milliseconds
    bids: tuple[BookLevel, ...]
    asks: tuple[BookLevel, ...]
    timestamp: datetime
    local_timestamp: datetime

    @property
    def data_type(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class DerivativeTicker:
    """Derivative instrument ticker (funding, open interest, mark/index price)."""

    exchange: Exchange
    symbol: str
    last_price: Optional[float]
    open_interest: Optional[float]
    funding_rate: Optional[float]
    index_price: Optional[float]
    mark_price: Optional[float]
    timestamp: datetime
    local_timestamp: datetime

    @property
    def data_type(self) -> str:
        return "derivative_ticker"


@dataclass(frozen=True, slots=True)
class TradeBar:
    """
    Aggregated trades (OHLC) named trade_bar_{interval}.

    Bars can be time, volume or tick based. No trades in an interval means
    no bar.
    """

    exchange: Exchange
    symbol: str
    name: str
    interval: int
    kind: TradeBarKind
    open: float
    high: float
    low: float
    close: float
    volume: float
    buy_volume: float
    sell_volume: float
    trades: int
    vwap: float
    open_timestamp: datetime
    close_timestamp: datetime
    timestamp: datetime  # End of interval
    local_timestamp: datetime

    @property
    def data_type(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class Disconnect:
    """
    In-band end-of-data marker for one exchange's sub-feeds.

    Not a transport-level close. ``target_data_type`` is set when the server
    scopes the marker to a single data type.
    """

    exchange: Exchange
    symbol: Optional[str]
    timestamp: Optional[datetime]
    local_timestamp: datetime
    target_data_type: Optional[str] = None

    @property
    def data_type(self) -> str:
        return "disconnect"


@dataclass(frozen=True, slots=True)
class ServerError:
    """Error envelope sent by the server (e.g. rejected subscription)."""

    message: str
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def data_type(self) -> str:
        return "error"


@dataclass(frozen=True, slots=True)
class UnknownMessage:
    """Structurally valid message of a type this client does not recognize."""

    type: Optional[str]
    exchange: Optional[str]
    symbol: Optional[str]
    raw: dict[str, Any]

    @property
    def data_type(self) -> str:
        return self.type or "unknown"


NormalizedMessage = Union[
    Trade,
    BookChange,
    BookSnapshot,
    DerivativeTicker,
    TradeBar,
    Disconnect,
    UnknownMessage,
]


@dataclass(frozen=True, slots=True)
class RouteKey:
    """Routing key of one sub-feed within a multiplexed connection."""

    exchange: str
    data_type: str

    def __str__(self) -> str:
        return f"{self.exchange}:{self.data_type}"


@dataclass
class SessionStats:
    """Diagnostics for a single stream session."""

    frames_received: int = 0
    messages_decoded: int = 0
    malformed_frames: int = 0
    decode_errors: int = 0
    unknown_messages: int = 0
    disconnects: int = 0
