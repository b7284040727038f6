"""
Normalized Market Data Streaming Module.

This module replays historical and streams live normalized market data
from a normalization server over a single WebSocket per session.

Components:
- Client: Facade validating requests and opening sessions
- Router: Handshake URL building and (exchange, data_type) routing
- StreamSession: Connection lifecycle and pull-driven message sequence
- MessageDecoder: Envelope parsing into normalized dataclasses
- AiohttpTransport: WebSocket transport

Usage:
    from tardis_stream.machine import Client, RequestOptions

    client = Client("ws://localhost:8001")
    stream = await client.replay_normalized([
        RequestOptions(
            exchange="bybit",
            symbols=["BTCUSDT"],
            from_date="2022-10-01",
            to_date="2022-10-02",
            data_types=["trade"],
            with_disconnect_messages=True,
        )
    ])
    async with stream:
        async for item in stream:
            print(item)
"""

from tardis_stream.machine.client import Client
from tardis_stream.machine.config import ErrorPolicy, LiveOptions, RequestOptions, SessionConfig
from tardis_stream.machine.errors import (
    ConfigurationError,
    ConnectError,
    DecodeError,
    InvalidRequestError,
    MalformedFrameError,
    ProtocolError,
    StreamError,
    TransportError,
)
from tardis_stream.machine.handlers import MessageDecoder, decode_frame
from tardis_stream.machine.session import StreamItem, StreamSession
from tardis_stream.machine.types import (
    BookChange,
    BookLevel,
    BookSnapshot,
    DerivativeTicker,
    Disconnect,
    NormalizedMessage,
    SessionState,
    SessionStats,
    StreamMode,
    Trade,
    TradeBar,
    TradeBarKind,
    TradeSide,
    UnknownMessage,
)

__all__ = [
    # Main entry point
    "Client",
    "StreamSession",
    "StreamItem",
    # Configuration
    "RequestOptions",
    "LiveOptions",
    "SessionConfig",
    "ErrorPolicy",
    # Decoding
    "MessageDecoder",
    "decode_frame",
    # Types
    "NormalizedMessage",
    "Trade",
    "BookChange",
    "BookLevel",
    "BookSnapshot",
    "DerivativeTicker",
    "TradeBar",
    "TradeBarKind",
    "TradeSide",
    "Disconnect",
    "UnknownMessage",
    "SessionState",
    "SessionStats",
    "StreamMode",
    # Errors
    "StreamError",
    "InvalidRequestError",
    "ConnectError",
    "ProtocolError",
    "MalformedFrameError",
    "DecodeError",
    "TransportError",
    "ConfigurationError",
]
