"""
Shared fixtures: an in-memory Transport standing in for the WebSocket.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Callable, Optional, Sequence

import orjson
import pytest

from tardis_stream.machine.config import SessionConfig
from tardis_stream.machine.connection import Frame, FrameKind


class FakeTransport:
    """
    Replays a scripted list of frames.

    Script items may be a Frame, a dict (sent as a JSON text frame), a str
    (sent verbatim as a text frame) or an exception (raised from receive).
    When the script runs out the connection ends without a close frame.
    """

    def __init__(self, script: Sequence[Any]) -> None:
        self._script = deque(script)
        self._closed = False
        self.receive_calls = 0
        self.close_calls = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def remaining(self) -> int:
        return len(self._script)

    async def receive(self) -> Frame:
        self.receive_calls += 1
        if self._closed:
            raise AssertionError("receive() called on a closed transport")
        if not self._script:
            return Frame(FrameKind.CLOSE, close_code=None)

        item = self._script.popleft()
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, Frame):
            return item
        if isinstance(item, dict):
            return Frame(FrameKind.TEXT, data=orjson.dumps(item).decode("utf-8"))
        return Frame(FrameKind.TEXT, data=item)

    async def close(self) -> None:
        self.close_calls += 1
        self._closed = True


class FakeTransportFactory:
    """TransportFactory that records every connection attempt."""

    def __init__(
        self,
        script: Sequence[Any] = (),
        error: Optional[BaseException] = None,
        delay: float = 0.0,
    ) -> None:
        self._script = list(script)
        self._error = error
        self._delay = delay
        self.urls: list[str] = []
        self.transports: list[FakeTransport] = []

    @property
    def transport(self) -> FakeTransport:
        return self.transports[-1]

    async def __call__(self, url: str, config: SessionConfig) -> FakeTransport:
        self.urls.append(url)
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        transport = FakeTransport(self._script)
        self.transports.append(transport)
        return transport


@pytest.fixture
def make_factory() -> Callable[..., FakeTransportFactory]:
    """Build a FakeTransportFactory from a frame script."""
    return FakeTransportFactory


@pytest.fixture
def normal_close() -> Frame:
    return Frame(FrameKind.CLOSE, close_code=1000)


@pytest.fixture
def trade_envelope() -> Callable[..., dict[str, Any]]:
    """Build a trade envelope as the server sends it."""

    def build(
        exchange: str = "bybit",
        symbol: str = "BTCUSDT",
        price: float = 19500.5,
        trade_id: str = "a1b2c3",
    ) -> dict[str, Any]:
        return {
            "type": "trade",
            "symbol": symbol,
            "exchange": exchange,
            "id": trade_id,
            "price": price,
            "amount": 0.01,
            "side": "buy",
            "timestamp": "2022-10-01T00:00:00.123Z",
            "localTimestamp": "2022-10-01T00:00:00.150Z",
        }

    return build
