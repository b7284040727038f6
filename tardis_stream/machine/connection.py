"""
WebSocket transport for stream sessions.

Wraps a single aiohttp WebSocket behind the small Transport protocol the
StreamSession consumes:
- Connection establishment (upgrade rejection mapped to ProtocolError)
- Frame reception mapped to Frame values
- Idempotent close of the socket and its client session

The transport does NOT parse messages, reconnect, or run background
tasks. Pings from the server are answered by aiohttp (autoping).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol

import aiohttp

from tardis_stream.machine.config import SessionConfig
from tardis_stream.machine.errors import ConnectError, ProtocolError, TransportError

logger = logging.getLogger(__name__)

NORMAL_CLOSE_CODE = 1000


class FrameKind(str, Enum):
    """Kinds of frames a transport delivers."""

    TEXT = "text"
    CLOSE = "close"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Frame:
    """One frame received from the transport."""

    kind: FrameKind
    data: Optional[str] = None
    close_code: Optional[int] = None
    reason: Optional[str] = None

    @property
    def is_normal_close(self) -> bool:
        return self.kind == FrameKind.CLOSE and self.close_code == NORMAL_CLOSE_CODE


class Transport(Protocol):
    """A connected, exclusively owned message transport."""

    @property
    def closed(self) -> bool: ...

    async def receive(self) -> Frame: ...

    async def close(self) -> None: ...


TransportFactory = Callable[[str, SessionConfig], Awaitable[Transport]]


class AiohttpTransport:
    """
    Transport over an aiohttp WebSocket.

    Usage:
        transport = await AiohttpTransport.connect(url, SessionConfig())
        frame = await transport.receive()
        ...
        await transport.close()
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        ws: aiohttp.ClientWebSocketResponse,
        url: str,
    ) -> None:
        self._session = session
        self._ws = ws
        self._url = url
        self._closed = False

    @classmethod
    async def connect(cls, url: str, config: SessionConfig) -> "AiohttpTransport":
        """
        Open the WebSocket.

        Raises:
            ConnectError: If the connection cannot be established
            ProtocolError: If the server rejects the upgrade (e.g. bad options)
        """
        session = aiohttp.ClientSession()
        logger.info(f"Connecting to {url}")
        try:
            ws = await session.ws_connect(
                url,
                autoping=True,
                heartbeat=config.heartbeat_s,
                max_msg_size=config.max_msg_size,
                headers=dict(config.extra_headers) or None,
            )
        except aiohttp.WSServerHandshakeError as e:
            await session.close()
            raise ProtocolError(
                f"Server rejected the handshake: {e.status} {e.message}",
                status=e.status,
                component="AiohttpTransport",
                details={"url": url},
            ) from e
        except (aiohttp.ClientError, OSError) as e:
            await session.close()
            raise ConnectError(
                f"Failed to connect: {e}",
                url=url,
                component="AiohttpTransport",
            ) from e
        except asyncio.CancelledError:
            await session.close()
            raise

        logger.info(f"Connected to {url}")
        return cls(session, ws, url)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def url(self) -> str:
        return self._url

    async def receive(self) -> Frame:
        """
        Wait for the next frame.

        Raises:
            TransportError: If reading from the socket fails
        """
        while True:
            try:
                msg = await self._ws.receive()
            except (aiohttp.ClientError, OSError) as e:
                raise TransportError(
                    f"Failed to read from WebSocket: {e}",
                    component="AiohttpTransport",
                ) from e

            if msg.type == aiohttp.WSMsgType.TEXT:
                return Frame(FrameKind.TEXT, data=msg.data)

            if msg.type == aiohttp.WSMsgType.CLOSE:
                return Frame(FrameKind.CLOSE, close_code=msg.data, reason=msg.extra or None)

            if msg.type in (aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                return Frame(FrameKind.CLOSE, close_code=self._ws.close_code)

            if msg.type == aiohttp.WSMsgType.ERROR:
                return Frame(FrameKind.ERROR, reason=str(self._ws.exception()))

            # BINARY carries no normalized data; PING/PONG only surface with autoping disabled
            logger.debug(f"Ignoring frame of type {msg.type}")

    async def close(self) -> None:
        """Close the WebSocket and its client session. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        try:
            if not self._ws.closed:
                await self._ws.close()
        finally:
            if not self._session.closed:
                await self._session.close()
        logger.debug(f"Transport to {self._url} closed")
