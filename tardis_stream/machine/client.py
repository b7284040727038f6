"""
Client facade for a normalization server's WebSocket API.

Usage:
    client = Client("ws://localhost:8001")
    stream = await client.replay_normalized([
        RequestOptions(
            exchange=Exchange.BYBIT,
            symbols=["BTCUSDT"],
            from_date=dt.date(2022, 10, 1),
            to_date=dt.date(2022, 10, 2),
            data_types=["trade"],
        )
    ])
    async with stream:
        async for item in stream:
            ...
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional, Sequence

from tardis_stream.adapters.env_provider import EnvSettingsProvider
from tardis_stream.machine.config import LiveOptions, RequestOptions, SessionConfig
from tardis_stream.machine.connection import AiohttpTransport, TransportFactory
from tardis_stream.machine.errors import InvalidRequestError
from tardis_stream.machine.router import Handshake, build_live_handshake, build_replay_handshake
from tardis_stream.machine.session import StreamSession
from tardis_stream.ports.settings_provider import SettingsProvider

logger = logging.getLogger(__name__)


class Client:
    """
    Entry point for replaying and streaming normalized market data.

    Each call opens its own connection; sessions share no state.
    """

    def __init__(
        self,
        url: str,
        config: Optional[SessionConfig] = None,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            url: Base WebSocket URL of the server, e.g. ws://localhost:8001
            config: Session configuration applied to every stream
            transport_factory: Override how connections are opened (tests)
        """
        if not url:
            raise InvalidRequestError("url must not be empty", field="url")
        self._url = url.rstrip("/")
        self._config = config or SessionConfig()
        self._transport_factory: TransportFactory = transport_factory or AiohttpTransport.connect

    @classmethod
    def from_settings(
        cls,
        settings: SettingsProvider,
        config: Optional[SessionConfig] = None,
    ) -> "Client":
        """Build a client from the ``machine_ws_url`` setting."""
        return cls(settings.get("machine_ws_url"), config=config)

    @classmethod
    def from_env(cls, config: Optional[SessionConfig] = None) -> "Client":
        """Build a client from TARDIS_MACHINE_WS_URL."""
        return cls.from_settings(EnvSettingsProvider(), config=config)

    @property
    def url(self) -> str:
        return self._url

    @property
    def config(self) -> SessionConfig:
        return self._config

    async def replay_normalized(self, requests: Sequence[RequestOptions]) -> StreamSession:
        """
        Replay historical normalized data for one or more requests.

        Raises:
            InvalidRequestError: Before any I/O, if requests are invalid
            ConnectError: If the connection fails or times out
            ProtocolError: If the server rejects the request
        """
        handshake = build_replay_handshake(self._url, requests)
        return await self._open(handshake)

    async def stream_normalized(self, requests: Sequence[LiveOptions]) -> StreamSession:
        """
        Stream live normalized data for one or more requests.

        Raises:
            InvalidRequestError: Before any I/O, if requests are invalid
            ConnectError: If the connection fails or times out
            ProtocolError: If the server rejects the request
        """
        handshake = build_live_handshake(self._url, requests)
        return await self._open(handshake)

    async def _open(self, handshake: Handshake) -> StreamSession:
        name = f"{handshake.mode.value}-{uuid.uuid4().hex[:8]}"
        logger.debug(f"Opening {name}: {handshake.url}")
        session = StreamSession(
            handshake,
            self._transport_factory,
            config=self._config,
            name=name,
        )
        return await session.open()
