"""
Stream Session - owns one connection and turns its frames into messages.

State Machine:
    [CONNECTING] --connected--> [HANDSHAKING] --accepted--> [STREAMING]
         |                            |                          |
         +---------> [ERRORED] <------+--------------------------+
                         |                                       |
                         v                           all sub-feeds disconnected
                     [CLOSED] <------------------------ [DRAINING]

The session is a lazy, single-pass, single-consumer async iterator. It only
reads from the transport when the caller asks for the next item, so the
server-side socket buffer is the only slack. Items are normalized messages
or non-fatal StreamError instances; a fatal error is always the last item.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional, Union

from tardis_stream.machine.config import ErrorPolicy, SessionConfig
from tardis_stream.machine.connection import Frame, FrameKind, Transport, TransportFactory
from tardis_stream.machine.errors import (
    ConnectError,
    DecodeError,
    MalformedFrameError,
    ProtocolError,
    StreamError,
    TransportError,
)
from tardis_stream.machine.handlers import MessageDecoder
from tardis_stream.machine.router import Handshake, RoutingTable
from tardis_stream.machine.types import (
    Disconnect,
    NormalizedMessage,
    RouteKey,
    ServerError,
    SessionState,
    SessionStats,
    StreamMode,
    UnknownMessage,
)

logger = logging.getLogger(__name__)

StreamItem = Union[NormalizedMessage, StreamError]

# Close tasks scheduled for sessions dropped without aclose()
_pending_closes: set[asyncio.Task[None]] = set()


class _SessionCore:
    """
    State, components and receive loop of one StreamSession.

    The receive generator only references this object, never the
    StreamSession wrapping it, so dropping the session frees the generator
    at once and the event loop's async-generator finalizer closes it.
    """

    def __init__(self, handshake: Handshake, config: SessionConfig, name: str) -> None:
        self.handshake = handshake
        self.config = config
        self.name = name

        # State
        self.state = SessionState.CONNECTING
        self.transport: Optional[Transport] = None
        self.error: Optional[StreamError] = None

        # Components
        self.decoder = MessageDecoder()
        self.routes = RoutingTable(handshake.requests)

        # Metrics
        self.stats = SessionStats()
        self.consecutive_errors = 0

    def set_state(self, new_state: SessionState) -> None:
        old_state = self.state
        self.state = new_state
        if old_state != new_state:
            logger.debug(f"[{self.name}] State: {old_state.value} -> {new_state.value}")

    def fail(self, error: StreamError) -> None:
        self.error = error
        self.set_state(SessionState.ERRORED)
        logger.error(f"[{self.name}] {error}")

    async def run(self) -> AsyncIterator[StreamItem]:
        """Receive loop. The only suspension point is transport.receive()."""
        assert self.transport is not None
        transport = self.transport

        try:
            while True:
                try:
                    frame = await transport.receive()
                except TransportError as e:
                    self.fail(e)
                    await self.release()
                    yield e
                    return

                self.stats.frames_received += 1

                if frame.kind == FrameKind.TEXT:
                    item = self.decode(frame)
                    if item is None:
                        continue
                    if self.state != SessionState.STREAMING:
                        # Terminal item: release before handing it out
                        await self.release()
                        yield item
                        return
                    yield item
                    continue

                end = self.on_control_frame(frame)
                await self.release()
                if end is not None:
                    yield end
                return
        finally:
            await self.release()

    def decode(self, frame: Frame) -> Optional[StreamItem]:
        """Decode one data frame. Returns None for frames to drop."""
        assert frame.data is not None
        if self.config.log_raw_frames:
            logger.debug(f"[{self.name}] Frame: {frame.data!r}")

        try:
            decoded = self.decoder.decode(frame.data)
        except (MalformedFrameError, DecodeError) as e:
            return self.on_decode_error(e)

        self.consecutive_errors = 0

        if isinstance(decoded, ServerError):
            error = ProtocolError(
                f"Server error: {decoded.message}",
                component="StreamSession",
                details={"payload": decoded.raw},
            )
            self.fail(error)
            return error

        self.stats.messages_decoded += 1
        if isinstance(decoded, UnknownMessage):
            self.stats.unknown_messages += 1

        if isinstance(decoded, Disconnect):
            self.on_disconnect(decoded)
            return decoded

        self.routes.route(getattr(decoded, "exchange", None), decoded.data_type)
        return decoded

    def on_decode_error(self, error: StreamError) -> Optional[StreamItem]:
        if isinstance(error, MalformedFrameError):
            self.stats.malformed_frames += 1
        else:
            self.stats.decode_errors += 1
        self.consecutive_errors += 1

        policy = self.config.error_policy
        if policy == ErrorPolicy.RAISE:
            self.fail(error)
            raise error

        limit = self.config.max_decode_errors
        if limit is not None and self.consecutive_errors > limit:
            fatal = ProtocolError(
                f"{self.consecutive_errors} consecutive undecodable frames",
                component="StreamSession",
                details={"last_error": str(error)},
            )
            self.fail(fatal)
            return fatal

        if policy == ErrorPolicy.SKIP:
            logger.warning(f"[{self.name}] Dropping undecodable frame: {error}")
            return None

        logger.warning(f"[{self.name}] Undecodable frame: {error}")
        return error

    def on_disconnect(self, message: Disconnect) -> None:
        self.stats.disconnects += 1
        drained = self.routes.mark_disconnected(message)
        if drained:
            logger.info(f"[{self.name}] Sub-feeds ended: {', '.join(str(k) for k in drained)}")

        if (
            self.handshake.mode == StreamMode.REPLAY
            and self.config.end_on_disconnect
            and self.routes.all_drained
        ):
            # Nothing is buffered: draining completes as soon as it starts
            self.set_state(SessionState.DRAINING)
            logger.info(f"[{self.name}] All sub-feeds disconnected, ending stream")

    def on_control_frame(self, frame: Frame) -> Optional[StreamError]:
        """Handle a close/error frame. Returns the fatal error to yield, if any."""
        if frame.is_normal_close:
            logger.info(f"[{self.name}] Connection closed normally")
            return None

        if frame.kind == FrameKind.ERROR:
            error = TransportError(
                f"WebSocket error: {frame.reason}",
                component="StreamSession",
            )
        else:
            error = TransportError(
                f"Connection closed: {frame.reason or 'unknown reason'}",
                close_code=frame.close_code,
                component="StreamSession",
            )
        self.fail(error)
        return error

    async def release(self) -> None:
        """Close the transport and settle in CLOSED."""
        transport = self.transport
        if transport is not None and not transport.closed:
            await transport.close()
        if self.state != SessionState.CLOSED:
            self.set_state(SessionState.CLOSED)
            logger.info(
                f"[{self.name}] Closed after {self.stats.frames_received} frame(s), "
                f"{self.stats.messages_decoded} message(s)"
            )


class StreamSession:
    """
    Runs one multiplexed normalized stream.

    Usage:
        session = StreamSession(handshake, AiohttpTransport.connect, SessionConfig())
        await session.open()
        async with session:
            async for item in session:
                if isinstance(item, StreamError):
                    ...
    """

    def __init__(
        self,
        handshake: Handshake,
        transport_factory: TransportFactory,
        config: Optional[SessionConfig] = None,
        name: str = "session",
    ) -> None:
        """
        Initialize the session.

        Args:
            handshake: URL and requests multiplexed on this connection
            transport_factory: Coroutine function opening the transport
            config: Session configuration
            name: Name for logging purposes
        """
        self._transport_factory = transport_factory
        self._core = _SessionCore(handshake, config or SessionConfig(), name)
        self._iterator: Optional[AsyncIterator[StreamItem]] = None

    @property
    def state(self) -> SessionState:
        """Current session state."""
        return self._core.state

    @property
    def stats(self) -> SessionStats:
        """Session diagnostics."""
        return self._core.stats

    @property
    def handshake(self) -> Handshake:
        return self._core.handshake

    @property
    def routes(self) -> RoutingTable:
        """Routing table; its stats count routed and unrouted messages."""
        return self._core.routes

    @property
    def error(self) -> Optional[StreamError]:
        """The fatal error that ended the session, if any."""
        return self._core.error

    @property
    def closed(self) -> bool:
        return self._core.state == SessionState.CLOSED

    def route_of(self, item: StreamItem) -> Optional[RouteKey]:
        """The requested sub-feed an item belongs to, or None."""
        data_type = getattr(item, "data_type", None)
        if data_type is None:
            return None
        if isinstance(item, Disconnect) and item.target_data_type is not None:
            data_type = item.target_data_type
        return self._core.routes.lookup(getattr(item, "exchange", None), data_type)

    async def open(self) -> "StreamSession":
        """
        Connect and complete the handshake. Reads no data.

        Raises:
            ConnectError: If the connection fails or times out
            ProtocolError: If the server rejects the handshake
        """
        core = self._core
        if core.state != SessionState.CONNECTING or core.transport is not None:
            raise RuntimeError(f"Session already opened (state={core.state.value})")

        try:
            transport = await asyncio.wait_for(
                self._transport_factory(core.handshake.url, core.config),
                timeout=core.config.connect_timeout_s,
            )
        except asyncio.TimeoutError as e:
            error = ConnectError(
                f"Timed out after {core.config.connect_timeout_s}s",
                url=core.handshake.url,
                component="StreamSession",
            )
            core.fail(error)
            core.set_state(SessionState.CLOSED)
            raise error from e
        except (ConnectError, ProtocolError) as e:
            core.fail(e)
            core.set_state(SessionState.CLOSED)
            raise

        core.transport = transport
        core.set_state(SessionState.HANDSHAKING)
        # Requests are fully encoded in the URL: an accepted upgrade is the ack
        core.set_state(SessionState.STREAMING)
        logger.info(
            f"[{core.name}] Streaming {core.handshake.mode.value} "
            f"for {len(core.routes.keys)} sub-feed(s)"
        )

        self._iterator = core.run()
        return self

    # -- iteration -------------------------------------------------------

    def __aiter__(self) -> "StreamSession":
        return self

    async def __anext__(self) -> StreamItem:
        if self._iterator is None:
            if self._core.state == SessionState.CLOSED:
                raise StopAsyncIteration
            raise RuntimeError("Session is not open; call open() first")
        return await self._iterator.__anext__()

    # -- lifecycle ---------------------------------------------------------

    async def aclose(self) -> None:
        """Stop the stream and release the connection."""
        if self._iterator is not None:
            iterator, self._iterator = self._iterator, None
            await iterator.aclose()  # type: ignore[attr-defined]
        await self._core.release()

    async def __aenter__(self) -> "StreamSession":
        if self._core.transport is None and self._core.state == SessionState.CONNECTING:
            await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def __del__(self) -> None:
        # A never-started receive generator has no finalizer to close the socket
        core = self._core
        transport = core.transport
        if transport is None or transport.closed:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"[{core.name}] Unclosed stream session")
            return
        task = loop.create_task(core.release())
        _pending_closes.add(task)
        task.add_done_callback(_pending_closes.discard)
