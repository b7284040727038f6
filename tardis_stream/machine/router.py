"""
Subscription multiplexing for normalized streams.

Builds the single handshake URL that carries every requested sub-feed over
one connection, and routes decoded messages back to the sub-feed that
requested them.

Single request (flat query):
    {base}/ws-replay-normalized?exchange=bybit&from=2022-10-01&to=2022-10-02
        &symbols=BTCUSDT&data_types=trade

Multiple requests (multiplexed):
    {base}/ws-replay-normalized?options=[{"exchange": "bybit", ...}, ...]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence
from urllib.parse import quote, urlencode

import orjson

from tardis_stream.machine.config import (
    REPLAY_NORMALIZED_PATH,
    STREAM_NORMALIZED_PATH,
    AnyOptions,
    LiveOptions,
    RequestOptions,
)
from tardis_stream.machine.errors import InvalidRequestError
from tardis_stream.machine.types import Disconnect, RouteKey, StreamMode

logger = logging.getLogger(__name__)

# Data types whose messages carry a parameterized name (e.g. trade_bar_60m)
_NAMED_PREFIXES = ("trade_bar", "book_snapshot")


def _base_type(data_type: str) -> str:
    for prefix in _NAMED_PREFIXES:
        if data_type.startswith(prefix + "_"):
            return prefix
    return data_type


@dataclass(frozen=True)
class Handshake:
    """Everything needed to open one multiplexed connection."""

    url: str
    mode: StreamMode
    requests: tuple[AnyOptions, ...]


@dataclass
class RouterStats:
    """Statistics for message routing."""

    routed_messages: int = 0
    unrouted_messages: int = 0
    by_route: dict[str, int] = field(default_factory=dict)


class RoutingTable:
    """
    Maps (exchange, data_type) to the request that asked for it.

    Tracks which sub-feeds have signalled end-of-data via a disconnect
    marker. One table per session; never shared.
    """

    def __init__(self, requests: Sequence[AnyOptions]) -> None:
        self._routes: dict[RouteKey, AnyOptions] = {}
        for request in requests:
            for data_type in request.data_types:
                self._routes.setdefault(RouteKey(request.exchange.value, data_type), request)
        self._drained: set[RouteKey] = set()
        self._stats = RouterStats()

    @property
    def keys(self) -> tuple[RouteKey, ...]:
        return tuple(self._routes)

    @property
    def stats(self) -> RouterStats:
        """Get routing statistics."""
        return self._stats

    @property
    def drained(self) -> frozenset[RouteKey]:
        return frozenset(self._drained)

    @property
    def all_drained(self) -> bool:
        """True once every requested sub-feed has sent its disconnect marker."""
        return bool(self._routes) and self._drained >= set(self._routes)

    def request_for(self, key: RouteKey) -> Optional[AnyOptions]:
        return self._routes.get(key)

    def lookup(self, exchange: Optional[str], data_type: str) -> Optional[RouteKey]:
        """
        Find the route for a message.

        Exact (exchange, data_type) first, then the first requested data type
        of the same family (trade_bar_*, book_snapshot_*).
        """
        if exchange is None:
            return None
        exchange = str(exchange)

        key = RouteKey(exchange, data_type)
        if key in self._routes:
            return key

        base = _base_type(data_type)
        for candidate in self._routes:
            if candidate.exchange == exchange and _base_type(candidate.data_type) == base:
                return candidate
        return None

    def route(self, exchange: Optional[str], data_type: str) -> Optional[RouteKey]:
        """Look up a route and record it in the statistics."""
        key = self.lookup(exchange, data_type)
        if key is None:
            self._stats.unrouted_messages += 1
            logger.debug(f"Unrouted message: exchange={exchange} data_type={data_type}")
            return None

        self._stats.routed_messages += 1
        route_id = str(key)
        self._stats.by_route[route_id] = self._stats.by_route.get(route_id, 0) + 1
        return key

    def mark_disconnected(self, message: Disconnect) -> list[RouteKey]:
        """
        Mark the sub-feeds covered by a disconnect marker as drained.

        A marker naming a data type drains that sub-feed only, otherwise
        every sub-feed of the exchange. Returns newly drained keys.
        """
        exchange = message.exchange.value
        if message.target_data_type is not None:
            key = self.lookup(exchange, message.target_data_type)
            targets = [key] if key is not None else []
        else:
            targets = [k for k in self._routes if k.exchange == exchange]

        newly = [k for k in targets if k not in self._drained]
        self._drained.update(newly)
        return newly


def _encode(params: list[tuple[str, str]]) -> str:
    return urlencode(params, quote_via=quote, safe="")


def _build_url(base_url: str, path: str, requests: Sequence[AnyOptions]) -> str:
    if not base_url:
        raise InvalidRequestError("base_url must not be empty", field="base_url")

    base = base_url.rstrip("/")
    if len(requests) == 1:
        query = _encode(requests[0].query_params())
    else:
        payloads: list[dict[str, Any]] = [r.to_payload() for r in requests]
        query = _encode([("options", orjson.dumps(payloads).decode("utf-8"))])
    return f"{base}{path}?{query}"


def _check_requests(requests: Sequence[AnyOptions], expected: type, name: str) -> tuple[AnyOptions, ...]:
    requests = tuple(requests)
    if not requests:
        raise InvalidRequestError(f"{name} requires at least one request", field="requests")
    for request in requests:
        if not isinstance(request, expected):
            raise InvalidRequestError(
                f"{name} expects {expected.__name__}, got {type(request).__name__}",
                field="requests",
            )
    return requests


def build_replay_handshake(base_url: str, requests: Sequence[RequestOptions]) -> Handshake:
    """
    Build the handshake for a historical replay.

    Raises:
        InvalidRequestError: If requests is empty or contains non-replay options
    """
    checked = _check_requests(requests, RequestOptions, "replay_normalized")
    url = _build_url(base_url, REPLAY_NORMALIZED_PATH, checked)
    logger.debug(f"Replay handshake for {len(checked)} request(s): {url}")
    return Handshake(url=url, mode=StreamMode.REPLAY, requests=checked)


def build_live_handshake(base_url: str, requests: Sequence[LiveOptions]) -> Handshake:
    """
    Build the handshake for a live stream.

    Raises:
        InvalidRequestError: If requests is empty or contains non-live options
    """
    checked = _check_requests(requests, LiveOptions, "stream_normalized")
    url = _build_url(base_url, STREAM_NORMALIZED_PATH, checked)
    logger.debug(f"Live handshake for {len(checked)} request(s): {url}")
    return Handshake(url=url, mode=StreamMode.LIVE, requests=checked)
