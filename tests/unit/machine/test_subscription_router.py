"""
Unit tests for handshake building and sub-feed routing.
"""

from datetime import datetime, timezone
from urllib.parse import parse_qs, urlsplit

import orjson
import pytest

from tardis_stream.machine.config import LiveOptions, RequestOptions
from tardis_stream.machine.errors import InvalidRequestError
from tardis_stream.machine.router import RoutingTable, build_live_handshake, build_replay_handshake
from tardis_stream.machine.types import Disconnect, RouteKey, StreamMode
from tardis_stream.types.types import Exchange

BASE_URL = "ws://localhost:8001"


def _disconnect(exchange: Exchange, data_type: str | None = None) -> Disconnect:
    return Disconnect(
        exchange=exchange,
        symbol=None,
        timestamp=None,
        local_timestamp=datetime(2022, 10, 2, tzinfo=timezone.utc),
        target_data_type=data_type,
    )


class TestReplayHandshake:
    """Tests for build_replay_handshake."""

    @pytest.fixture
    def request_options(self) -> RequestOptions:
        return RequestOptions(
            exchange="bybit",
            symbols=["BTCUSDT", "ETHUSDT"],
            from_date="2022-10-01",
            to_date="2022-10-02",
            data_types=["trade", "book_snapshot_25_100ms"],
            with_disconnect_messages=True,
        )

    def test_single_request_round_trips(self, request_options: RequestOptions) -> None:
        """Test the handshake URL carries exchange, dates and data types."""
        handshake = build_replay_handshake(BASE_URL, [request_options])

        parts = urlsplit(handshake.url)
        query = parse_qs(parts.query)

        assert parts.scheme == "ws"
        assert parts.netloc == "localhost:8001"
        assert parts.path == "/ws-replay-normalized"
        assert query["exchange"] == ["bybit"]
        assert query["from"] == ["2022-10-01"]
        assert query["to"] == ["2022-10-02"]
        assert query["symbols"] == ["BTCUSDT,ETHUSDT"]
        assert query["data_types"] == ["trade,book_snapshot_25_100ms"]
        assert query["withDisconnectMessages"] == ["true"]
        assert handshake.mode is StreamMode.REPLAY
        assert handshake.requests == (request_options,)

    def test_trailing_slash_is_ignored(self, request_options: RequestOptions) -> None:
        handshake = build_replay_handshake(BASE_URL + "/", [request_options])

        assert urlsplit(handshake.url).path == "/ws-replay-normalized"

    def test_multiple_requests_are_multiplexed(self, request_options: RequestOptions) -> None:
        """Test several requests travel as one JSON options array."""
        other = RequestOptions(
            exchange="bitmex",
            symbols=["XBTUSD"],
            from_date="2022-10-01",
            to_date="2022-10-01",
            data_types=["derivative_ticker"],
        )

        handshake = build_replay_handshake(BASE_URL, [request_options, other])

        query = parse_qs(urlsplit(handshake.url).query)
        assert list(query) == ["options"]
        assert orjson.loads(query["options"][0]) == [
            request_options.to_payload(),
            other.to_payload(),
        ]

    def test_empty_requests_raise(self) -> None:
        with pytest.raises(InvalidRequestError) as exc:
            build_replay_handshake(BASE_URL, [])

        assert exc.value.field == "requests"

    def test_live_options_are_rejected(self) -> None:
        with pytest.raises(InvalidRequestError):
            build_replay_handshake(BASE_URL, [LiveOptions(exchange="bybit", data_types=["trade"])])  # type: ignore[list-item]

    def test_empty_base_url_raises(self, request_options: RequestOptions) -> None:
        with pytest.raises(InvalidRequestError) as exc:
            build_replay_handshake("", [request_options])

        assert exc.value.field == "base_url"


class TestLiveHandshake:
    """Tests for build_live_handshake."""

    def test_live_url(self) -> None:
        options = LiveOptions(
            exchange="binance-futures",
            symbols=["btcusdt"],
            data_types=["trade"],
            timeout_interval_ms=10000,
        )

        handshake = build_live_handshake(BASE_URL, [options])

        parts = urlsplit(handshake.url)
        query = parse_qs(parts.query)
        assert parts.path == "/ws-stream-normalized"
        assert query["exchange"] == ["binance-futures"]
        assert query["timeoutIntervalMS"] == ["10000"]
        assert "from" not in query
        assert handshake.mode is StreamMode.LIVE

    def test_replay_options_are_rejected(self) -> None:
        options = RequestOptions(
            exchange="bybit",
            from_date="2022-10-01",
            to_date="2022-10-02",
            data_types=["trade"],
        )

        with pytest.raises(InvalidRequestError):
            build_live_handshake(BASE_URL, [options])  # type: ignore[list-item]


class TestRoutingTable:
    """Tests for RoutingTable."""

    @pytest.fixture
    def table(self) -> RoutingTable:
        """Create a table covering two exchanges."""
        return RoutingTable(
            [
                RequestOptions(
                    exchange="bybit",
                    from_date="2022-10-01",
                    to_date="2022-10-02",
                    data_types=["trade", "trade_bar_1m"],
                ),
                RequestOptions(
                    exchange="bitmex",
                    from_date="2022-10-01",
                    to_date="2022-10-02",
                    data_types=["book_change"],
                ),
            ]
        )

    def test_keys(self, table: RoutingTable) -> None:
        assert table.keys == (
            RouteKey("bybit", "trade"),
            RouteKey("bybit", "trade_bar_1m"),
            RouteKey("bitmex", "book_change"),
        )
        assert str(table.keys[0]) == "bybit:trade"

    def test_exact_lookup(self, table: RoutingTable) -> None:
        assert table.lookup("bybit", "trade") == RouteKey("bybit", "trade")
        assert table.lookup("bitmex", "trade") is None
        assert table.lookup(None, "trade") is None

    def test_named_family_lookup(self, table: RoutingTable) -> None:
        """Test parameterized names fall back to the requested family."""
        assert table.lookup("bybit", "trade_bar_5m") == RouteKey("bybit", "trade_bar_1m")
        assert table.lookup("bybit", "book_snapshot_5_1s") is None

    def test_request_for(self, table: RoutingTable) -> None:
        request = table.request_for(RouteKey("bitmex", "book_change"))

        assert request is not None
        assert request.exchange is Exchange.BITMEX

    def test_route_updates_stats(self, table: RoutingTable) -> None:
        table.route("bybit", "trade")
        table.route("bybit", "trade")
        table.route("deribit", "trade")

        assert table.stats.routed_messages == 2
        assert table.stats.unrouted_messages == 1
        assert table.stats.by_route == {"bybit:trade": 2}

    def test_exchange_wide_disconnect(self, table: RoutingTable) -> None:
        drained = table.mark_disconnected(_disconnect(Exchange.BYBIT))

        assert drained == [RouteKey("bybit", "trade"), RouteKey("bybit", "trade_bar_1m")]
        assert not table.all_drained

        assert table.mark_disconnected(_disconnect(Exchange.BYBIT)) == []

        table.mark_disconnected(_disconnect(Exchange.BITMEX))
        assert table.all_drained

    def test_scoped_disconnect(self, table: RoutingTable) -> None:
        drained = table.mark_disconnected(_disconnect(Exchange.BYBIT, "trade"))

        assert drained == [RouteKey("bybit", "trade")]
        assert table.drained == frozenset({RouteKey("bybit", "trade")})

    def test_disconnect_for_unrequested_exchange(self, table: RoutingTable) -> None:
        assert table.mark_disconnected(_disconnect(Exchange.DERIBIT)) == []
        assert table.drained == frozenset()

    def test_empty_table_is_never_drained(self) -> None:
        assert RoutingTable([]).all_drained is False
