"""
Unit tests for request options and session configuration.
"""

import datetime as dt

import pytest

from tardis_stream.machine.config import ErrorPolicy, LiveOptions, RequestOptions, SessionConfig
from tardis_stream.machine.errors import ConfigurationError, InvalidRequestError
from tardis_stream.types.types import Exchange


class TestRequestOptions:
    """Tests for RequestOptions."""

    def test_string_inputs_are_normalized(self) -> None:
        """Test exchange, dates and lists given as plain values."""
        options = RequestOptions(
            exchange="bybit",
            symbols=["BTCUSDT", "ETHUSDT"],
            from_date="2022-10-01",
            to_date="2022-10-02",
            data_types=["trade", "book_change"],
        )

        assert options.exchange is Exchange.BYBIT
        assert options.from_date == dt.date(2022, 10, 1)
        assert options.to_date == dt.date(2022, 10, 2)
        assert options.symbols == ("BTCUSDT", "ETHUSDT")
        assert options.data_types == ("trade", "book_change")

    def test_datetime_is_truncated_to_date(self) -> None:
        options = RequestOptions(
            exchange=Exchange.DERIBIT,
            from_date=dt.datetime(2022, 10, 1, 12, 30),
            to_date=dt.date(2022, 10, 1),
            data_types=["trade"],
        )

        assert options.from_date == dt.date(2022, 10, 1)

    def test_single_symbol_string(self) -> None:
        options = RequestOptions(
            exchange="bybit",
            symbols="BTCUSDT",
            from_date="2022-10-01",
            to_date="2022-10-01",
            data_types="trade",
        )

        assert options.symbols == ("BTCUSDT",)
        assert options.data_types == ("trade",)

    def test_from_after_to_raises(self) -> None:
        with pytest.raises(InvalidRequestError) as exc:
            RequestOptions(
                exchange="bybit",
                from_date="2022-10-02",
                to_date="2022-10-01",
                data_types=["trade"],
            )

        assert exc.value.field == "from_date"

    def test_unknown_exchange_raises(self) -> None:
        with pytest.raises(InvalidRequestError) as exc:
            RequestOptions(
                exchange="not-an-exchange",
                from_date="2022-10-01",
                to_date="2022-10-02",
                data_types=["trade"],
            )

        assert exc.value.field == "exchange"

    def test_bad_date_string_raises(self) -> None:
        with pytest.raises(InvalidRequestError) as exc:
            RequestOptions(
                exchange="bybit",
                from_date="01/10/2022",
                to_date="2022-10-02",
                data_types=["trade"],
            )

        assert exc.value.field == "from_date"

    @pytest.mark.parametrize("data_types", [[], ["trade,book_change"], [""], [" trade"]])
    def test_invalid_data_types_raise(self, data_types: list[str]) -> None:
        with pytest.raises(InvalidRequestError) as exc:
            RequestOptions(
                exchange="bybit",
                from_date="2022-10-01",
                to_date="2022-10-02",
                data_types=data_types,
            )

        assert exc.value.field == "data_types"

    def test_blank_symbol_raises(self) -> None:
        with pytest.raises(InvalidRequestError):
            RequestOptions(
                exchange="bybit",
                symbols=["BTCUSDT", " "],
                from_date="2022-10-01",
                to_date="2022-10-02",
                data_types=["trade"],
            )

    def test_query_params(self) -> None:
        options = RequestOptions(
            exchange="bybit",
            symbols=["BTCUSDT"],
            from_date="2022-10-01",
            to_date="2022-10-02",
            data_types=["trade", "book_change"],
            with_disconnect_messages=True,
        )

        assert options.query_params() == [
            ("exchange", "bybit"),
            ("from", "2022-10-01"),
            ("to", "2022-10-02"),
            ("symbols", "BTCUSDT"),
            ("data_types", "trade,book_change"),
            ("withDisconnectMessages", "true"),
        ]

    def test_query_params_omit_unset_fields(self) -> None:
        options = RequestOptions(
            exchange="bybit",
            from_date="2022-10-01",
            to_date="2022-10-02",
            data_types=["trade"],
        )

        keys = [key for key, _ in options.query_params()]
        assert "symbols" not in keys
        assert "withDisconnectMessages" not in keys

    def test_payload_is_camel_case(self) -> None:
        options = RequestOptions(
            exchange="bitmex",
            symbols=["XBTUSD"],
            from_date="2022-10-01",
            to_date="2022-10-02",
            data_types=["trade"],
            with_disconnect_messages=False,
        )

        assert options.to_payload() == {
            "exchange": "bitmex",
            "from": "2022-10-01",
            "to": "2022-10-02",
            "dataTypes": ["trade"],
            "symbols": ["XBTUSD"],
            "withDisconnectMessages": False,
        }

    def test_options_are_frozen(self) -> None:
        options = RequestOptions(
            exchange="bybit",
            from_date="2022-10-01",
            to_date="2022-10-02",
            data_types=["trade"],
        )

        with pytest.raises(AttributeError):
            options.exchange = Exchange.BITMEX  # type: ignore[misc]


class TestLiveOptions:
    """Tests for LiveOptions."""

    def test_query_params_include_timeout(self) -> None:
        options = LiveOptions(
            exchange="binance",
            symbols=["btcusdt"],
            data_types=["trade"],
            timeout_interval_ms=5000,
        )

        assert options.query_params() == [
            ("exchange", "binance"),
            ("symbols", "btcusdt"),
            ("data_types", "trade"),
            ("timeoutIntervalMS", "5000"),
        ]
        assert options.to_payload()["timeoutIntervalMS"] == 5000

    @pytest.mark.parametrize("timeout", [0, -1])
    def test_non_positive_timeout_raises(self, timeout: int) -> None:
        with pytest.raises(InvalidRequestError) as exc:
            LiveOptions(exchange="binance", data_types=["trade"], timeout_interval_ms=timeout)

        assert exc.value.field == "timeout_interval_ms"


class TestSessionConfig:
    """Tests for SessionConfig validation."""

    def test_defaults(self) -> None:
        config = SessionConfig()

        assert config.connect_timeout_s == 30.0
        assert config.error_policy is ErrorPolicy.YIELD
        assert config.end_on_disconnect is True
        assert config.max_decode_errors is None

    def test_is_hashable(self) -> None:
        config = SessionConfig(extra_headers=(("X-Test", "1"),))

        assert hash(config) == hash(SessionConfig(extra_headers=(("X-Test", "1"),)))

    def test_policy_string_is_coerced(self) -> None:
        config = SessionConfig(error_policy="skip")  # type: ignore[arg-type]

        assert config.error_policy is ErrorPolicy.SKIP

    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"connect_timeout_s": 0}, "connect_timeout_s"),
            ({"heartbeat_s": -1.0}, "heartbeat_s"),
            ({"max_msg_size": -1}, "max_msg_size"),
            ({"max_decode_errors": -1}, "max_decode_errors"),
            ({"error_policy": "explode"}, "error_policy"),
        ],
    )
    def test_invalid_values_raise(self, kwargs: dict, field: str) -> None:
        with pytest.raises(ConfigurationError) as exc:
            SessionConfig(**kwargs)

        assert exc.value.field == field
