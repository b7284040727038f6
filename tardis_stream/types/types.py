from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# -------- Enums --------


class Exchange(str, Enum):
    """
    Venues supported by the normalization server.

    Values are the exact identifiers the server expects in requests and
    sends back in every message envelope.
    See https://api.tardis.dev/v1/exchanges for the authoritative list.
    """

    BITMEX = "bitmex"
    DERIBIT = "deribit"
    BINANCE_FUTURES = "binance-futures"
    BINANCE_DELIVERY = "binance-delivery"
    BINANCE_OPTIONS = "binance-options"
    BINANCE = "binance"
    FTX = "ftx"
    OKEX_FUTURES = "okex-futures"
    OKEX_OPTIONS = "okex-options"
    OKEX_SWAP = "okex-swap"
    OKEX = "okex"
    HUOBI_DM = "huobi-dm"
    HUOBI_DM_SWAP = "huobi-dm-swap"
    HUOBI_DM_LINEAR_SWAP = "huobi-dm-linear-swap"
    HUOBI_DM_OPTIONS = "huobi-dm-options"
    HUOBI = "huobi"
    BITFINEX_DERIVATIVES = "bitfinex-derivatives"
    BITFINEX = "bitfinex"
    COINBASE = "coinbase"
    CRYPTOFACILITIES = "cryptofacilities"
    KRAKEN = "kraken"
    BITSTAMP = "bitstamp"
    GEMINI = "gemini"
    POLONIEX = "poloniex"
    BYBIT = "bybit"
    BYBIT_SPOT = "bybit-spot"
    BYBIT_OPTIONS = "bybit-options"
    PHEMEX = "phemex"
    DELTA = "delta"
    FTX_US = "ftx-us"
    BINANCE_US = "binance-us"
    GATE_IO_FUTURES = "gate-io-futures"
    GATE_IO = "gate-io"
    OKCOIN = "okcoin"
    BITFLYER = "bitflyer"
    HITBTC = "hitbtc"
    COINFLEX = "coinflex"
    BINANCE_JERSEY = "binance-jersey"
    BINANCE_DEX = "binance-dex"
    UPBIT = "upbit"
    ASCENDEX = "ascendex"
    DYDX = "dydx"
    SERUM = "serum"
    MANGO = "mango"
    STAR_ATLAS = "star-atlas"
    CRYPTO_COM = "crypto-com"
    CRYPTO_COM_DERIVATIVES = "crypto-com-derivatives"
    KUCOIN = "kucoin"
    BITNOMIAL = "bitnomial"
    WOO_X = "woo-x"
    BLOCKCHAIN_COM = "blockchain-com"

    def __str__(self) -> str:
        return self.value


class SymbolType(str, Enum):
    SPOT = "spot"
    PERPETUAL = "perpetual"  # also known as linear
    FUTURE = "future"  # also known as delivery
    OPTION = "option"


class OptionType(str, Enum):
    CALL = "call"
    PUT = "put"


# -------- Instrument metadata (REST) --------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class InstrumentChanges(_CamelModel):
    """
    Historical changes of an instrument. Only contract_multiplier is
    guaranteed complete, the rest is best effort.
    """

    until: str
    price_increment: Optional[float] = None
    amount_increment: Optional[float] = None
    contract_multiplier: Optional[float] = None


class InstrumentInfo(_CamelModel):
    """Metadata of a single instrument as returned by the instruments API."""

    id: str
    exchange: str
    base_currency: str  # normalized, e.g. bitmex XBTUSD -> BTC
    quote_currency: str
    symbol_type: SymbolType = Field(alias="type")
    active: bool
    available_since: str
    available_to: Optional[str] = None
    expiry: Optional[str] = None  # futures and options only
    price_increment: float
    amount_increment: float
    min_trade_amount: float
    maker_fee: float  # illustrative only
    taker_fee: float
    inverse: Optional[bool] = None
    contract_multiplier: Optional[float] = None
    quanto: Optional[bool] = None
    settlement_currency: Optional[str] = None
    strike_price: Optional[float] = None
    option_type: Optional[OptionType] = None
    changes: Optional[list[InstrumentChanges]] = None
