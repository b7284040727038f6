from __future__ import annotations

import logging
from typing import Any, Optional, Union
from urllib.parse import quote

import orjson
import requests
from pydantic import ValidationError

from tardis_stream.errors.errors import ApiError, ApiRequestError, ApiResponseError
from tardis_stream.ports.settings_provider import SettingsProvider
from tardis_stream.types.types import Exchange, InstrumentInfo

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.tardis.dev/v1"
DEFAULT_USER_AGENT = "tardis-stream/0.1 (+https://docs.tardis.dev/api/instruments-metadata-api)"


class InstrumentsClient:
    """
    Client for the instruments metadata HTTP API.

    Usage:
        with InstrumentsClient(api_key) as api:
            info = api.single_instrument_info(Exchange.BYBIT, "BTCUSDT")
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key must be a non-empty string")
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

        # Request
        headers = {"User-Agent": DEFAULT_USER_AGENT, "Authorization": f"Bearer {api_key}"}
        self._owns_session = session is None
        self._session = session or requests.Session()
        if self._owns_session:
            self._session.headers.update(headers)
            self._request_headers: Optional[dict[str, str]] = None
        else:
            # Caller-supplied session: headers go on each request instead
            self._request_headers = headers

    @classmethod
    def from_settings(cls, settings: SettingsProvider, **kwargs: Any) -> "InstrumentsClient":
        """Build a client from the ``api_key`` setting."""
        return cls(settings.get("api_key"), **kwargs)

    @property
    def base_url(self) -> str:
        return self._base_url

    def instrument_url(self, exchange: Union[Exchange, str], symbol: str) -> str:
        exchange_id = Exchange(exchange).value
        return f"{self._base_url}/instruments/{exchange_id}/{quote(symbol, safe='')}"

    def single_instrument_info(self, exchange: Union[Exchange, str], symbol: str) -> InstrumentInfo:
        """
        Fetch metadata of one instrument.

        Raises:
            ApiError: The API answered with an error body
            ApiRequestError: Network failure or a non-JSON answer
            ApiResponseError: The body matched neither expected shape
        """
        if not symbol:
            raise ValueError("symbol must be a non-empty string")
        url = self.instrument_url(exchange, symbol)

        try:
            response = self._session.get(url, headers=self._request_headers, timeout=self._timeout)
        except requests.RequestException as e:
            raise ApiRequestError(f"GET {url} failed: {e}") from e

        logger.debug(f"[instruments] GET {response.status_code} {url}")
        try:
            body = orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            raise ApiRequestError(
                f"GET {url} returned non-JSON body (HTTP {response.status_code})"
            ) from e

        return self._parse(body, response.status_code)

    @staticmethod
    def _parse(body: Any, status: int) -> InstrumentInfo:
        # Error bodies carry exactly {code, message}; everything else is metadata
        if isinstance(body, dict) and "code" in body and "message" in body and "id" not in body:
            try:
                code = int(body["code"])
            except (TypeError, ValueError) as e:
                raise ApiResponseError(f"Error body with non-numeric code (HTTP {status}): {body!r}") from e
            raise ApiError(code, str(body["message"]), status=status)

        try:
            return InstrumentInfo.model_validate(body)
        except ValidationError as e:
            raise ApiResponseError(f"Unexpected instruments response (HTTP {status}): {e}") from e

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def __enter__(self) -> "InstrumentsClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
