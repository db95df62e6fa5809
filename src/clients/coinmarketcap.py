from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable

import requests
from requests.adapters import HTTPAdapter
from urllib3.util import Retry

from domain.assets import PriceQuote

from .base import ApiError, JsonHttpClient

logger = logging.getLogger(__name__)

# API docs: https://coinmarketcap.com/api/documentation/v1/
QUOTES_LATEST_PATH = "/v1/cryptocurrency/quotes/latest"


class CoinMarketCapAPIError(ApiError):
    pass


class CoinMarketCapClient(JsonHttpClient):
    error_class = CoinMarketCapAPIError
    service_name = "CoinMarketCap API"

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://pro-api.coinmarketcap.com",
        timeout: float = 8.0,
        session: requests.Session | None = None,
        retry_attempts: int = 2,
        retry_backoff_seconds: float = 0.5,
    ) -> None:
        if not api_key:
            msg = "api_key must be provided"
            raise ValueError(msg)
        super().__init__(base_url=base_url, timeout=timeout, session=session)
        self.api_key = api_key

        # 429 is surfaced to the proxy so it can answer from cache instead of waiting.
        # read=False re-raises read timeouts as-is so they reach callers as requests.ReadTimeout.
        retry = Retry(
            total=retry_attempts,
            read=False,
            backoff_factor=retry_backoff_seconds,
            status_forcelist={502, 503, 504},
            allowed_methods={"GET"},
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

    def get_latest_quotes(self, symbols: Iterable[str]) -> dict[str, PriceQuote]:
        wanted = [symbol.strip().upper() for symbol in symbols if symbol and symbol.strip()]
        if not wanted:
            msg = "at least one symbol must be provided"
            raise ValueError(msg)

        payload = self._request(
            "GET",
            QUOTES_LATEST_PATH,
            params={"symbol": ",".join(wanted)},
            headers={"X-CMC_PRO_API_KEY": self.api_key},
        )
        if not isinstance(payload, dict):
            raise CoinMarketCapAPIError("CoinMarketCap API returned unexpected payload type", payload=payload)

        data = payload.get("data")
        if not isinstance(data, dict):
            raise CoinMarketCapAPIError("CoinMarketCap API payload missing data", payload=payload)

        quotes: dict[str, PriceQuote] = {}
        for symbol in wanted:
            try:
                quote = self._parse_quote(symbol, data.get(symbol))
            except (ValueError, ArithmeticError) as exc:
                logger.error("Malformed price data for %s: %s", symbol, exc)
                continue
            if quote is None:
                logger.error("Missing required price data for %s", symbol)
                continue
            quotes[symbol] = quote
        return quotes

    def _extract_error(self, response: requests.Response | None) -> tuple[str, Any | None]:
        message, payload = super()._extract_error(response)
        if isinstance(payload, dict):
            status = payload.get("status")
            if isinstance(status, dict) and status.get("error_message"):
                message = str(status["error_message"])
        return message, payload

    @staticmethod
    def _parse_quote(symbol: str, entry: Any) -> PriceQuote | None:
        # Ambiguous symbols come back as a list of candidates; the first is the highest ranked.
        if isinstance(entry, list):
            entry = entry[0] if entry else None
        if not isinstance(entry, dict):
            return None

        usd = (entry.get("quote") or {}).get("USD")
        if not isinstance(usd, dict) or usd.get("price") is None:
            return None

        last_updated_raw = usd.get("last_updated")
        if isinstance(last_updated_raw, str) and last_updated_raw:
            last_updated = datetime.fromisoformat(last_updated_raw.replace("Z", "+00:00"))
        else:
            last_updated = datetime.now(timezone.utc)

        return PriceQuote(
            symbol=symbol,
            name=str(entry.get("name") or symbol),
            price=Decimal(str(usd["price"])),
            percent_change_24h=Decimal(str(usd.get("percent_change_24h") or 0)),
            last_updated=last_updated,
        )


__all__ = ["CoinMarketCapAPIError", "CoinMarketCapClient"]
