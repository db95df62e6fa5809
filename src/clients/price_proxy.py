from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable

import requests

from domain.assets import PriceQuote

from .base import ApiError, JsonHttpClient

logger = logging.getLogger(__name__)


class PriceProxyError(ApiError):
    pass


def parse_quote(symbol: str, entry: Any) -> PriceQuote | None:
    """Build a quote from the proxy's JSON shape; None when the price is absent.

    Malformed fields raise ``ValueError``.
    """
    if not isinstance(entry, dict) or entry.get("price") is None:
        return None

    try:
        last_updated_raw = entry.get("lastUpdated")
        if isinstance(last_updated_raw, str) and last_updated_raw:
            last_updated = datetime.fromisoformat(last_updated_raw.replace("Z", "+00:00"))
        else:
            last_updated = datetime.now(timezone.utc)

        return PriceQuote(
            symbol=str(entry.get("symbol") or symbol).upper(),
            name=str(entry.get("name") or symbol),
            price=Decimal(str(entry["price"])),
            percent_change_24h=Decimal(str(entry.get("percentChange24h") or 0)),
            last_updated=last_updated,
        )
    except ArithmeticError as exc:
        # decimal.InvalidOperation is not a ValueError
        raise ValueError(f"invalid number in price data for {symbol}") from exc


def quote_to_payload(quote: PriceQuote, *, exact: bool = False) -> dict[str, Any]:
    """JSON shape served by the proxy; ``exact`` keeps Decimal strings for caches."""
    convert = str if exact else float
    return {
        "symbol": quote.symbol,
        "name": quote.name,
        "price": convert(quote.price),
        "lastUpdated": quote.last_updated.isoformat(),
        "percentChange24h": convert(quote.percent_change_24h),
    }


class PriceProxyClient(JsonHttpClient):
    """Client for the local caching price proxy (see ``api.price_proxy``)."""

    error_class = PriceProxyError
    service_name = "Price proxy"

    def __init__(
        self,
        *,
        base_url: str = "http://localhost:3005",
        timeout: float = 5.0,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(base_url=base_url, timeout=timeout, session=session)

    def get_price(self, symbol: str) -> PriceQuote:
        if not symbol:
            msg = "symbol must be provided"
            raise ValueError(msg)

        payload = self._request("GET", f"/api/price/{symbol}")
        try:
            quote = parse_quote(symbol, payload)
        except ValueError as exc:
            raise PriceProxyError(f"Malformed price data for {symbol}: {exc}", payload=payload) from exc
        if quote is None:
            raise PriceProxyError(f"No price returned for {symbol}", payload=payload)
        return quote

    def get_prices(self, symbols: Iterable[str]) -> dict[str, PriceQuote]:
        wanted = [symbol for symbol in symbols if symbol]
        if not wanted:
            return {}

        payload = self._request("GET", "/api/prices", params={"symbols": ",".join(wanted)})
        if not isinstance(payload, dict):
            raise PriceProxyError("Price proxy returned unexpected payload type", payload=payload)

        quotes: dict[str, PriceQuote] = {}
        for symbol in wanted:
            try:
                quote = parse_quote(symbol, payload.get(symbol) or payload.get(symbol.upper()))
            except ValueError as exc:
                logger.error("Malformed price data for %s: %s", symbol, exc)
                continue
            if quote is not None:
                quotes[symbol] = quote
        return quotes


__all__ = ["PriceProxyClient", "PriceProxyError", "parse_quote", "quote_to_payload"]
