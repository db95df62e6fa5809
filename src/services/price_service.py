from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Iterable

from clients.base import ApiError
from clients.price_proxy import PriceProxyClient, parse_quote, quote_to_payload
from domain.assets import ETH_SYMBOL, PriceQuote
from utils.misc import chunked, unique

from .cache import TtlCache
from .rate_limit import RateLimitState

logger = logging.getLogger(__name__)

PRICE_CACHE_KEY = "price-data-cache"
SYMBOL_PRICE_CACHE_KEY = "wallet-symbols-price-cache"
PRICE_CACHE_TTL = timedelta(minutes=2)
PRICE_BATCH_SIZE = 3
PRICE_BATCH_DELAY_SECONDS = 0.3
SYMBOL_BATCH_SIZE = 5
SYMBOL_BATCH_DELAY_SECONDS = 0.2

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


@dataclass
class SymbolPriceResult:
    prices: dict[str, PriceQuote] = field(default_factory=dict)
    statuses: dict[str, str] = field(default_factory=dict)
    from_cache: bool = False

    @property
    def success_count(self) -> int:
        return sum(1 for status in self.statuses.values() if status == STATUS_SUCCESS)

    @property
    def error(self) -> str | None:
        if self.statuses and self.success_count == 0:
            return "Failed to fetch price data for any tokens"
        return None


def _encode_prices(prices: dict[str, PriceQuote]) -> dict[str, dict[str, Any]]:
    return {symbol: quote_to_payload(quote, exact=True) for symbol, quote in prices.items()}


def _decode_prices(raw: Any) -> dict[str, PriceQuote]:
    if not isinstance(raw, dict):
        return {}
    prices: dict[str, PriceQuote] = {}
    for symbol, entry in raw.items():
        try:
            quote = parse_quote(symbol, entry)
        except ValueError as exc:
            logger.warning("Ignoring cached price for %s: %s", symbol, exc)
            continue
        if quote is not None:
            prices[symbol] = quote
    return prices


class PriceService:
    """USD prices for wallet symbols, read through the session cache and the local price proxy."""

    def __init__(
        self,
        client: PriceProxyClient,
        cache: TtlCache,
        *,
        rate_limit: RateLimitState | None = None,
        sleep: Callable[[float], None] = time.sleep,
        batch_delay: float = PRICE_BATCH_DELAY_SECONDS,
        symbol_batch_delay: float = SYMBOL_BATCH_DELAY_SECONDS,
    ) -> None:
        self.client = client
        self.cache = cache
        self.rate_limit = rate_limit if rate_limit is not None else RateLimitState()
        self._sleep = sleep
        self.batch_delay = batch_delay
        self.symbol_batch_delay = symbol_batch_delay

    def get_prices(self, symbols: Iterable[str]) -> dict[str, PriceQuote]:
        wanted = unique(symbol for symbol in symbols if symbol)
        if not wanted:
            return {}
        if ETH_SYMBOL not in wanted:
            wanted.append(ETH_SYMBOL)

        prices = _decode_prices(self.cache.get(PRICE_CACHE_KEY, PRICE_CACHE_TTL))
        if prices:
            logger.info("Using cached price data")

        to_fetch = [symbol for symbol in wanted if symbol not in prices]
        if not to_fetch:
            logger.info("All price data available in cache")
            return prices

        logger.info("Fetching prices for %d tokens", len(to_fetch))
        batches = list(chunked(to_fetch, PRICE_BATCH_SIZE))
        for index, batch in enumerate(batches):
            with ThreadPoolExecutor(max_workers=len(batch)) as pool:
                results = list(pool.map(self._fetch_one, batch))
            for symbol, quote in zip(batch, results):
                if quote is not None:
                    prices[symbol] = quote

            if self.rate_limit.limited:
                return self._with_stale_fallback(prices)
            if index + 1 < len(batches):
                self._sleep(self.batch_delay)

        self.cache.set(PRICE_CACHE_KEY, _encode_prices(prices))
        logger.info("Retrieved prices for %d tokens", len(prices))
        return prices

    def get_symbol_prices(self, symbols: Iterable[str]) -> SymbolPriceResult:
        wanted = unique(symbol for symbol in symbols if symbol)
        if not wanted:
            return SymbolPriceResult()

        fresh = self.cache.get(SYMBOL_PRICE_CACHE_KEY, PRICE_CACHE_TTL)
        if fresh is not None:
            logger.info("Using cached price data for wallet symbols")
            prices = _decode_prices(fresh)
            statuses = {symbol: STATUS_SUCCESS if symbol in prices else STATUS_ERROR for symbol in wanted}
            return SymbolPriceResult(prices=prices, statuses=statuses, from_cache=True)

        # Stale prices still stand in for symbols we fail to refresh.
        prices = _decode_prices(self.cache.get_stale(SYMBOL_PRICE_CACHE_KEY))
        statuses: dict[str, str] = {}

        batches = list(chunked(wanted, SYMBOL_BATCH_SIZE))
        for index, batch in enumerate(batches):
            logger.info("Fetching prices for batch: %s", ",".join(batch))
            try:
                fetched = self.client.get_prices(batch)
            except (ApiError, ValueError) as exc:
                logger.error("Error fetching batch prices: %s", exc)
                if isinstance(exc, ApiError) and exc.is_rate_limited:
                    self.rate_limit.trip(str(exc))
                statuses.update({symbol: STATUS_ERROR for symbol in batch})
            else:
                for symbol in batch:
                    if symbol in fetched:
                        prices[symbol] = fetched[symbol]
                        statuses[symbol] = STATUS_SUCCESS
                    else:
                        statuses[symbol] = STATUS_ERROR

            if index + 1 < len(batches):
                self._sleep(self.symbol_batch_delay)

        self.cache.set(SYMBOL_PRICE_CACHE_KEY, _encode_prices(prices))
        result = SymbolPriceResult(prices=prices, statuses=statuses)
        logger.info("Successfully retrieved prices for %d out of %d tokens", result.success_count, len(wanted))
        return result

    def cached_prices(self) -> dict[str, PriceQuote]:
        return _decode_prices(self.cache.get_stale(PRICE_CACHE_KEY))

    def _fetch_one(self, symbol: str) -> PriceQuote | None:
        try:
            return self.client.get_price(symbol)
        except (ApiError, ValueError) as exc:
            logger.error("Error fetching price for %s: %s", symbol, exc)
            if isinstance(exc, ApiError) and exc.is_rate_limited:
                self.rate_limit.trip(f"price API: {exc}")
            return None

    def _with_stale_fallback(self, prices: dict[str, PriceQuote]) -> dict[str, PriceQuote]:
        stale = self.cached_prices()
        if stale:
            logger.info("Using cached price data due to rate limiting")
        return {**stale, **prices}


__all__ = [
    "PRICE_CACHE_KEY",
    "PRICE_CACHE_TTL",
    "PriceService",
    "STATUS_ERROR",
    "STATUS_SUCCESS",
    "SYMBOL_PRICE_CACHE_KEY",
    "SymbolPriceResult",
]
