from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Annotated, Any, AsyncGenerator, Awaitable, Callable

from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse

from api.dependencies import QuoteSource, get_quote_cache, get_quote_source
from api.quote_cache import QuoteCache
from clients.base import ApiError
from clients.coinmarketcap import CoinMarketCapClient
from clients.price_proxy import quote_to_payload
from config import config
from services.rate_limit import FixedWindowRateLimiter

logger = logging.getLogger(__name__)

PROXY_PORT = 3005
RATE_LIMIT_EXEMPT_PATHS = frozenset({"/health"})


def _error(status_code: int, content: dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content)


def _upstream_error(exc: ApiError) -> JSONResponse:
    if exc.status_code == 429:
        logger.error("Rate limit exceeded on CoinMarketCap API")
        return _error(429, {"error": "Rate limit exceeded on upstream API", "message": "Try again later"})
    if exc.is_timeout:
        logger.error("Request timeout")
        return _error(504, {"error": "Request timeout"})
    if exc.status_code is not None:
        logger.error("Status: %s, response data: %s", exc.status_code, exc.payload)
        return _error(exc.status_code, {"error": "API Error", "details": exc.payload})
    logger.error("Error fetching price data: %s", exc)
    return _error(500, {"error": str(exc)})


def create_app(
    *,
    quote_source: QuoteSource | None = None,
    quote_cache: QuoteCache | None = None,
    rate_limiter: FixedWindowRateLimiter | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI) -> AsyncGenerator[None, None]:
        settings = config()
        cache = quote_cache if quote_cache is not None else QuoteCache(path=settings.price_cache_file)
        cache.load()
        fastapi_app.state.quote_cache = cache
        fastapi_app.state.quote_source = quote_source or CoinMarketCapClient(api_key=settings.coinmarketcap_api_key)
        fastapi_app.state.rate_limiter = rate_limiter if rate_limiter is not None else FixedWindowRateLimiter()
        limiter = fastapi_app.state.rate_limiter
        logger.info("Cache TTL: %d seconds", cache.ttl.total_seconds())
        logger.info("Rate limit: %d requests per %d seconds", limiter.max_requests, limiter.window.total_seconds())
        yield
        cache.save()

    app = FastAPI(title="Price proxy", lifespan=lifespan)

    @app.middleware("http")
    async def limit_requests(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        if request.url.path not in RATE_LIMIT_EXEMPT_PATHS and not request.app.state.rate_limiter.try_acquire():
            return _error(429, {"error": "Rate limit exceeded", "message": "Too many requests, please try again later"})
        return await call_next(request)

    @app.get("/api/prices", response_model=None)
    def get_prices(
        source: Annotated[QuoteSource, Depends(get_quote_source)],
        cache: Annotated[QuoteCache, Depends(get_quote_cache)],
        symbols: str | None = None,
    ) -> dict[str, Any] | JSONResponse:
        if not symbols:
            return _error(
                400,
                {
                    "error": "Missing symbols parameter",
                    "message": "Please provide a comma-separated list of symbols",
                },
            )

        requested = list(dict.fromkeys(s.strip().upper() for s in symbols.split(",") if s.strip()))
        if not requested:
            return _error(
                400,
                {"error": "Invalid symbols parameter", "message": "Please provide at least one symbol"},
            )

        result: dict[str, Any] = {}
        to_fetch: list[str] = []
        for symbol in requested:
            quote = cache.fresh(symbol)
            if quote is not None:
                result[symbol] = quote_to_payload(quote)
            else:
                to_fetch.append(symbol)

        if not to_fetch:
            logger.info("Using cached data for all symbols: %s", ", ".join(requested))
            return result

        logger.info("Fetching price data for: %s", ", ".join(to_fetch))
        try:
            quotes = source.get_latest_quotes(to_fetch)
        except ApiError as exc:
            return _upstream_error(exc)

        for symbol, quote in quotes.items():
            cache.put(symbol, quote)
            result[symbol] = quote_to_payload(quote)
        return result

    @app.get("/api/price/{symbol}", response_model=None)
    def get_price(
        symbol: str,
        source: Annotated[QuoteSource, Depends(get_quote_source)],
        cache: Annotated[QuoteCache, Depends(get_quote_cache)],
    ) -> dict[str, Any] | JSONResponse:
        key = symbol.strip().upper()
        cached = cache.fresh(key)
        if cached is not None:
            logger.info("Using cached data for %s", key)
            return quote_to_payload(cached)

        logger.info("Fetching price data for %s...", key)
        try:
            quotes = source.get_latest_quotes([key])
        except ApiError as exc:
            stale = cache.stale(key)
            if exc.status_code == 429 and stale is not None:
                logger.info("Using cached data for %s due to rate limiting", key)
                return quote_to_payload(stale)
            return _upstream_error(exc)

        quote = quotes.get(key)
        if quote is None:
            logger.error("Missing required price data for %s", key)
            return _error(404, {"symbol": key, "error": "Price data not available", "price": None})

        logger.info("Current price of %s: $%.2f USD", key, quote.price)
        cache.put(key, quote)
        return quote_to_payload(quote)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


__all__ = ["PROXY_PORT", "create_app"]
