from typing import Protocol

from fastapi import Request

from api.quote_cache import QuoteCache
from domain.assets import PriceQuote


class QuoteSource(Protocol):
    def get_latest_quotes(self, symbols: list[str]) -> dict[str, PriceQuote]: ...


def get_quote_source(request: Request) -> QuoteSource:
    return request.app.state.quote_source


def get_quote_cache(request: Request) -> QuoteCache:
    return request.app.state.quote_cache
