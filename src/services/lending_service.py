from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Iterable

from pydantic import ValidationError

from clients.base import ApiError
from clients.defillama import DefiLlamaClient
from domain.yields import LendingPool, filter_to_symbols, parse_lending_pools

from .cache import TtlCache

logger = logging.getLogger(__name__)

LENDING_CACHE_KEY = "lending-data-cache"
LENDING_CACHE_TTL = timedelta(minutes=15)


@dataclass
class LendingResult:
    pools: list[LendingPool] = field(default_factory=list)
    stale: bool = False
    error: str | None = None


class LendingService:
    def __init__(self, client: DefiLlamaClient, cache: TtlCache) -> None:
        self.client = client
        self.cache = cache

    def fetch_pools(self) -> LendingResult:
        cached = self._restore(self.cache.get(LENDING_CACHE_KEY, LENDING_CACHE_TTL))
        if cached is not None:
            logger.info("Using cached lending data")
            return LendingResult(pools=cached)

        try:
            pools = parse_lending_pools(self.client.get_pools())
        except ApiError as exc:
            logger.error("Error fetching lending data: %s (status=%s)", exc, exc.status_code)
            stale = self._restore(self.cache.get_stale(LENDING_CACHE_KEY))
            if stale is not None:
                logger.info("Using older cached data as fallback")
                return LendingResult(
                    pools=stale,
                    stale=True,
                    error="Using cached data. Latest data could not be fetched.",
                )
            return LendingResult(error="Failed to fetch lending data. Please try again later.")

        self.cache.set(LENDING_CACHE_KEY, [pool.model_dump(mode="json") for pool in pools])
        logger.info("Processed %d lending opportunities", len(pools))
        return LendingResult(pools=pools)

    @staticmethod
    def opportunities(
        pools: Iterable[LendingPool],
        user_symbols: set[str] | None = None,
        *,
        only_user_assets: bool = False,
    ) -> list[LendingPool]:
        if not only_user_assets or not user_symbols:
            return list(pools)
        return filter_to_symbols(pools, user_symbols, key=lambda pool: pool.symbol)

    @staticmethod
    def _restore(raw: Any) -> list[LendingPool] | None:
        if not isinstance(raw, list):
            return None
        try:
            return [LendingPool.model_validate(entry) for entry in raw]
        except ValidationError as exc:
            logger.warning("Error parsing cached lending data: %s", exc)
            return None


__all__ = ["LENDING_CACHE_KEY", "LENDING_CACHE_TTL", "LendingResult", "LendingService"]
