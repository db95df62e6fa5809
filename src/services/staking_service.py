from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Iterable

from pydantic import ValidationError

from clients.base import ApiError
from clients.stakingwatch import StakingWatchClient
from domain.yields import StakingOpportunity, filter_to_symbols, parse_staking_stats

from .cache import TtlCache

logger = logging.getLogger(__name__)

STAKING_CACHE_KEY = "staking-data-cache"
STAKING_CACHE_TTL = timedelta(minutes=10)


@dataclass
class StakingResult:
    opportunities: list[StakingOpportunity] = field(default_factory=list)
    error: str | None = None


class StakingService:
    def __init__(self, client: StakingWatchClient, cache: TtlCache) -> None:
        self.client = client
        self.cache = cache

    def fetch_opportunities(self) -> StakingResult:
        cached = self._restore(self.cache.get(STAKING_CACHE_KEY, STAKING_CACHE_TTL))
        if cached is not None:
            logger.info("Using cached staking data")
            return StakingResult(opportunities=cached)

        logger.info("Fetching staking data from stakingwatch.io API...")
        try:
            with ThreadPoolExecutor(max_workers=4) as pool:
                protocols = pool.submit(self.client.get_protocols)
                tokens = pool.submit(self.client.get_tokens)
                chains = pool.submit(self.client.get_chains)
                stats = pool.submit(self.client.get_stats)
                opportunities = parse_staking_stats(
                    protocols.result(), tokens.result(), chains.result(), stats.result()
                )
        except ApiError as exc:
            logger.error("Error fetching staking data: %s", exc)
            return StakingResult(error="Failed to fetch staking data. Please try again later.")

        self.cache.set(STAKING_CACHE_KEY, [entry.model_dump(mode="json") for entry in opportunities])
        logger.info("Processed %d staking opportunities", len(opportunities))
        return StakingResult(opportunities=opportunities)

    @staticmethod
    def for_assets(
        opportunities: Iterable[StakingOpportunity], user_symbols: set[str] | None
    ) -> list[StakingOpportunity]:
        if not user_symbols:
            return []
        return filter_to_symbols(opportunities, user_symbols, key=lambda entry: entry.asset)

    @staticmethod
    def _restore(raw: Any) -> list[StakingOpportunity] | None:
        if not isinstance(raw, list):
            return None
        try:
            return [StakingOpportunity.model_validate(entry) for entry in raw]
        except ValidationError as exc:
            logger.warning("Error parsing cached staking data: %s", exc)
            return None


__all__ = ["STAKING_CACHE_KEY", "STAKING_CACHE_TTL", "StakingResult", "StakingService"]
