from __future__ import annotations

import logging
from typing import Any

import requests

from .base import ApiError, JsonHttpClient

logger = logging.getLogger(__name__)


class DefiLlamaAPIError(ApiError):
    pass


class DefiLlamaClient(JsonHttpClient):
    # https://defillama.com/docs/api (yields section)
    error_class = DefiLlamaAPIError
    service_name = "DefiLlama Yield API"

    def __init__(
        self,
        *,
        base_url: str = "https://yields.llama.fi",
        timeout: float = 15.0,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(base_url=base_url, timeout=timeout, session=session)

    def get_pools(self) -> list[dict[str, Any]]:
        payload = self._request("GET", "/pools")

        pools: Any
        if isinstance(payload, dict):
            pools = payload.get("data")
            if not isinstance(pools, list):
                logger.warning("Unexpected DefiLlama response structure, trying 'pools' key")
                pools = payload.get("pools")
        else:
            pools = payload

        if not isinstance(pools, list):
            raise DefiLlamaAPIError("Unable to parse API response: data is not an array", payload=payload)

        logger.info("Received data for %d yield pools", len(pools))
        return pools


__all__ = ["DefiLlamaAPIError", "DefiLlamaClient"]
