from __future__ import annotations

from typing import Any

import requests

from .base import ApiError, JsonHttpClient


class StakingWatchAPIError(ApiError):
    pass


class StakingWatchClient(JsonHttpClient):
    error_class = StakingWatchAPIError
    service_name = "stakingwatch API"

    def __init__(
        self,
        *,
        base_url: str = "https://data.stakingwatch.io/api/v1",
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(base_url=base_url, timeout=timeout, session=session)

    def get_protocols(self) -> list[dict[str, Any]]:
        return self._get_list("/protocols/")

    def get_tokens(self) -> list[dict[str, Any]]:
        return self._get_list("/tokens/")

    def get_chains(self) -> list[dict[str, Any]]:
        return self._get_list("/chains/")

    def get_stats(self, interval: str = "7d") -> list[dict[str, Any]]:
        return self._get_list("/stats/overview", params={"filters[interval]": interval})

    def _get_list(self, path: str, *, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        payload = self._request("GET", path, params=params)
        if not isinstance(payload, list):
            raise StakingWatchAPIError(f"stakingwatch {path} did not return a list", payload=payload)
        return payload


__all__ = ["StakingWatchAPIError", "StakingWatchClient"]
