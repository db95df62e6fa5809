from __future__ import annotations

import logging
from typing import Any

import requests

from .base import ApiError, JsonHttpClient

logger = logging.getLogger(__name__)

NO_TRANSACTIONS_MESSAGE = "No transactions found"


class EtherscanAPIError(ApiError):
    pass


class EtherscanClient(JsonHttpClient):
    # https://docs.etherscan.io/api-endpoints/accounts
    error_class = EtherscanAPIError
    service_name = "Etherscan API"

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.etherscan.io",
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        if not api_key:
            msg = "api_key must be provided"
            raise ValueError(msg)
        super().__init__(base_url=base_url, timeout=timeout, session=session)
        self.api_key = api_key

    def get_token_transfers(self, address: str) -> list[dict[str, Any]]:
        """Return ERC20 transfer records touching ``address``, newest first."""
        if not address:
            msg = "address must be provided"
            raise ValueError(msg)

        params = {
            "module": "account",
            "action": "tokentx",
            "address": address,
            "sort": "desc",
            "apikey": self.api_key,
        }
        payload = self._request("GET", "/api", params=params)
        if not isinstance(payload, dict):
            raise EtherscanAPIError("Etherscan API returned unexpected payload type", payload=payload)

        result = payload.get("result")
        if str(payload.get("status")) != "1":
            message = str(payload.get("message") or "Unknown error")
            if message == NO_TRANSACTIONS_MESSAGE:
                return []
            # Etherscan reports throttling inside a 200 response, with the detail in ``result``.
            detail = result if isinstance(result, str) else message
            raise EtherscanAPIError(f"Etherscan API error: {detail}", payload=payload)

        records = result if isinstance(result, list) else []
        logger.info("Fetched %d token transactions from Etherscan", len(records))
        return records


__all__ = ["EtherscanAPIError", "EtherscanClient"]
