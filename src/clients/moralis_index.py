from __future__ import annotations

import logging
from time import sleep
from typing import Any

from moralis import evm_api  # type: ignore

from .base import ApiError

logger = logging.getLogger(__name__)


class MoralisIndexError(ApiError):
    pass


def _to_etherscan_record(entry: dict[str, Any]) -> dict[str, Any]:
    return {
        "contractAddress": entry.get("address"),
        "tokenSymbol": entry.get("token_symbol"),
        "tokenName": entry.get("token_name"),
        "tokenDecimal": entry.get("token_decimals"),
        "from": entry.get("from_address"),
        "to": entry.get("to_address"),
        "value": entry.get("value"),
        "hash": entry.get("transaction_hash"),
        "timeStamp": entry.get("block_timestamp"),
    }


class MoralisTokenIndex:
    """Token transfer index backed by Moralis, shaped like Etherscan ``tokentx`` records."""

    # https://docs.moralis.com/
    def __init__(self, api_key: str, *, chain: str = "eth", delay_seconds: float = 0.2, max_pages: int = 20):
        if not api_key:
            msg = "api_key must be provided"
            raise ValueError(msg)
        self.api_key = api_key
        self.chain = chain
        self.delay_seconds = delay_seconds
        self.max_pages = max_pages

    def get_token_transfers(self, address: str) -> list[dict[str, Any]]:
        cursor: str | None = ""
        aggregated: list[dict[str, Any]] = []
        pages = 0

        while cursor is not None and pages < self.max_pages:
            params: dict[str, object] = {"chain": self.chain, "address": address, "order": "DESC"}
            if cursor:
                params["cursor"] = cursor
                sleep(self.delay_seconds)

            try:
                response = evm_api.token.get_wallet_token_transfers(api_key=self.api_key, params=params)
            except Exception as exc:  # the SDK raises its own generated exception types
                status_code = getattr(exc, "status", None)
                raise MoralisIndexError(f"Moralis request failed: {exc}", status_code=status_code) from exc

            pages += 1
            cursor = response.get("cursor") or None
            batch = response.get("result", []) or []
            aggregated.extend(_to_etherscan_record(entry) for entry in batch)
            logger.info("Fetched batch size=%d total=%d address=%s", len(batch), len(aggregated), address)

        return aggregated


__all__ = ["MoralisIndexError", "MoralisTokenIndex"]
