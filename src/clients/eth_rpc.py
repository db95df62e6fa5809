from __future__ import annotations

from decimal import Decimal
from itertools import count
from typing import Any

import requests

from .base import ApiError, JsonHttpClient

BALANCE_OF_SELECTOR = "0x70a08231"
DECIMALS_SELECTOR = "0x313ce567"
WEI_DECIMALS = 18


class EthRpcError(ApiError):
    pass


def format_units(raw: int, decimals: int) -> Decimal:
    if decimals <= 0:
        return Decimal(raw)
    return Decimal(raw) / (Decimal(10) ** decimals)


def _encode_address(address: str) -> str:
    value = address.lower().removeprefix("0x")
    if len(value) != 40:
        msg = f"Invalid address: {address}"
        raise ValueError(msg)
    return value.rjust(64, "0")


def _decode_uint(result: Any) -> int:
    if not isinstance(result, str) or not result.startswith("0x"):
        raise EthRpcError("JSON-RPC returned a non-hex result", payload=result)
    if result == "0x":
        return 0
    return int(result, 16)


class EthRpcClient(JsonHttpClient):
    """Read-only Ethereum JSON-RPC client for native and ERC20 balances."""

    error_class = EthRpcError
    service_name = "Ethereum RPC"

    def __init__(
        self,
        *,
        rpc_url: str = "https://rpc.ankr.com/eth",
        timeout: float = 4.0,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(base_url=rpc_url, timeout=timeout, session=session)
        self._ids = count(1)

    def get_balance(self, address: str, block: str = "latest") -> int:
        return _decode_uint(self._call("eth_getBalance", [address, block]))

    def erc20_balance_of(self, token: str, owner: str, block: str = "latest") -> int:
        data = f"{BALANCE_OF_SELECTOR}{_encode_address(owner)}"
        return _decode_uint(self._call("eth_call", [{"to": token, "data": data}, block]))

    def erc20_decimals(self, token: str, block: str = "latest") -> int:
        return _decode_uint(self._call("eth_call", [{"to": token, "data": DECIMALS_SELECTOR}, block]))

    def _call(self, method: str, params: list[Any]) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        payload = self._request("POST", "", json=body)
        if not isinstance(payload, dict):
            raise EthRpcError("JSON-RPC returned unexpected payload type", payload=payload)

        error = payload.get("error")
        if isinstance(error, dict):
            raise EthRpcError(str(error.get("message") or "JSON-RPC error"), payload=payload)
        if "result" not in payload:
            raise EthRpcError("JSON-RPC response missing result", payload=payload)
        return payload["result"]


__all__ = ["EthRpcClient", "EthRpcError", "WEI_DECIMALS", "format_units"]
