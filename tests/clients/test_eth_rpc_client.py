from __future__ import annotations

from decimal import Decimal
from unittest.mock import Mock

import pytest
import requests

from clients.eth_rpc import EthRpcClient, EthRpcError, format_units

OWNER = "0x00000000219ab540356cBB839Cbe05303d7705Fa"
TOKEN = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"


def _mock_response(payload: object, status_code: int = 200) -> Mock:
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = "payload"
    response.raise_for_status.return_value = None
    return response


def test_get_balance_decodes_hex_wei() -> None:
    session = Mock()
    session.request.return_value = _mock_response({"jsonrpc": "2.0", "id": 1, "result": "0xde0b6b3a7640000"})

    client = EthRpcClient(rpc_url="https://rpc.example", session=session)

    assert client.get_balance(OWNER) == 10**18
    method, url = session.request.call_args.args
    assert (method, url) == ("POST", "https://rpc.example")
    body = session.request.call_args.kwargs["json"]
    assert body["method"] == "eth_getBalance"
    assert body["params"] == [OWNER, "latest"]
    assert body["jsonrpc"] == "2.0"


def test_erc20_balance_of_encodes_call_data() -> None:
    session = Mock()
    session.request.return_value = _mock_response({"jsonrpc": "2.0", "id": 1, "result": hex(2_500_000)})

    client = EthRpcClient(rpc_url="https://rpc.example", session=session)

    assert client.erc20_balance_of(TOKEN, OWNER) == 2_500_000
    body = session.request.call_args.kwargs["json"]
    assert body["method"] == "eth_call"
    call, block = body["params"]
    assert block == "latest"
    assert call["to"] == TOKEN
    assert call["data"] == "0x70a08231" + "0" * 24 + OWNER.lower()[2:]


def test_empty_result_is_zero() -> None:
    session = Mock()
    session.request.return_value = _mock_response({"jsonrpc": "2.0", "id": 1, "result": "0x"})

    client = EthRpcClient(rpc_url="https://rpc.example", session=session)

    assert client.erc20_decimals(TOKEN) == 0


def test_rpc_error_is_raised() -> None:
    session = Mock()
    session.request.return_value = _mock_response(
        {"jsonrpc": "2.0", "id": 1, "error": {"code": -32005, "message": "rate limit exceeded"}}
    )

    client = EthRpcClient(rpc_url="https://rpc.example", session=session)
    with pytest.raises(EthRpcError) as excinfo:
        client.get_balance(OWNER)

    assert str(excinfo.value) == "rate limit exceeded"
    assert excinfo.value.is_rate_limited


def test_timeout_is_wrapped() -> None:
    session = Mock()
    session.request.side_effect = requests.Timeout("slow")

    client = EthRpcClient(rpc_url="https://rpc.example", session=session)
    with pytest.raises(EthRpcError) as excinfo:
        client.get_balance(OWNER)

    assert excinfo.value.is_timeout
    assert excinfo.value.status_code is None


def test_invalid_owner_address() -> None:
    client = EthRpcClient(rpc_url="https://rpc.example", session=Mock())

    with pytest.raises(ValueError):
        client.erc20_balance_of(TOKEN, "0x1234")


def test_format_units() -> None:
    assert format_units(1_500_000, 6) == Decimal("1.5")
    assert format_units(10**18, 18) == Decimal(1)
    assert format_units(42, 0) == Decimal(42)
