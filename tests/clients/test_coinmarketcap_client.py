from __future__ import annotations

import socket
from decimal import Decimal
from unittest.mock import Mock

import pytest
import requests
from urllib3.exceptions import MaxRetryError, ReadTimeoutError

from clients.coinmarketcap import CoinMarketCapAPIError, CoinMarketCapClient


def _mock_response(payload: object, status_code: int = 200) -> Mock:
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = "payload"
    response.raise_for_status.return_value = None
    return response


def _usd(price: float, change: float = 0.0) -> dict[str, object]:
    return {"quote": {"USD": {"price": price, "percent_change_24h": change, "last_updated": "2024-05-01T12:00:00.000Z"}}}


def test_get_latest_quotes_parses_entries() -> None:
    session = Mock()
    payload = {
        "status": {"error_code": 0},
        "data": {
            "ETH": {"name": "Ethereum", **_usd(3100.12, 2.5)},
            "UNI": [{"name": "Uniswap", **_usd(7.5)}, {"name": "Unicorn", **_usd(0.01)}],
        },
    }
    session.request.return_value = _mock_response(payload)

    client = CoinMarketCapClient(api_key="cmc", session=session)
    quotes = client.get_latest_quotes([" eth", "uni", "MISSING"])

    assert set(quotes) == {"ETH", "UNI"}
    assert quotes["ETH"].name == "Ethereum"
    assert quotes["ETH"].price == Decimal("3100.12")
    assert quotes["ETH"].percent_change_24h == Decimal("2.5")
    assert quotes["UNI"].name == "Uniswap"

    kwargs = session.request.call_args.kwargs
    assert kwargs["params"] == {"symbol": "ETH,UNI,MISSING"}
    assert kwargs["headers"]["X-CMC_PRO_API_KEY"] == "cmc"
    assert session.request.call_args.args[1] == "https://pro-api.coinmarketcap.com/v1/cryptocurrency/quotes/latest"


def test_error_message_comes_from_status_block() -> None:
    session = Mock()
    response = _mock_response({"status": {"error_code": 1002, "error_message": "API key missing."}}, status_code=401)
    response.raise_for_status.side_effect = requests.HTTPError(response=response)
    session.request.return_value = response

    client = CoinMarketCapClient(api_key="cmc", session=session)
    with pytest.raises(CoinMarketCapAPIError) as excinfo:
        client.get_latest_quotes(["ETH"])

    assert str(excinfo.value) == "API key missing."
    assert excinfo.value.status_code == 401
    assert not excinfo.value.is_rate_limited


def test_payload_without_data_raises() -> None:
    session = Mock()
    session.request.return_value = _mock_response({"status": {}})

    with pytest.raises(CoinMarketCapAPIError):
        CoinMarketCapClient(api_key="cmc", session=session).get_latest_quotes(["ETH"])


def test_requires_symbols_and_key() -> None:
    with pytest.raises(ValueError):
        CoinMarketCapClient(api_key="")
    with pytest.raises(ValueError):
        CoinMarketCapClient(api_key="cmc", session=Mock()).get_latest_quotes([" "])


def test_malformed_entry_is_skipped() -> None:
    session = Mock()
    broken = {"name": "Spam", "quote": {"USD": {"price": 1.0, "last_updated": "yesterday"}}}
    session.request.return_value = _mock_response({"data": {"ETH": {"name": "Ethereum", **_usd(3100)}, "SPAM": broken}})

    quotes = CoinMarketCapClient(api_key="cmc", session=session).get_latest_quotes(["ETH", "SPAM"])

    assert set(quotes) == {"ETH"}


def test_read_timeout_is_not_retried_into_connection_error() -> None:
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(8)
    port = listener.getsockname()[1]
    try:
        client = CoinMarketCapClient(
            api_key="cmc", base_url=f"http://127.0.0.1:{port}", timeout=0.3, retry_backoff_seconds=0
        )
        with pytest.raises(CoinMarketCapAPIError) as excinfo:
            client.get_latest_quotes(["ETH"])
    finally:
        listener.close()

    assert isinstance(excinfo.value.__cause__, requests.ReadTimeout)
    assert excinfo.value.is_timeout


def test_exhausted_read_retries_count_as_timeout() -> None:
    error = CoinMarketCapAPIError("CoinMarketCap API request failed")
    error.__cause__ = requests.ConnectionError(MaxRetryError(None, "/", ReadTimeoutError(None, "/", "timed out")))

    assert error.is_timeout


def test_refused_connection_is_not_a_timeout() -> None:
    error = CoinMarketCapAPIError("CoinMarketCap API request failed")
    error.__cause__ = requests.ConnectionError("refused")

    assert not error.is_timeout
