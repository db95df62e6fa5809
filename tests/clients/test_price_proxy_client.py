from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import Mock

import pytest
import requests

from clients.price_proxy import PriceProxyClient, PriceProxyError, parse_quote, quote_to_payload


def _mock_response(payload: object, status_code: int = 200) -> Mock:
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = "payload"
    response.raise_for_status.return_value = None
    return response


def _entry(symbol: str, price: float) -> dict[str, object]:
    return {
        "symbol": symbol,
        "name": symbol.title(),
        "price": price,
        "lastUpdated": "2024-05-01T12:00:00Z",
        "percentChange24h": -1.25,
    }


def test_get_price_calls_single_symbol_endpoint() -> None:
    session = Mock()
    session.request.return_value = _mock_response(_entry("ETH", 3000.5))

    client = PriceProxyClient(session=session)
    quote = client.get_price("ETH")

    assert session.request.call_args.args == ("GET", "http://localhost:3005/api/price/ETH")
    assert quote.symbol == "ETH"
    assert quote.price == Decimal("3000.5")
    assert quote.percent_change_24h == Decimal("-1.25")
    assert quote.last_updated == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_get_prices_skips_symbols_without_data() -> None:
    session = Mock()
    session.request.return_value = _mock_response({"ETH": _entry("ETH", 3000), "LINK": _entry("LINK", 14)})

    client = PriceProxyClient(base_url="http://proxy:3005/", session=session)
    quotes = client.get_prices(["ETH", "LINK", "SHIB"])

    assert set(quotes) == {"ETH", "LINK"}
    assert session.request.call_args.args == ("GET", "http://proxy:3005/api/prices")
    assert session.request.call_args.kwargs["params"] == {"symbols": "ETH,LINK,SHIB"}


def test_get_prices_with_no_symbols_does_not_call() -> None:
    session = Mock()

    assert PriceProxyClient(session=session).get_prices([]) == {}
    session.request.assert_not_called()


def test_proxy_rate_limit_is_reported() -> None:
    session = Mock()
    response = _mock_response({"error": "Rate limit exceeded", "message": "Too many requests"}, status_code=429)
    response.raise_for_status.side_effect = requests.HTTPError(response=response)
    session.request.return_value = response

    client = PriceProxyClient(session=session)
    with pytest.raises(PriceProxyError) as excinfo:
        client.get_price("ETH")

    assert excinfo.value.status_code == 429
    assert excinfo.value.is_rate_limited


def test_missing_price_raises() -> None:
    session = Mock()
    session.request.return_value = _mock_response({"symbol": "XYZ", "error": "Price data not available"})

    with pytest.raises(PriceProxyError):
        PriceProxyClient(session=session).get_price("XYZ")


def test_parse_quote_and_payload_shape() -> None:
    assert parse_quote("ETH", {"price": None}) is None
    assert parse_quote("ETH", "not a dict") is None

    quote = parse_quote("eth", {"price": "2.5"})
    assert quote is not None
    assert quote.symbol == "ETH"
    assert quote.name == "eth"

    payload = quote_to_payload(quote)
    assert payload["price"] == 2.5
    assert payload["percentChange24h"] == 0.0
    assert set(payload) == {"symbol", "name", "price", "lastUpdated", "percentChange24h"}


def test_quote_payload_for_caches_keeps_decimal_strings() -> None:
    quote = parse_quote("ETH", {"price": "1234.567890123456789", "percentChange24h": "-0.123456789"})
    assert quote is not None

    payload = quote_to_payload(quote, exact=True)
    assert payload["price"] == "1234.567890123456789"

    restored = parse_quote("ETH", payload)
    assert restored is not None
    assert restored.price == Decimal("1234.567890123456789")
    assert restored.percent_change_24h == Decimal("-0.123456789")


@pytest.mark.parametrize(
    "entry",
    [
        {"price": 1.0, "lastUpdated": "yesterday"},
        {"price": "one dollar"},
    ],
)
def test_parse_quote_rejects_malformed_fields(entry: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        parse_quote("SPAM", entry)


def test_get_price_with_malformed_timestamp_raises_client_error() -> None:
    session = Mock()
    session.request.return_value = _mock_response({**_entry("SPAM", 1.0), "lastUpdated": "yesterday"})

    with pytest.raises(PriceProxyError) as excinfo:
        PriceProxyClient(session=session).get_price("SPAM")

    assert "Malformed price data for SPAM" in str(excinfo.value)
    assert not excinfo.value.is_rate_limited


def test_get_prices_skips_malformed_entries() -> None:
    session = Mock()
    spam = {**_entry("SPAM", 1.0), "lastUpdated": "yesterday"}
    session.request.return_value = _mock_response({"ETH": _entry("ETH", 3000), "SPAM": spam})

    quotes = PriceProxyClient(session=session).get_prices(["ETH", "SPAM"])

    assert set(quotes) == {"ETH"}
