from datetime import datetime, timezone
from decimal import Decimal

import pytest

from domain.assets import Asset, NetWorth, PriceQuote, TokenAddress, TokenBalance, TokenInfo
from domain.valuation import (
    OPTIMIZATION_SUGGESTIONS,
    compute_net_worth,
    optimization_suggestions,
    summarize_portfolio,
    value_assets,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _quote(symbol: str, price: str) -> PriceQuote:
    return PriceQuote(symbol=symbol, name=symbol, price=Decimal(price), last_updated=NOW)


def _balance(symbol: str, amount: str) -> TokenBalance:
    token = TokenInfo(address=TokenAddress(f"0x{symbol.lower()}"), symbol=symbol, name=symbol)
    return TokenBalance(token=token, balance=Decimal(amount), fetched_at=NOW)


def test_value_assets_sorts_tokens_by_usd_value() -> None:
    prices = {"ETH": _quote("ETH", "3000"), "LINK": _quote("LINK", "10"), "UNI": _quote("UNI", "5")}

    eth, tokens = value_assets(
        Decimal("2"),
        [_balance("UNI", "100"), _balance("LINK", "200"), _balance("PEPE", "1000")],
        prices,
    )

    assert eth.usd_value == Decimal("6000")
    assert [asset.symbol for asset in tokens] == ["LINK", "UNI", "PEPE"]
    assert tokens[0].usd_value == Decimal("2000")
    assert tokens[2].usd_value == Decimal(0)


def test_value_assets_without_eth_balance() -> None:
    eth, tokens = value_assets(None, [], {"ETH": _quote("ETH", "3000")})

    assert eth.balance is None
    assert eth.usd_value is None
    assert not eth.has_value
    assert tokens == []


def test_compute_net_worth_counts_assets_without_value() -> None:
    assets = [
        Asset(symbol="ETH", name="Ethereum", balance=Decimal(1), usd_value=Decimal("3000")),
        Asset(symbol="LINK", name="Chainlink", balance=Decimal(5), usd_value=Decimal("50")),
        Asset(symbol="PEPE", name="Pepe", balance=Decimal(5), usd_value=Decimal(0)),
        Asset(symbol="X", name="X", balance=None),
    ]

    net_worth = compute_net_worth(assets, now=NOW)

    assert net_worth.total == Decimal("3050")
    assert net_worth.total_assets == 4
    assert net_worth.assets_with_value == 2
    assert net_worth.assets_without_value == 2
    assert net_worth.updated_at == NOW


def test_negative_balance_is_rejected() -> None:
    with pytest.raises(ValueError):
        Asset(symbol="ETH", name="Ethereum", balance=Decimal(-1))


def test_summary_prefers_reported_net_worth_within_tolerance() -> None:
    assets = [Asset(symbol="ETH", name="Ethereum", balance=Decimal(1), usd_value=Decimal("1000"))]
    net_worth = NetWorth(total=Decimal("1050"), total_assets=1, assets_with_value=1, updated_at=NOW)

    summary = summarize_portfolio(assets, net_worth)

    assert summary.total_value == Decimal("1050")
    assert summary.has_value_data


def test_summary_falls_back_to_asset_total_when_drifted() -> None:
    assets = [Asset(symbol="ETH", name="Ethereum", balance=Decimal(1), usd_value=Decimal("1000"))]
    net_worth = NetWorth(total=Decimal("2000"), total_assets=1, assets_with_value=1, updated_at=NOW)

    summary = summarize_portfolio(assets, net_worth)

    assert summary.total_value == Decimal("1000")
    assert summary.assets_with_value == 1


def test_summary_values_balances_from_prices() -> None:
    assets = [
        Asset(symbol="UNI", name="Uniswap", balance=Decimal(4)),
        Asset(symbol="PEPE", name="Pepe", balance=Decimal(10)),
    ]

    summary = summarize_portfolio(assets, prices={"UNI": _quote("UNI", "2.5")})

    assert summary.total_value == Decimal("10")
    assert summary.assets_with_value == 1
    assert summary.assets_without_value == 1
    assert optimization_suggestions(summary) == list(OPTIMIZATION_SUGGESTIONS)


def test_empty_portfolio_has_no_suggestions() -> None:
    summary = summarize_portfolio([])

    assert not summary.has_value_data
    assert optimization_suggestions(summary) == []
