from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Mapping

from .assets import ETH_NAME, ETH_SYMBOL, Asset, NetWorth, PriceQuote, TokenBalance

NET_WORTH_TOLERANCE = Decimal("0.1")

OPTIMIZATION_SUGGESTIONS: tuple[str, ...] = (
    "Consider consolidating smaller positions to reduce gas fees on future transactions",
    "Explore staking opportunities for your larger holdings to earn passive income",
    "Check lending platforms for competitive interest rates on your stablecoin holdings",
)


@dataclass(frozen=True)
class PortfolioSummary:
    total_value: Decimal
    asset_count: int
    assets_with_value: int
    assets_without_value: int
    has_value_data: bool


def _price_of(prices: Mapping[str, PriceQuote], symbol: str) -> Decimal:
    quote = prices.get(symbol)
    return quote.price if quote is not None else Decimal(0)


def value_assets(
    eth_balance: Decimal | None,
    token_balances: Iterable[TokenBalance],
    prices: Mapping[str, PriceQuote],
) -> tuple[Asset, list[Asset]]:
    """Attach USD values to the ETH balance and token balances.

    Tokens are returned sorted by USD value, highest first. An unknown ETH
    balance yields an ETH asset without a value.
    """
    eth_value = eth_balance * _price_of(prices, ETH_SYMBOL) if eth_balance is not None else None
    eth = Asset(symbol=ETH_SYMBOL, name=ETH_NAME, balance=eth_balance, usd_value=eth_value)

    tokens: list[Asset] = []
    for entry in token_balances:
        balance = entry.balance if entry.balance is not None else Decimal(0)
        tokens.append(
            Asset(
                symbol=entry.token.symbol,
                name=entry.token.name,
                address=entry.token.address,
                balance=balance,
                usd_value=balance * _price_of(prices, entry.token.symbol),
            )
        )

    tokens.sort(key=lambda asset: asset.usd_value or Decimal(0), reverse=True)
    return eth, tokens


def compute_net_worth(assets: Iterable[Asset], now: datetime | None = None) -> NetWorth:
    total = Decimal(0)
    with_value = 0
    without_value = 0
    count = 0
    for asset in assets:
        count += 1
        if asset.has_value and asset.usd_value:
            total += asset.usd_value
            with_value += 1
        else:
            without_value += 1

    return NetWorth(
        total=total,
        total_assets=count,
        assets_with_value=with_value,
        assets_without_value=without_value,
        updated_at=now or datetime.now(timezone.utc),
    )


def _total_from_assets(assets: list[Asset]) -> Decimal:
    return sum((asset.usd_value for asset in assets if asset.has_value and asset.usd_value), start=Decimal(0))


def summarize_portfolio(
    assets: list[Asset],
    net_worth: NetWorth | None = None,
    prices: Mapping[str, PriceQuote] | None = None,
) -> PortfolioSummary:
    """Reconcile the reported net worth with the values carried by ``assets``.

    The reported figure wins while it is positive and within 10% of the asset
    total; otherwise the asset total is used, and as a last resort balances are
    valued directly against ``prices``.
    """
    total_from_assets = _total_from_assets(assets)

    if net_worth is not None and net_worth.total > 0:
        drift = abs(net_worth.total - total_from_assets) / net_worth.total
        if total_from_assets == 0 or drift < NET_WORTH_TOLERANCE:
            return PortfolioSummary(
                total_value=net_worth.total,
                asset_count=net_worth.total_assets or len(assets),
                assets_with_value=net_worth.assets_with_value,
                assets_without_value=net_worth.assets_without_value,
                has_value_data=True,
            )

    if total_from_assets > 0:
        with_value = sum(1 for asset in assets if asset.has_value and asset.usd_value)
        return PortfolioSummary(
            total_value=total_from_assets,
            asset_count=len(assets),
            assets_with_value=with_value,
            assets_without_value=len(assets) - with_value,
            has_value_data=True,
        )

    if not assets:
        return PortfolioSummary(
            total_value=Decimal(0),
            asset_count=0,
            assets_with_value=0,
            assets_without_value=0,
            has_value_data=False,
        )

    total = Decimal(0)
    with_value = 0
    without_value = 0
    for asset in assets:
        if asset.balance is None or asset.balance <= 0:
            continue
        value = asset.usd_value if asset.has_value and asset.usd_value else None
        if value is None and prices is not None:
            value = asset.balance * _price_of(prices, asset.symbol)
        if value is not None and value > 0:
            total += value
            with_value += 1
        else:
            without_value += 1

    return PortfolioSummary(
        total_value=total,
        asset_count=len(assets),
        assets_with_value=with_value,
        assets_without_value=without_value,
        has_value_data=with_value > 0,
    )


def optimization_suggestions(summary: PortfolioSummary) -> list[str]:
    if not summary.has_value_data:
        return []
    return list(OPTIMIZATION_SUGGESTIONS)


__all__ = [
    "OPTIMIZATION_SUGGESTIONS",
    "PortfolioSummary",
    "compute_net_worth",
    "optimization_suggestions",
    "summarize_portfolio",
    "value_assets",
]
