from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import NewType

from pydantic import BaseModel, Field, field_validator

WalletAddress = NewType("WalletAddress", str)
TokenAddress = NewType("TokenAddress", str)

ETH_SYMBOL = "ETH"
ETH_NAME = "Ethereum"
DEFAULT_TOKEN_DECIMALS = 18


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenInfo(BaseModel):
    address: TokenAddress
    symbol: str
    name: str
    decimals: int = DEFAULT_TOKEN_DECIMALS


class TokenBalance(BaseModel):
    """Balance of a single ERC20 token held by a wallet.

    ``balance`` is None when the on-chain lookup failed; ``error`` is set in that case.
    """

    token: TokenInfo
    balance: Decimal | None
    balance_raw: int = 0
    error: bool = False
    fetched_at: datetime = Field(default_factory=_utcnow)

    @property
    def symbol(self) -> str:
        return self.token.symbol


class PriceQuote(BaseModel):
    symbol: str
    name: str
    price: Decimal
    percent_change_24h: Decimal = Decimal(0)
    last_updated: datetime = Field(default_factory=_utcnow)


class Asset(BaseModel):
    symbol: str
    name: str
    address: TokenAddress | None = None
    balance: Decimal | None
    usd_value: Decimal | None = None

    @field_validator("balance")
    @classmethod
    def _validate_balance(cls, value: Decimal | None) -> Decimal | None:
        if value is not None and value < 0:
            raise ValueError("balance must be non-negative")
        return value

    @property
    def has_value(self) -> bool:
        return self.usd_value is not None and self.usd_value.is_finite()


class FilterStats(BaseModel):
    url_filtered: int = 0
    symbol_filtered: int = 0


class NetWorth(BaseModel):
    total: Decimal = Decimal(0)
    total_assets: int = 0
    assets_with_value: int = 0
    assets_without_value: int = 0
    updated_at: datetime | None = None


class WalletAssetsReport(BaseModel):
    address: WalletAddress | None = None
    eth: Asset | None = None
    tokens: list[Asset] = Field(default_factory=list)
    prices: dict[str, PriceQuote] = Field(default_factory=dict)
    filter_stats: FilterStats = Field(default_factory=FilterStats)
    net_worth: NetWorth = Field(default_factory=NetWorth)
    rate_limited: bool = False
    error: str | None = None

    @property
    def all_assets(self) -> list[Asset]:
        if self.eth is None:
            return list(self.tokens)
        return [self.eth, *self.tokens]


__all__ = [
    "Asset",
    "DEFAULT_TOKEN_DECIMALS",
    "ETH_NAME",
    "ETH_SYMBOL",
    "FilterStats",
    "NetWorth",
    "PriceQuote",
    "TokenAddress",
    "TokenBalance",
    "TokenInfo",
    "WalletAddress",
    "WalletAssetsReport",
]
