from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Sequence, TypeVar

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

MIN_LENDING_APY = Decimal("0.01")
LENDING_CHAIN = "ethereum"
UNKNOWN = "Unknown"

LENDING_PROTOCOLS: frozenset[str] = frozenset(
    {
        "aave-v2",
        "aave-v3",
        "compound-v2",
        "compound-v3",
        "euler",
        "morpho-aave",
        "morpho-compound",
        "spark",
        "venus",
        "cream",
        "iron-bank",
        "maker",
        "clearpool-lending",
        "maple",
        "notional-v3",
        "silo-finance",
        "solend",
        "tenderfi",
        "benqi",
        "geist",
        "granary",
        "radiant",
        "seamless-protocol",
    }
)


class LendingPool(BaseModel):
    symbol: str
    protocol: str
    apy: Decimal
    tvl_usd: Decimal = Decimal(0)
    chain: str
    exposure: str = "N/A"
    il_risk: str = "N/A"


class StakingOpportunity(BaseModel):
    protocol: str
    asset: str
    apr: Decimal
    chains: list[str] = Field(default_factory=list)
    tvl: Decimal | None = None


def _to_decimal(value: Any) -> Decimal | None:
    # bool is an int subclass but never a rate
    if value is None or isinstance(value, bool):
        return None
    if not isinstance(value, (int, float, str, Decimal)):
        return None
    try:
        parsed = Decimal(str(value))
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None


def parse_lending_pools(raw_pools: Iterable[Any]) -> list[LendingPool]:
    pools: list[LendingPool] = []
    for raw in raw_pools:
        if not isinstance(raw, dict):
            continue

        apy = _to_decimal(raw.get("apy"))
        if apy is None:
            apy = _to_decimal(raw.get("apr"))
        if apy is None:
            apy = Decimal(0)
        chain = str(raw.get("chain") or "")
        project = str(raw.get("project") or raw.get("protocol") or "")

        if apy <= MIN_LENDING_APY or chain.lower() != LENDING_CHAIN or project not in LENDING_PROTOCOLS:
            continue

        pools.append(
            LendingPool(
                symbol=str(raw.get("symbol") or UNKNOWN),
                protocol=project,
                apy=apy,
                tvl_usd=_to_decimal(raw.get("tvlUsd")) or Decimal(0),
                chain=chain,
                exposure=str(raw.get("exposure") or "N/A"),
                il_risk=str(raw.get("ilRisk") or "N/A"),
            )
        )

    pools.sort(key=lambda pool: pool.apy, reverse=True)
    return pools


def _nested(item: dict[str, Any], key: str) -> dict[str, Any]:
    value = item.get(key)
    return value if isinstance(value, dict) else {}


def parse_staking_stats(
    protocols: Sequence[dict[str, Any]],
    tokens: Sequence[dict[str, Any]],
    chains: Sequence[dict[str, Any]],
    stats: Sequence[dict[str, Any]],
) -> list[StakingOpportunity]:
    """Join stakingwatch overview stats with the protocol and token catalogs."""
    protocol_map = {entry.get("id"): entry for entry in protocols if isinstance(entry, dict)}
    token_map = {entry.get("slug"): entry for entry in tokens if isinstance(entry, dict)}
    logger.debug(
        "Joining %d staking stats against %d protocols, %d tokens, %d chains",
        len(stats),
        len(protocol_map),
        len(token_map),
        len(chains),
    )

    opportunities: list[StakingOpportunity] = []
    for item in stats:
        if not isinstance(item, dict):
            continue

        staking_token = _nested(item, "staking_token")
        token = token_map.get(staking_token.get("slug")) or {}
        asset = staking_token.get("symbol") or token.get("symbol") or UNKNOWN
        if asset == UNKNOWN:
            continue

        apr = _to_decimal(item.get("apy")) or Decimal(0)
        if apr <= 0:
            continue

        protocol_ref = _nested(item, "protocol")
        protocol = protocol_map.get(protocol_ref.get("id")) or {}
        protocol_name = protocol.get("name") or protocol_ref.get("name") or UNKNOWN

        chain_names = [
            str(chain.get("name") or UNKNOWN) for chain in item.get("chains") or [] if isinstance(chain, dict)
        ]

        opportunities.append(
            StakingOpportunity(
                protocol=str(protocol_name),
                asset=str(asset),
                apr=apr,
                chains=chain_names,
                tvl=_to_decimal(item.get("tvl")),
            )
        )

    opportunities.sort(key=lambda entry: entry.apr, reverse=True)
    return opportunities


def filter_staking(
    opportunities: Iterable[StakingOpportunity],
    *,
    asset: str | None = None,
    protocol: str | None = None,
    chain: str | None = None,
) -> list[StakingOpportunity]:
    result = list(opportunities)
    if asset:
        result = [entry for entry in result if entry.asset.lower() == asset.lower()]
    if protocol:
        result = [entry for entry in result if protocol.lower() in entry.protocol.lower()]
    if chain:
        result = [entry for entry in result if any(chain.lower() in name.lower() for name in entry.chains)]
    logger.info("Found %d staking providers after filtering", len(result))
    return result


T = TypeVar("T")


def filter_to_symbols(items: Iterable[T], symbols: set[str], key: Callable[[T], str]) -> list[T]:
    wanted = {symbol.upper() for symbol in symbols}
    return [item for item in items if key(item).upper() in wanted]


def highest_yield_by_asset(
    items: Iterable[T], key: Callable[[T], str], value: Callable[[T], Decimal]
) -> dict[str, Decimal]:
    best: dict[str, Decimal] = {}
    for item in items:
        asset = key(item)
        current = value(item)
        if asset not in best or current > best[asset]:
            best[asset] = current
    return best


__all__ = [
    "LENDING_PROTOCOLS",
    "LendingPool",
    "StakingOpportunity",
    "filter_staking",
    "filter_to_symbols",
    "highest_yield_by_asset",
    "parse_lending_pools",
    "parse_staking_stats",
]
