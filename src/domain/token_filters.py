from __future__ import annotations

import logging
import re
from typing import Any, Iterable

from .assets import DEFAULT_TOKEN_DECIMALS, FilterStats, TokenAddress, TokenBalance, TokenInfo

logger = logging.getLogger(__name__)

# Spam airdrops advertise sites through their symbol or name.
URL_PATTERN = re.compile(
    r"http|https|www\.|\.com|\.net|\.org|\.io|\.xyz|\.eth|\.app|\.finance|\.exchange|\.crypto|://|\.me|\.co"
    r"|\.site|\.info|url=|link=|website|telegram|twitter|discord|t\.me/|github",
    re.IGNORECASE,
)

PRIORITY_SYMBOLS: tuple[str, ...] = ("USDC", "USDT", "DAI", "WETH", "WBTC", "LINK")

_LOGGED_URL_TOKENS = 5


def contains_url_pattern(value: object) -> bool:
    if not value or not isinstance(value, str):
        return False
    return URL_PATTERN.search(value) is not None


def _parse_decimals(raw: object) -> int:
    try:
        decimals = int(str(raw))
    except (TypeError, ValueError):
        return DEFAULT_TOKEN_DECIMALS
    return decimals or DEFAULT_TOKEN_DECIMALS


def extract_unique_tokens(token_txs: Iterable[dict[str, Any]]) -> tuple[dict[str, TokenInfo], FilterStats]:
    """Reduce token transfer records to one ``TokenInfo`` per contract address.

    The first record seen for an address decides whether the token is kept; later
    records for the same contract are ignored even when the first was filtered out.
    """
    unique: dict[str, TokenInfo] = {}
    processed: set[str] = set()
    stats = FilterStats()

    for tx in token_txs:
        if not tx or not tx.get("contractAddress"):
            continue

        contract = str(tx["contractAddress"])
        key = contract.lower()
        if key in processed:
            continue
        processed.add(key)

        symbol = str(tx.get("tokenSymbol") or "").strip()
        name = str(tx.get("tokenName") or "").strip()

        if contains_url_pattern(symbol) or contains_url_pattern(name):
            stats.url_filtered += 1
            if stats.url_filtered < _LOGGED_URL_TOKENS:
                logger.warning("Filtered out token with URL pattern: %s", symbol or "unknown")
            continue

        if not symbol:
            stats.symbol_filtered += 1
            continue

        unique[key] = TokenInfo(
            address=TokenAddress(contract),
            symbol=symbol,
            name=name or symbol,
            decimals=_parse_decimals(tx.get("tokenDecimal")),
        )

    logger.info("Found %d unique tokens with valid symbols", len(unique))
    return unique, stats


def sort_by_priority(tokens: dict[str, TokenInfo]) -> list[str]:
    def _rank(address: str) -> int:
        symbol = tokens[address].symbol
        if symbol in PRIORITY_SYMBOLS:
            return PRIORITY_SYMBOLS.index(symbol)
        return len(PRIORITY_SYMBOLS)

    # sorted() is stable, so non-priority tokens keep their discovery order.
    return sorted(tokens, key=_rank)


def is_displayable(balance: TokenBalance | None) -> bool:
    if balance is None or balance.error or balance.balance is None:
        return False
    if balance.balance <= 0:
        return False
    symbol = balance.token.symbol
    if not symbol or not symbol.strip():
        return False
    return not (contains_url_pattern(symbol) or contains_url_pattern(balance.token.name))


__all__ = [
    "PRIORITY_SYMBOLS",
    "URL_PATTERN",
    "contains_url_pattern",
    "extract_unique_tokens",
    "is_displayable",
    "sort_by_priority",
]
