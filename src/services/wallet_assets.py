from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Protocol

from pydantic import ValidationError

from clients.base import ApiError, is_rate_limit_error
from clients.eth_rpc import WEI_DECIMALS, EthRpcClient, format_units
from domain.assets import (
    ETH_SYMBOL,
    TokenBalance,
    TokenInfo,
    WalletAddress,
    WalletAssetsReport,
)
from domain.token_filters import contains_url_pattern, extract_unique_tokens, is_displayable, sort_by_priority
from domain.valuation import compute_net_worth, value_assets
from utils.misc import chunked

from .cache import Clock, InMemoryTtlCache, TtlCache, utc_now
from .price_service import PriceService
from .rate_limit import RateLimitState

logger = logging.getLogger(__name__)

ETH_BALANCE_TTL = timedelta(minutes=2)
TOKEN_BALANCE_TTL = timedelta(minutes=5)
TOKEN_BATCH_SIZE = 5
TOKEN_BATCH_DELAY_SECONDS = 0.2

ProgressCallback = Callable[[int, str], None]


class TokenTransferIndex(Protocol):
    def get_token_transfers(self, address: str) -> list[dict[str, Any]]: ...


class WalletAssetsError(Exception):
    def __init__(self, message: str, *, rate_limited: bool = False) -> None:
        super().__init__(message)
        self.rate_limited = rate_limited


def _eth_balance_key(address: str) -> str:
    return f"eth-balance-{address}"


def _token_balances_key(address: str) -> str:
    return f"token-balances-{address}"


class WalletAssetsService:
    """Aggregates on-chain balances, the token index and prices into a valued asset report.

    Two cache layers sit in front of the network: ``session_cache`` (ETH balance,
    the whole token balance batch, prices) and ``balance_cache`` for single token
    balances. Once any upstream reports throttling, ``rate_limit`` stays tripped and
    ``load_assets`` stops fetching until it is cleared.
    """

    def __init__(
        self,
        *,
        rpc: EthRpcClient,
        token_index: TokenTransferIndex,
        price_service: PriceService,
        session_cache: TtlCache,
        balance_cache: TtlCache | None = None,
        rate_limit: RateLimitState | None = None,
        progress: ProgressCallback | None = None,
        clock: Clock = utc_now,
        sleep: Callable[[float], None] = time.sleep,
        batch_delay: float = TOKEN_BATCH_DELAY_SECONDS,
    ) -> None:
        self.rpc = rpc
        self.token_index = token_index
        self.price_service = price_service
        self.session_cache = session_cache
        self.balance_cache = balance_cache if balance_cache is not None else InMemoryTtlCache(clock=clock)
        self.rate_limit = rate_limit if rate_limit is not None else price_service.rate_limit
        self.progress = progress
        self.last_report: WalletAssetsReport | None = None
        self._clock = clock
        self._sleep = sleep
        self.batch_delay = batch_delay

    def fetch_eth_balance(self, address: str) -> Decimal | None:
        key = _eth_balance_key(address)
        cached = self.session_cache.get(key, ETH_BALANCE_TTL)
        if cached is not None:
            logger.info("Using cached ETH balance")
            return Decimal(str(cached))

        try:
            wei = self.rpc.get_balance(address)
        except ApiError as exc:
            logger.error("Failed to fetch ETH balance: %s", exc)
            return None

        balance = format_units(wei, WEI_DECIMALS)
        self.session_cache.set(key, str(balance))
        return balance

    def fetch_token_transfers(self, address: str) -> list[dict[str, Any]]:
        self._report(None, "Fetching token data from the transaction index...")
        try:
            return self.token_index.get_token_transfers(address)
        except ApiError as exc:
            logger.error("Error fetching token transactions: %s", exc)
            if exc.is_rate_limited:
                self.rate_limit.trip(f"token index: {exc}")
                return []
            raise WalletAssetsError(f"Failed to fetch token data: {exc}") from exc

    def fetch_token_balance(self, address: str, token: TokenInfo) -> TokenBalance | None:
        key = f"{address}-{token.address.lower()}"
        cached = self.balance_cache.get(key, TOKEN_BALANCE_TTL)
        if isinstance(cached, TokenBalance):
            return cached

        if contains_url_pattern(token.symbol) or contains_url_pattern(token.name):
            logger.warning("Skipping token with URL pattern: %s", token.symbol)
            return None
        if not token.symbol.strip():
            logger.warning("Skipping token without symbol")
            return None

        try:
            raw = self.rpc.erc20_balance_of(token.address, address)
        except (ApiError, ValueError) as exc:
            logger.error("Error fetching balance for %s: %s", token.symbol, exc)
            return TokenBalance(token=token, balance=None, balance_raw=0, error=True, fetched_at=self._clock())

        balance = TokenBalance(
            token=token,
            balance=format_units(raw, token.decimals),
            balance_raw=raw,
            fetched_at=self._clock(),
        )
        self.balance_cache.set(key, balance)
        return balance

    def fetch_token_balances(self, address: str, tokens: dict[str, TokenInfo]) -> list[TokenBalance]:
        total = len(tokens)
        if total == 0:
            logger.info("No tokens with valid symbols found")
            return []
        self._report(None, f"Fetching balances for {total} tokens...")

        cache_key = _token_balances_key(address)
        cached = self._restore_balances(self.session_cache.get(cache_key, TOKEN_BALANCE_TTL))
        still_held = [entry for entry in cached if entry.token.address.lower() in tokens]
        if still_held:
            logger.info("Using cached token balances")
            return still_held

        ordered = sort_by_priority(tokens)
        batches = list(chunked(ordered, TOKEN_BATCH_SIZE))
        balances: list[TokenBalance] = []
        for index, batch in enumerate(batches):
            if index % 2 == 0:
                self._report(None, f"Fetching token batch {index + 1}/{len(batches)}...")

            with ThreadPoolExecutor(max_workers=len(batch)) as pool:
                results = list(pool.map(lambda key: self.fetch_token_balance(address, tokens[key]), batch))
            balances.extend(result for result in results if result is not None)

            if index + 1 < len(batches):
                self._sleep(self.batch_delay)

        self.session_cache.set(cache_key, [entry.model_dump(mode="json") for entry in balances])
        return balances

    def load_assets(self, address: str | None) -> WalletAssetsReport:
        if not address:
            return WalletAssetsReport()

        if self.rate_limit.limited:
            logger.info("Skipping asset fetch due to rate limiting")
            return self._rate_limited_report(address)

        wallet = WalletAddress(address)
        self._report(0, "Initializing...")
        try:
            self._report(10, "Fetching ETH balance and token data...")
            with ThreadPoolExecutor(max_workers=2) as pool:
                eth_future = pool.submit(self.fetch_eth_balance, address)
                txs_future = pool.submit(self.fetch_token_transfers, address)
                eth_balance = eth_future.result()
                token_txs = txs_future.result()
            self._report(30, "Processing token transactions...")

            tokens, filter_stats = extract_unique_tokens(token_txs)
            self._report(40, "Fetching token balances...")

            balances = self.fetch_token_balances(address, tokens)
            self._report(80, "Filtering token balances...")

            held = [entry for entry in balances if is_displayable(entry)]
            logger.info("Found %d tokens with non-zero balances and valid symbols", len(held))

            self._report(85, "Fetching price data...")
            prices = self.price_service.get_prices([ETH_SYMBOL, *(entry.symbol for entry in held)])
            self._report(90, "Calculating asset values...")

            eth, token_assets = value_assets(eth_balance, held, prices)
            net_worth = compute_net_worth([eth, *token_assets], now=self._clock())
            logger.info("Total Net Worth: $%.2f", net_worth.total)
            self._report(95, "Finalizing...")

            report = WalletAssetsReport(
                address=wallet,
                eth=eth,
                tokens=token_assets,
                prices=prices,
                filter_stats=filter_stats,
                net_worth=net_worth,
                rate_limited=self.rate_limit.limited,
            )
        except WalletAssetsError as exc:
            logger.error("Error fetching assets: %s", exc)
            if exc.rate_limited or is_rate_limit_error(exc):
                self.rate_limit.trip(str(exc))
                return self._rate_limited_report(address)
            return WalletAssetsReport(address=wallet, error=f"Failed to fetch wallet assets: {exc}")
        except Exception as exc:
            logger.exception("Unexpected error fetching assets for %s", address)
            if is_rate_limit_error(exc):
                self.rate_limit.trip(str(exc))
                return self._rate_limited_report(address)
            return WalletAssetsReport(address=wallet, error=f"Failed to fetch wallet assets: {exc}")

        self.last_report = report
        self._report(100, "")
        return report

    def _rate_limited_report(self, address: str) -> WalletAssetsReport:
        if self.last_report is not None and self.last_report.address == address:
            return self.last_report.model_copy(
                update={"rate_limited": True, "error": "Rate limit reached. Displaying cached data."}
            )
        return WalletAssetsReport(
            address=WalletAddress(address),
            prices=self.price_service.cached_prices(),
            rate_limited=True,
            error="Rate limit reached. Please try again later.",
        )

    @staticmethod
    def _restore_balances(raw: Any) -> list[TokenBalance]:
        if not isinstance(raw, list):
            return []
        try:
            return [TokenBalance.model_validate(entry) for entry in raw]
        except ValidationError as exc:
            logger.warning("Error parsing cached token balances: %s", exc)
            return []

    def _report(self, percent: int | None, status: str) -> None:
        if percent is not None:
            logger.debug("Progress %d%%: %s", percent, status)
        elif status:
            logger.info(status)
        if self.progress is not None and percent is not None:
            self.progress(percent, status)


__all__ = ["TokenTransferIndex", "WalletAssetsError", "WalletAssetsService"]
