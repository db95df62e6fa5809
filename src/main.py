from __future__ import annotations

import argparse
import logging
from typing import Sequence

import uvicorn

from api.price_proxy import PROXY_PORT, create_app
from clients.defillama import DefiLlamaClient
from clients.eth_rpc import EthRpcClient
from clients.etherscan import EtherscanClient
from clients.moralis_index import MoralisTokenIndex
from clients.price_proxy import PriceProxyClient
from clients.stakingwatch import StakingWatchClient
from config import config
from db.session_cache import SqliteSessionCache, init_session_cache_db
from domain.assets import WalletAssetsReport
from domain.valuation import optimization_suggestions, summarize_portfolio
from domain.yields import LendingPool, StakingOpportunity, filter_staking, highest_yield_by_asset
from services.lending_service import LendingService
from services.price_service import STATUS_SUCCESS, PriceService
from services.staking_service import StakingService
from services.wallet_assets import TokenTransferIndex, WalletAssetsService
from utils.formatting import (
    format_balance,
    format_percent,
    format_tvl,
    format_tvl_millions,
    format_usd,
    render_table,
    short_address,
)

BEST_MARK = "*"


def build_session_cache() -> SqliteSessionCache:
    return SqliteSessionCache(init_session_cache_db(config().session_cache_path))


def build_token_index() -> TokenTransferIndex:
    settings = config()
    if settings.token_index == "moralis":
        return MoralisTokenIndex(settings.moralis_api_key)
    return EtherscanClient(api_key=settings.etherscan_api_key)


def build_price_service(cache: SqliteSessionCache) -> PriceService:
    return PriceService(PriceProxyClient(base_url=config().price_proxy_url), cache)


def build_wallet_service(cache: SqliteSessionCache) -> WalletAssetsService:
    return WalletAssetsService(
        rpc=EthRpcClient(rpc_url=config().eth_rpc_url),
        token_index=build_token_index(),
        price_service=build_price_service(cache),
        session_cache=cache,
    )


def load_report(address: str, cache: SqliteSessionCache) -> WalletAssetsReport:
    report = build_wallet_service(cache).load_assets(address)
    if report.error:
        print(report.error)
    return report


def wallet_symbols(report: WalletAssetsReport) -> set[str]:
    return {asset.symbol for asset in report.all_assets if asset.balance}


def render_assets(report: WalletAssetsReport) -> None:
    print(f"Wallet {short_address(report.address)}:")
    assets = report.all_assets
    if not assets:
        print("  (no assets)")
        return

    rows: list[list[str]] = []
    for asset in assets:
        quote = report.prices.get(asset.symbol)
        rows.append(
            [
                asset.symbol,
                asset.name,
                format_balance(asset.balance, error=asset.balance is None),
                format_usd(quote.price) if quote else "N/A",
                format_usd(asset.usd_value) if asset.has_value else "N/A",
            ]
        )
    print(render_table(["Asset", "Name", "Balance", "Price", "Value USD"], rows, right_align=(2, 3, 4)))

    stats = report.filter_stats
    if stats.url_filtered or stats.symbol_filtered:
        print(
            f"Filtered out {stats.url_filtered} tokens with URL patterns "
            f"and {stats.symbol_filtered} tokens without symbols."
        )

    net_worth = report.net_worth
    print(f"Total net worth: {format_usd(net_worth.total)}")
    print(f"  Assets with price data:    {net_worth.assets_with_value}")
    print(f"  Assets without price data: {net_worth.assets_without_value}")
    if net_worth.updated_at is not None:
        print(f"  Updated: {net_worth.updated_at:%Y-%m-%d %H:%M:%S %Z}")


def run_assets(address: str) -> None:
    report = load_report(address, build_session_cache())
    render_assets(report)


def run_symbols(address: str) -> None:
    cache = build_session_cache()
    service = build_wallet_service(cache)
    report = service.load_assets(address)
    result = service.price_service.get_symbol_prices(sorted(wallet_symbols(report)))
    if not result.statuses:
        print("No tokens found in wallet")
        return
    if result.error:
        print(result.error)

    rows: list[list[str]] = []
    for symbol, status in result.statuses.items():
        quote = result.prices.get(symbol)
        if status == STATUS_SUCCESS and quote is not None:
            rows.append([symbol, format_usd(quote.price), format_percent(quote.percent_change_24h, signed=True)])
        else:
            rows.append([symbol, "Error", "N/A"])
    print(render_table(["Symbol", "Price", "24h"], rows, right_align=(1, 2)))
    suffix = " (cached)" if result.from_cache else ""
    print(f"Fetched {result.success_count} of {len(result.statuses)} prices{suffix}")


def render_lending(pools: list[LendingPool]) -> None:
    if not pools:
        print("No lending opportunities found")
        return

    best = highest_yield_by_asset(pools, key=lambda pool: pool.symbol, value=lambda pool: pool.apy)
    rows = [
        [
            pool.symbol,
            pool.protocol,
            format_percent(pool.apy) + (f" {BEST_MARK}" if pool.apy == best[pool.symbol] else ""),
            format_tvl(pool.tvl_usd),
            pool.chain,
        ]
        for pool in pools
    ]
    print(render_table(["Asset", "Protocol", "APY", "TVL", "Chain"], rows, right_align=(2, 3)))
    print(f"{BEST_MARK} highest APY for the asset")


def run_lending(only_mine: str | None) -> None:
    cache = build_session_cache()
    result = LendingService(DefiLlamaClient(), cache).fetch_pools()
    if result.error:
        print(result.error)

    symbols: set[str] | None = None
    if only_mine:
        symbols = wallet_symbols(load_report(only_mine, cache))
    pools = LendingService.opportunities(result.pools, symbols, only_user_assets=bool(only_mine))
    render_lending(pools)


def render_staking(opportunities: list[StakingOpportunity]) -> None:
    if not opportunities:
        print("No staking providers found")
        return

    best = highest_yield_by_asset(opportunities, key=lambda entry: entry.asset, value=lambda entry: entry.apr)
    rows = [
        [
            entry.protocol,
            entry.asset,
            format_percent(entry.apr) + (f" {BEST_MARK}" if entry.apr == best[entry.asset] else ""),
            ", ".join(entry.chains) or "N/A",
            format_tvl_millions(entry.tvl),
        ]
        for entry in opportunities
    ]
    print(render_table(["Protocol", "Asset", "APR", "Chains", "TVL"], rows, right_align=(2, 4)))
    print(f"{BEST_MARK} highest APR for the asset")


def run_staking(address: str | None, *, asset: str | None, protocol: str | None, chain: str | None) -> None:
    cache = build_session_cache()
    result = StakingService(StakingWatchClient(), cache).fetch_opportunities()
    if result.error:
        print(result.error)
        return

    opportunities = filter_staking(result.opportunities, asset=asset, protocol=protocol, chain=chain)
    if address:
        opportunities = StakingService.for_assets(opportunities, wallet_symbols(load_report(address, cache)))
    render_staking(opportunities)


def run_optimize(address: str) -> None:
    report = load_report(address, build_session_cache())
    summary = summarize_portfolio(report.all_assets, report.net_worth, report.prices)

    print("Portfolio summary:")
    print(f"  Total value:               {format_usd(summary.total_value)}")
    print(f"  Assets:                    {summary.asset_count}")
    print(f"  Assets with price data:    {summary.assets_with_value}")
    print(f"  Assets without price data: {summary.assets_without_value}")
    if not summary.has_value_data:
        print("No value data available for this wallet yet.")
        return

    print("Suggestions:")
    for suggestion in optimization_suggestions(summary):
        print(f"  - {suggestion}")


def serve_price_proxy(host: str, port: int) -> None:
    uvicorn.run(create_app(), host=host, port=port)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Wallet assets, prices and yield opportunities.")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    assets = commands.add_parser("assets", help="show wallet balances valued in USD")
    assets.add_argument("address")

    symbols = commands.add_parser("symbols", help="show prices for the wallet's token symbols")
    symbols.add_argument("address")

    lending = commands.add_parser("lending", help="show lending opportunities")
    lending.add_argument("--only-mine", metavar="ADDRESS", help="only assets held by this wallet")

    staking = commands.add_parser("staking", help="show staking opportunities")
    staking.add_argument("address", nargs="?")
    staking.add_argument("--asset")
    staking.add_argument("--protocol")
    staking.add_argument("--chain")

    optimize = commands.add_parser("optimize", help="summarize the portfolio")
    optimize.add_argument("address")

    proxy = commands.add_parser("serve-price-proxy", help="run the caching price proxy")
    proxy.add_argument("--host", default="127.0.0.1")
    proxy.add_argument("--port", type=int, default=PROXY_PORT)
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if args.command == "assets":
        run_assets(args.address)
    elif args.command == "symbols":
        run_symbols(args.address)
    elif args.command == "lending":
        run_lending(args.only_mine)
    elif args.command == "staking":
        run_staking(args.address, asset=args.asset, protocol=args.protocol, chain=args.chain)
    elif args.command == "optimize":
        run_optimize(args.address)
    elif args.command == "serve-price-proxy":
        serve_price_proxy(args.host, args.port)


if __name__ == "__main__":
    main()
