from datetime import datetime, timezone
from decimal import Decimal

import pytest

from domain.assets import Asset, FilterStats, NetWorth, PriceQuote, WalletAddress, WalletAssetsReport
from domain.yields import LendingPool, StakingOpportunity
from main import build_parser, render_assets, render_lending, render_staking, wallet_symbols

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _report() -> WalletAssetsReport:
    return WalletAssetsReport(
        address=WalletAddress("0x00000000219ab540356cBB839Cbe05303d7705Fa"),
        eth=Asset(symbol="ETH", name="Ethereum", balance=Decimal(2), usd_value=Decimal(6000)),
        tokens=[
            Asset(symbol="LINK", name="Chainlink", balance=Decimal(10), usd_value=Decimal(140)),
            Asset(symbol="PEPE", name="Pepe", balance=Decimal(0), usd_value=Decimal(0)),
        ],
        prices={"ETH": PriceQuote(symbol="ETH", name="Ethereum", price=Decimal(3000), last_updated=NOW)},
        filter_stats=FilterStats(url_filtered=3, symbol_filtered=1),
        net_worth=NetWorth(total=Decimal(6140), total_assets=3, assets_with_value=2, assets_without_value=1, updated_at=NOW),
    )


def test_parser_reads_staking_filters() -> None:
    args = build_parser().parse_args(["staking", "0xabc", "--asset", "ETH", "--chain", "ethereum"])

    assert args.command == "staking"
    assert args.address == "0xabc"
    assert args.asset == "ETH"
    assert args.protocol is None
    assert args.chain == "ethereum"


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_render_assets(capsys: pytest.CaptureFixture[str]) -> None:
    render_assets(_report())

    out = capsys.readouterr().out
    assert "Wallet 0x0000...05Fa:" in out
    assert "$6,000.00" in out
    assert "Filtered out 3 tokens with URL patterns and 1 tokens without symbols." in out
    assert "Total net worth: $6,140.00" in out


def test_wallet_symbols_skip_empty_balances() -> None:
    assert wallet_symbols(_report()) == {"ETH", "LINK"}


def test_render_lending_marks_best_apy(capsys: pytest.CaptureFixture[str]) -> None:
    pools = [
        LendingPool(symbol="USDC", protocol="aave-v3", apy=Decimal("5.1"), tvl_usd=Decimal(1_000_000), chain="Ethereum"),
        LendingPool(symbol="USDC", protocol="compound-v3", apy=Decimal("4.2"), chain="Ethereum"),
    ]

    render_lending(pools)

    lines = capsys.readouterr().out.splitlines()
    aave = next(line for line in lines if "aave-v3" in line)
    compound = next(line for line in lines if "compound-v3" in line)
    assert "5.10% *" in aave
    assert "$1,000,000" in aave
    assert "*" not in compound


def test_render_staking_empty(capsys: pytest.CaptureFixture[str]) -> None:
    render_staking([])
    assert capsys.readouterr().out.strip() == "No staking providers found"

    render_staking([StakingOpportunity(protocol="Lido", asset="ETH", apr=Decimal("3.1"), tvl=Decimal(25_000_000))])
    out = capsys.readouterr().out
    assert "3.10% *" in out
    assert "$25.00M" in out
    assert "N/A" in out
