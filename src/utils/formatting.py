from __future__ import annotations

from decimal import Decimal
from typing import Sequence

MILLION = Decimal(1_000_000)


def format_usd(value: Decimal | None) -> str:
    if value is None:
        return "N/A"
    cents = value.quantize(Decimal("0.01"))
    return f"${cents:,.2f}"


def format_tvl(value: Decimal | None) -> str:
    if value is None:
        return "N/A"
    return f"${value:,.0f}"


def format_tvl_millions(value: Decimal | None) -> str:
    if not value:
        return "N/A"
    return f"${value / MILLION:.2f}M"


def format_percent(value: Decimal | None, *, signed: bool = False) -> str:
    if value is None:
        return "N/A"
    return f"{value:+.2f}%" if signed else f"{value:.2f}%"


def format_balance(value: Decimal | None, *, error: bool = False) -> str:
    if error or value is None:
        return "Error"
    return f"{value:,.4f}"


def short_address(address: str | None) -> str:
    if not address:
        return ""
    if len(address) <= 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


def render_table(headers: Sequence[str], rows: Sequence[Sequence[str]], *, right_align: Sequence[int] = ()) -> str:
    """Plain text table; columns listed in ``right_align`` are right-justified."""
    widths = [len(header) for header in headers]
    for row in rows:
        for index, cell in enumerate(row):
            widths[index] = max(widths[index], len(cell))

    def _line(cells: Sequence[str]) -> str:
        parts = []
        for index, cell in enumerate(cells):
            align = ">" if index in right_align else "<"
            parts.append(f"{cell:{align}{widths[index]}}")
        return " ".join(parts).rstrip()

    header = _line(headers)
    separator = "-" * len(header)
    lines = [header, separator, *(_line(row) for row in rows), separator]
    return "\n".join(lines)


__all__ = [
    "format_balance",
    "format_percent",
    "format_tvl",
    "format_tvl_millions",
    "format_usd",
    "render_table",
    "short_address",
]
