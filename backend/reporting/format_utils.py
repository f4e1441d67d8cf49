"""Consistent formatting for receipt amounts and dates. Never render raw floats."""
from __future__ import annotations

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

# French-style digit grouping.
_THOUSANDS_SEP = " "


def format_currency(value: Decimal | float, symbol: str = "€") -> str:
    """1234.5 -> '1 234,50 €'."""
    amount = Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    text = f"{amount:,.2f}".replace(",", _THOUSANDS_SEP).replace(".", ",")
    return f"{text} {symbol}"


def format_date(d: Any) -> str:
    """DD/MM/YYYY; empty string for missing values."""
    if d is None:
        return ""
    if isinstance(d, datetime):
        d = d.date()
    if isinstance(d, date):
        return d.strftime("%d/%m/%Y")
    text = str(d).strip()
    if not text:
        return ""
    for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%Y/%m/%d"):
        try:
            return datetime.strptime(text[:10], fmt).date().strftime("%d/%m/%Y")
        except ValueError:
            continue
    return text


def format_month_token(d: date) -> str:
    """MM_YYYY, used in receipt file names."""
    return d.strftime("%m_%Y")


def format_days(days_charged: int, days_in_month: int) -> str:
    return f"{days_charged} jour(s) sur {days_in_month}"
