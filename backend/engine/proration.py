"""
Split a lease date range into calendar-month billing periods with day-accurate proration.
"""

from __future__ import annotations

import calendar
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, List, Tuple

from models import BillingPeriod

_TWO_PLACES = Decimal("0.01")


class InvalidRange(ValueError):
    """start_date falls after end_date, or no calendar month follows the range."""


class InvalidRate(ValueError):
    """Monthly rent or charges is negative or not a number."""


def round2(value: Decimal) -> Decimal:
    """Round half-up to currency precision. Raises InvalidRate past decimal context precision."""
    try:
        return Decimal(value).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        raise InvalidRate(f"amount {value} is too large to round to cents") from e


def first_of_next_month(d: date) -> date:
    """Raises InvalidRange for December of date.max.year."""
    if d.year == date.max.year and d.month == 12:
        raise InvalidRange(f"no calendar month after {d.isoformat()}")
    if d.month == 12:
        return date(d.year + 1, 1, 1)
    return date(d.year, d.month + 1, 1)


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def inclusive_day_count(start: date, end: date) -> int:
    return (end - start).days + 1


def _coerce_rate(name: str, value: object) -> Decimal:
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as e:
        raise InvalidRate(f"{name} must be a number, got {value!r}") from e
    if not amount.is_finite():
        raise InvalidRate(f"{name} must be finite, got {value!r}")
    if amount < 0:
        raise InvalidRate(f"{name} must be >= 0, got {amount}")
    return amount


def compute_billing_periods(
    start_date: date,
    end_date: date,
    monthly_rent: Decimal | float | int,
    monthly_charges: Decimal | float | int = Decimal("0"),
) -> List[BillingPeriod]:
    """
    Partition [start_date, end_date] into one BillingPeriod per calendar month touched.

    Rent and charges are each prorated by days_charged / days_in_month and rounded
    to cents independently; total_due is the rounded sum of the two rounded parts.
    Raises InvalidRange when start_date > end_date and InvalidRate on negative amounts.
    """
    if start_date > end_date:
        raise InvalidRange(f"start_date {start_date.isoformat()} is after end_date {end_date.isoformat()}")
    rent = _coerce_rate("monthly_rent", monthly_rent)
    charges = _coerce_rate("monthly_charges", monthly_charges)

    periods: List[BillingPeriod] = []
    cursor = start_date.replace(day=1)
    while cursor <= end_date:
        month_start = cursor
        month_end = cursor.replace(day=days_in_month(cursor.year, cursor.month))

        period_start = max(month_start, start_date)
        period_end = min(month_end, end_date)
        days_charged = inclusive_day_count(period_start, period_end)
        month_days = inclusive_day_count(month_start, month_end)

        rent_due = round2(rent * days_charged / month_days)
        charges_due = round2(charges * days_charged / month_days)
        periods.append(
            BillingPeriod(
                period_start=period_start,
                period_end=period_end,
                days_charged=days_charged,
                days_in_month=month_days,
                rent_due=rent_due,
                charges_due=charges_due,
                total_due=round2(rent_due + charges_due),
            )
        )
        if month_end >= end_date:
            break
        cursor = first_of_next_month(cursor)
    return periods


def next_period(start_date: date, end_date: date) -> Tuple[date, date]:
    """
    Full calendar month following end_date, used to pre-fill the next receipt run.
    """
    if start_date > end_date:
        raise InvalidRange(f"start_date {start_date.isoformat()} is after end_date {end_date.isoformat()}")
    first = first_of_next_month(end_date)
    return first, first.replace(day=days_in_month(first.year, first.month))


def summarize_periods(periods: Iterable[BillingPeriod]) -> dict:
    """Totals across a sequence of periods."""
    rent = Decimal("0.00")
    charges = Decimal("0.00")
    total = Decimal("0.00")
    days = 0
    count = 0
    for p in periods:
        rent += p.rent_due
        charges += p.charges_due
        total += p.total_due
        days += p.days_charged
        count += 1
    return {
        "period_count": count,
        "days_charged": days,
        "rent_due": rent,
        "charges_due": charges,
        "total_due": total,
    }
