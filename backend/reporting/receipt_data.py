"""
Build the formatted field set for one receipt (one tenant, one billing period).
"""
from __future__ import annotations

from datetime import date
from typing import Any

from models import BillingPeriod, ChargeType, Party, ReceiptRequest

from .format_utils import format_currency, format_date, format_days

CHARGES_LABELS = {
    ChargeType.FORFAIT: "Charges (forfait) :",
    ChargeType.PROVISION: "Charges (provision) :",
}


def build_receipt_data(
    request: ReceiptRequest,
    tenant: Party,
    period: BillingPeriod,
    issued_on: date | None = None,
) -> dict[str, Any]:
    """
    Formatted strings for the receipt template. Values are not HTML-escaped here.
    days_line is only set for partial months.
    """
    issued = issued_on or request.issued_on or date.today()
    return {
        "landlord_name": request.landlord.name,
        "landlord_address": request.landlord.address,
        "tenant_name": tenant.name,
        "tenant_address": tenant.address,
        "period_start": format_date(period.period_start),
        "period_end": format_date(period.period_end),
        "days_line": format_days(period.days_charged, period.days_in_month) if period.is_partial else "",
        "rent_due": format_currency(period.rent_due),
        "charges_label": CHARGES_LABELS[request.charge_type],
        "charges_due": format_currency(period.charges_due),
        "total_due": format_currency(period.total_due),
        "payment_date": format_date(request.payment_date),
        "notes": request.notes,
        "signature_image": request.signature_image or "",
        "issued_on": format_date(issued),
    }
