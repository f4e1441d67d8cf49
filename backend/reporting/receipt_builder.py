"""
Build rent receipt HTML from a receipt request + billing periods.
Uses format_utils for all numbers. Renders to PDF via Playwright when available.
"""
from __future__ import annotations

import html
import io
import os
import re
import zipfile
from datetime import date
from pathlib import Path
from typing import Iterable, List, Tuple

from cache.disk_cache import get_cached_receipt, set_cached_receipt
from models import BillingPeriod, Party, ReceiptRequest

from .format_utils import format_month_token
from .receipt_data import build_receipt_data

# Template path relative to this file
_TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
_RECEIPT_HTML = (_TEMPLATE_DIR / "receipt.html").read_text(encoding="utf-8")

PRIMARY_COLOR = "#135bec"
PAGE_MARGIN_MM = max(0, int(os.getenv("RECEIPT_PAGE_MARGIN_MM", "10")))


def _escape(s: str) -> str:
    return html.escape(str(s), quote=True)


def _multiline(s: str) -> str:
    return _escape(s).replace("\n", "<br>")


def _info_row(label: str, value_html: str) -> str:
    return (
        f'<div class="info-row"><span class="info-label">{_escape(label)}</span>'
        f'<span class="info-value">{value_html}</span></div>'
    )


def build_receipt_fragment(
    request: ReceiptRequest,
    tenant: Party,
    period: BillingPeriod,
    issued_on: date | None = None,
) -> str:
    """One <section class="receipt"> for a tenant and billing period."""
    d = build_receipt_data(request, tenant, period, issued_on=issued_on)

    days_row = _info_row("Jours facturés :", _escape(d["days_line"])) if d["days_line"] else ""

    if d["signature_image"]:
        landlord_sig = f'<img src="{_escape(d["signature_image"])}" class="signature-image" alt="Signature" />'
    else:
        landlord_sig = '<div class="signature-blank"></div>'

    notes_html = ""
    if d["notes"]:
        notes_html = f'<div class="notes"><strong>Notes :</strong><br>{_multiline(d["notes"])}</div>'

    return f"""<section class="receipt">
  <div class="header">
    <h1>QUITTANCE DE LOYER</h1>
    <p>Document officiel</p>
  </div>
  <div class="section">
    <div class="section-title">Bailleur</div>
    {_info_row("Nom :", _escape(d["landlord_name"]))}
    {_info_row("Adresse :", _multiline(d["landlord_address"]))}
  </div>
  <div class="section">
    <div class="section-title">Locataire</div>
    {_info_row("Nom :", _escape(d["tenant_name"]))}
    {_info_row("Adresse du bien :", _multiline(d["tenant_address"]))}
  </div>
  <div class="section">
    <div class="section-title">Période de Location</div>
    {_info_row("Du :", _escape(d["period_start"]))}
    {_info_row("Au :", _escape(d["period_end"]))}
    {days_row}
  </div>
  <div class="amount-section">
    <div class="amount-row"><span>Loyer HC :</span><span>{_escape(d["rent_due"])}</span></div>
    <div class="amount-row"><span>{_escape(d["charges_label"])}</span><span>{_escape(d["charges_due"])}</span></div>
    <div class="amount-row total"><span>Total dû :</span><span>{_escape(d["total_due"])}</span></div>
  </div>
  <div class="section">
    <div class="section-title">Paiement</div>
    {_info_row("Date de paiement :", _escape(d["payment_date"]))}
  </div>
  <div class="signature-area">
    <div class="signature-box">{landlord_sig}<div>Signature du bailleur</div></div>
    <div class="signature-box"><div class="signature-blank"></div><div>Acceptation du locataire</div></div>
  </div>
  {notes_html}
  <div class="footer">Généré le {_escape(d["issued_on"])}</div>
</section>"""


def _wrap_document(title: str, fragments: Iterable[str]) -> str:
    return (
        _RECEIPT_HTML.replace("__PRIMARY_COLOR__", PRIMARY_COLOR)
        .replace("__DOCUMENT_TITLE__", _escape(title))
        .replace("__RECEIPTS_HTML__", "\n".join(fragments))
    )


def build_receipt_html(
    request: ReceiptRequest,
    tenant: Party,
    period: BillingPeriod,
    issued_on: date | None = None,
) -> str:
    """Full HTML document for a single receipt."""
    title = f"Quittance {tenant.name} {format_month_token(period.period_start).replace('_', '/')}"
    return _wrap_document(title, [build_receipt_fragment(request, tenant, period, issued_on=issued_on)])


def iter_receipts(
    request: ReceiptRequest, periods: List[BillingPeriod]
) -> Iterable[Tuple[Party, BillingPeriod]]:
    """Tenant-major order: every period for tenant 1, then tenant 2, ..."""
    for tenant in request.named_tenants:
        for period in periods:
            yield tenant, period


def build_preview_html(request: ReceiptRequest, periods: List[BillingPeriod]) -> str:
    """All receipts in one document, one per printed page."""
    issued = request.issued_on or date.today()
    fragments = [
        build_receipt_fragment(request, tenant, period, issued_on=issued)
        for tenant, period in iter_receipts(request, periods)
    ]
    return _wrap_document("Quittances de loyer", fragments)


def receipt_filename(tenant: Party, period: BillingPeriod) -> str:
    safe_name = re.sub(r"[^a-zA-Z0-9]", "_", tenant.name)
    return f"Quittance_{safe_name}_{format_month_token(period.period_start)}.pdf"


def _pdf_margin(page_margin_mm: int) -> dict[str, str]:
    margin_in = f"{page_margin_mm / 25.4:.2f}in"
    return {"top": margin_in, "bottom": margin_in, "left": margin_in, "right": margin_in}


def html_to_pdf(html_content: str, page_margin_mm: int = PAGE_MARGIN_MM) -> bytes:
    """Render HTML to an A4 portrait PDF using Playwright."""
    return html_batch_to_pdf([html_content], page_margin_mm=page_margin_mm)[0]


def html_batch_to_pdf(html_documents: List[str], page_margin_mm: int = PAGE_MARGIN_MM) -> List[bytes]:
    """Render several HTML documents with a single Chromium launch."""
    from playwright.sync_api import sync_playwright

    margin = _pdf_margin(page_margin_mm)
    out: List[bytes] = []
    with sync_playwright() as p:
        browser = p.chromium.launch()
        page = browser.new_page()
        for doc in html_documents:
            page.set_content(doc, wait_until="networkidle")
            page.emulate_media(media="print")
            out.append(
                page.pdf(
                    format="A4",
                    print_background=True,
                    margin=margin,
                )
            )
        browser.close()
    return out


def _cache_payload(request: ReceiptRequest, tenant: Party, period: BillingPeriod, issued_on: date) -> dict:
    return {
        "request": request.model_dump(mode="json", exclude={"tenants", "issued_on"}),
        "tenant": tenant.model_dump(mode="json"),
        "period": period.model_dump(mode="json"),
        "issued_on": issued_on.isoformat(),
        "page_margin_mm": PAGE_MARGIN_MM,
    }


def build_receipt_pdfs(request: ReceiptRequest, periods: List[BillingPeriod]) -> List[Tuple[str, bytes]]:
    """
    (filename, PDF bytes) for every tenant/period pair. Cached receipts are not re-rendered;
    the rest are rendered in one Playwright session.
    """
    issued = request.issued_on or date.today()
    results: List[Tuple[str, bytes | None]] = []
    pending: List[Tuple[int, dict, str]] = []
    for tenant, period in iter_receipts(request, periods):
        payload = _cache_payload(request, tenant, period, issued)
        cached = get_cached_receipt(payload)
        results.append((receipt_filename(tenant, period), cached))
        if cached is None:
            html_str = build_receipt_html(request, tenant, period, issued_on=issued)
            pending.append((len(results) - 1, payload, html_str))

    if pending:
        rendered = html_batch_to_pdf([h for _, _, h in pending])
        for (idx, payload, _), pdf_bytes in zip(pending, rendered):
            set_cached_receipt(payload, pdf_bytes)
            results[idx] = (results[idx][0], pdf_bytes)

    return [(name, pdf) for name, pdf in results if pdf is not None]


def bundle_zip(files: List[Tuple[str, bytes]]) -> bytes:
    """Zip archive of the given files. Duplicate names get a numeric suffix."""
    buf = io.BytesIO()
    seen: dict[str, int] = {}
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in files:
            count = seen.get(name, 0)
            seen[name] = count + 1
            if count:
                stem, ext = os.path.splitext(name)
                name = f"{stem}_{count + 1}{ext}"
            zf.writestr(name, data)
    return buf.getvalue()


def build_receipt_bundle(request: ReceiptRequest, periods: List[BillingPeriod]) -> Tuple[bytes, int]:
    """Zip of all receipt PDFs and the number of receipts in it."""
    files = build_receipt_pdfs(request, periods)
    return bundle_zip(files), len(files)
