from __future__ import annotations

import logging
import os
import time
import uuid
from pathlib import Path

from dotenv import load_dotenv

# Load .env from backend directory so DATABASE_URL etc. are available
load_dotenv(Path(__file__).resolve().parent / ".env")

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response
from sqlalchemy.orm import Session
from starlette.middleware.base import BaseHTTPMiddleware

from db.session import get_db, init_db
from engine.proration import InvalidRange, InvalidRate, compute_billing_periods, summarize_periods
from form_store import clear_form_state, form_state_from_request, load_form_state, save_form_state
from models import (
    BillingPeriod,
    BillingPeriodsResponse,
    FormState,
    LeaseTerm,
    PeriodTotals,
    ReceiptRequest,
)
from reporting.receipt_builder import build_preview_html, build_receipt_bundle, iter_receipts

# Version for /health and startup log (Render sets RENDER_GIT_COMMIT)
VERSION = (os.environ.get("RENDER_GIT_COMMIT") or "").strip() or "unknown"

# Same logger as uvicorn so request and generation lines land together
_LOG = logging.getLogger("uvicorn.error")

app = FastAPI(title="Rent Receipt Backend", version="0.1.0")

# CORS: use ALLOWED_ORIGINS env (comma-separated) if set, else default
_origins_env = os.environ.get("ALLOWED_ORIGINS", "").strip()
if _origins_env:
    ALLOWED_ORIGINS = [o.strip() for o in _origins_env.split(",") if o.strip()]
else:
    ALLOWED_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id", "X-Receipt-Count"],
)


class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = (request.headers.get("x-request-id") or "").strip() or str(uuid.uuid4())[:8]
        request.state.request_id = request_id
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        _LOG.info(
            "request_id=%s method=%s path=%s status=%s duration_ms=%.0f",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )
        response.headers["X-Request-Id"] = request_id
        return response


app.add_middleware(RequestLogMiddleware)


@app.on_event("startup")
def startup_log() -> None:
    init_db()
    port = os.environ.get("PORT", "8010")
    host = os.environ.get("HOST", "127.0.0.1")
    _LOG.info("Backend starting on http://%s:%s version=%s", host, port, VERSION)


def _rid(request: Request) -> str:
    return getattr(request.state, "request_id", None) or "no-rid"


def _invalid_lease_response(rid: str, err: ValueError) -> JSONResponse:
    code = "invalid_range" if isinstance(err, InvalidRange) else "invalid_rate"
    _LOG.info("LEASE_INVALID rid=%s error=%s details=%s", rid, code, err)
    return JSONResponse(
        status_code=422,
        content={"error": code, "rid": rid, "details": str(err)},
    )


def _periods_for(lease: LeaseTerm) -> list[BillingPeriod]:
    return compute_billing_periods(
        lease.start_date,
        lease.end_date,
        lease.monthly_rent,
        lease.monthly_charges,
    )


@app.get("/health")
def health():
    return {"status": "ok", "version": VERSION}


@app.get("/health/pdf")
def health_pdf():
    """
    Runtime check for Playwright PDF dependencies.
    Returns 200 only when Chromium can launch successfully.
    """
    try:
        from playwright.sync_api import sync_playwright
    except ImportError:
        raise HTTPException(status_code=503, detail="Playwright is not installed.")

    try:
        with sync_playwright() as p:
            browser = p.chromium.launch(args=["--no-sandbox"])
            page = browser.new_page()
            page.set_content("<html><body>ok</body></html>")
            browser.close()
    except Exception as e:
        raise HTTPException(
            status_code=503,
            detail=f"Playwright runtime unavailable: {str(e)[:500]}",
        ) from e

    return {"status": "ok", "pdf_runtime": "ready"}


@app.post("/billing-periods", response_model=BillingPeriodsResponse)
def billing_periods(lease: LeaseTerm, request: Request):
    """
    Split the lease into calendar-month billing periods with prorated rent and charges.
    """
    try:
        periods = _periods_for(lease)
    except (InvalidRange, InvalidRate) as e:
        return _invalid_lease_response(_rid(request), e)
    return BillingPeriodsResponse(
        lease=lease,
        periods=periods,
        totals=PeriodTotals(**summarize_periods(periods)),
    )


@app.post("/receipts/preview", response_class=HTMLResponse)
def receipts_preview(req: ReceiptRequest, request: Request):
    """
    Return every receipt as one HTML document (no Playwright required).
    Same request body as POST /receipts.
    """
    try:
        periods = _periods_for(req.lease)
    except (InvalidRange, InvalidRate) as e:
        return _invalid_lease_response(_rid(request), e)
    count = sum(1 for _ in iter_receipts(req, periods))
    html_str = build_preview_html(req, periods)
    return HTMLResponse(html_str, headers={"X-Receipt-Count": str(count)})


@app.post("/receipts")
def generate_receipts(req: ReceiptRequest, request: Request, db: Session = Depends(get_db)) -> Response:
    """
    Build one PDF per tenant per billing period and return them as a zip archive.
    Persists the form state on success so the next session can restore it.
    """
    rid = _rid(request)
    try:
        periods = _periods_for(req.lease)
    except (InvalidRange, InvalidRate) as e:
        return _invalid_lease_response(rid, e)

    _LOG.info(
        "RECEIPTS_START rid=%s tenants=%s periods=%s",
        rid, len(req.named_tenants), len(periods),
    )
    try:
        zip_bytes, count = build_receipt_bundle(req, periods)
    except ImportError:
        _LOG.info("RECEIPTS_ERR rid=%s err=playwright_missing", rid)
        raise HTTPException(
            status_code=503,
            detail="Playwright is required for PDF. Install: pip install playwright && playwright install chromium. Use POST /receipts/preview for HTML without Playwright.",
        )
    except Exception as e:
        _LOG.info("RECEIPTS_ERR rid=%s err=%s", rid, str(e)[:400])
        raise HTTPException(
            status_code=503,
            detail="PDF generation runtime unavailable. Use POST /receipts/preview to get HTML instead.",
        ) from e

    save_form_state(db, form_state_from_request(req, load_form_state(db)))
    _LOG.info("RECEIPTS_DONE rid=%s count=%s bytes=%s", rid, count, len(zip_bytes))
    return Response(
        content=zip_bytes,
        media_type="application/zip",
        headers={
            "Content-Disposition": 'attachment; filename="quittances.zip"',
            "X-Receipt-Count": str(count),
        },
    )


@app.get("/form-state", response_model=FormState)
def get_form_state(db: Session = Depends(get_db)) -> FormState:
    """Return the stored form state so the UI can restore the previous session."""
    state = load_form_state(db)
    if state is None:
        raise HTTPException(status_code=404, detail="No saved form state")
    return state


@app.put("/form-state", response_model=FormState)
def put_form_state(state: FormState, db: Session = Depends(get_db)) -> FormState:
    return save_form_state(db, state)


@app.delete("/form-state", status_code=204)
def delete_form_state(db: Session = Depends(get_db)) -> Response:
    clear_form_state(db)
    return Response(status_code=204)


def get_app() -> FastAPI:
    """
    Convenience accessor for ASGI servers.
    """
    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=os.environ.get("HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT", "8010")),
        reload=True,
    )
