"""Tests for the HTTP endpoints."""
from __future__ import annotations

import io
import zipfile

import pytest
from fastapi.testclient import TestClient

# Conftest adds backend dir to path: use direct imports (no backend. prefix)
import main
from main import app
from reporting import receipt_builder


def _receipt_payload(**overrides) -> dict:
    payload = {
        "landlord": {"name": "Jean Dupont", "address": "12 rue de la Paix"},
        "tenants": [{"name": "Marie Martin", "address": "Apt 3"}],
        "lease": {
            "startDate": "2024-01-15",
            "endDate": "2024-02-10",
            "monthlyRent": 900,
            "monthlyCharges": 100,
        },
        "paymentDate": "2024-01-05",
        "chargeType": "Provision",
        "issuedOn": "2024-02-15",
    }
    payload.update(overrides)
    return payload


def test_health():
    client = TestClient(app)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert "X-Request-Id" in response.headers


def test_billing_periods_endpoint():
    client = TestClient(app)
    response = client.post(
        "/billing-periods",
        json={"start_date": "2024-01-15", "end_date": "2024-02-10", "monthly_rent": 900, "monthly_charges": 100},
    )
    assert response.status_code == 200
    data = response.json()
    assert len(data["periods"]) == 2
    jan = data["periods"][0]
    assert jan["period_start"] == "2024-01-15"
    assert jan["period_end"] == "2024-01-31"
    assert jan["days_charged"] == 17
    assert jan["days_in_month"] == 31
    assert jan["is_partial"] is True
    assert jan["rent_due"] == "493.55"
    assert jan["charges_due"] == "54.84"
    assert jan["total_due"] == "548.39"
    assert data["totals"]["period_count"] == 2
    assert data["totals"]["days_charged"] == 27


def test_billing_periods_invalid_range_422():
    client = TestClient(app)
    response = client.post(
        "/billing-periods",
        json={"start_date": "2024-02-01", "end_date": "2024-01-01", "monthly_rent": 900},
        headers={"x-request-id": "abc123"},
    )
    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "invalid_range"
    assert body["rid"] == "abc123"


def test_billing_periods_negative_rate_422():
    client = TestClient(app)
    response = client.post(
        "/billing-periods",
        json={"start_date": "2024-01-01", "end_date": "2024-01-31", "monthly_rent": 900, "monthly_charges": -5},
    )
    assert response.status_code == 422
    assert response.json()["error"] == "invalid_rate"


def test_receipts_preview_returns_html():
    client = TestClient(app)
    response = client.post("/receipts/preview", json=_receipt_payload())
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert response.headers["X-Receipt-Count"] == "2"
    html = response.text
    assert html.count('<section class="receipt">') == 2
    assert "493,55 €" in html
    assert "17 jour(s) sur 31" in html
    assert "10 jour(s) sur 29" in html


@pytest.mark.parametrize(
    "overrides",
    [
        {"landlord": {"name": "", "address": "x"}},
        {"tenants": [{"name": "  ", "address": "x"}]},
        {"lease": {"startDate": "2024-01-01", "endDate": "2024-01-31", "monthlyRent": 0}},
        {"signatureImage": "data:image/bmp;base64,AAAA"},
    ],
)
def test_receipts_preview_rejects_incomplete_form(overrides):
    client = TestClient(app)
    response = client.post("/receipts/preview", json=_receipt_payload(**overrides))
    assert response.status_code == 422


def test_receipts_preview_invalid_range():
    client = TestClient(app)
    payload = _receipt_payload(lease={"startDate": "2024-03-01", "endDate": "2024-02-01", "monthlyRent": 900})
    response = client.post("/receipts/preview", json=payload)
    assert response.status_code == 422
    assert response.json()["error"] == "invalid_range"


def test_receipts_returns_zip_or_503():
    client = TestClient(app)
    response = client.post("/receipts", json=_receipt_payload())
    # May be 200 (zip) or 503 if Playwright / Chromium is not installed
    if response.status_code == 200:
        assert response.headers["content-type"].startswith("application/zip")
        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            assert len(zf.namelist()) == 2
    else:
        assert response.status_code == 503


def test_receipts_zip_and_form_state_saved(monkeypatch, db):
    monkeypatch.setattr(
        receipt_builder,
        "html_batch_to_pdf",
        lambda docs, page_margin_mm=10: [b"%PDF-1.4 fake" for _ in docs],
    )
    client = TestClient(app)
    payload = _receipt_payload(tenants=[{"name": "Marie Martin"}, {"name": "Paul"}])
    response = client.post("/receipts", json=payload)
    assert response.status_code == 200
    assert response.headers["X-Receipt-Count"] == "4"
    assert 'filename="quittances.zip"' in response.headers["content-disposition"]
    with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
        assert sorted(zf.namelist()) == [
            "Quittance_Marie_Martin_01_2024.pdf",
            "Quittance_Marie_Martin_02_2024.pdf",
            "Quittance_Paul_01_2024.pdf",
            "Quittance_Paul_02_2024.pdf",
        ]

    state = client.get("/form-state")
    assert state.status_code == 200
    data = state.json()
    assert data["landlord_name"] == "Jean Dupont"
    assert [t["name"] for t in data["tenants"]] == ["Marie Martin", "Paul"]
    assert data["end_date"] == "2024-02-10"


def test_receipts_render_failure_503(monkeypatch):
    def boom(docs, page_margin_mm=10):
        raise RuntimeError("chromium missing")

    monkeypatch.setattr(receipt_builder, "html_batch_to_pdf", boom)
    client = TestClient(app)
    payload = _receipt_payload(issuedOn="2030-01-01")
    response = client.post("/receipts", json=payload)
    assert response.status_code == 503


def test_form_state_crud(db):
    client = TestClient(app)
    assert client.get("/form-state").status_code == 404

    put = client.put(
        "/form-state",
        json={"landlordName": "Jean", "tenants": [{"index": 0, "name": "Marie"}], "preFillNextPeriod": False},
    )
    assert put.status_code == 200
    assert put.json()["landlord_name"] == "Jean"
    assert put.json()["saved_at"]

    got = client.get("/form-state")
    assert got.status_code == 200
    assert got.json()["tenants"][0]["name"] == "Marie"

    assert client.delete("/form-state").status_code == 204
    assert client.get("/form-state").status_code == 404


def test_get_app_returns_application():
    assert main.get_app() is app


def test_health_pdf_ready_or_503():
    client = TestClient(app)
    response = client.get("/health/pdf")
    assert response.status_code in (200, 503)


def test_billing_periods_last_calendar_month():
    client = TestClient(app)
    response = client.post(
        "/billing-periods",
        json={"start_date": "9999-12-01", "end_date": "9999-12-31", "monthly_rent": 900},
    )
    assert response.status_code == 200
    assert response.json()["periods"][0]["rent_due"] == "900.00"


def test_billing_periods_oversized_rent_422():
    client = TestClient(app)
    response = client.post(
        "/billing-periods",
        json={"start_date": "2024-01-15", "end_date": "2024-01-31", "monthly_rent": "1e27"},
    )
    assert response.status_code == 422
    assert response.json()["error"] == "invalid_rate"
