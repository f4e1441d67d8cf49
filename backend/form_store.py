"""
Store and retrieve the receipt form state under a single fixed key.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from pydantic import ValidationError
from sqlalchemy.orm import Session

from db.models import StoredFormState
from engine.proration import InvalidRange, next_period
from models import FormState, ReceiptRequest, TenantEntry

STORAGE_KEY = "rentReceiptData"

_LOG = logging.getLogger("uvicorn.error")


def save_form_state(db: Session, state: FormState) -> FormState:
    """Upsert state under STORAGE_KEY, stamping saved_at. Returns the stored state."""
    stamped = state.model_copy(update={"saved_at": datetime.now(timezone.utc)})
    payload = stamped.model_dump(mode="json")
    row = db.get(StoredFormState, STORAGE_KEY)
    if row is None:
        row = StoredFormState(storage_key=STORAGE_KEY, payload=payload)
        db.add(row)
    else:
        row.payload = payload
    db.commit()
    return stamped


def load_form_state(db: Session) -> FormState | None:
    """
    Stored state, or None when nothing (readable) is stored.
    With prefill_next_period set, dates are moved to the month after the stored end date.
    """
    row = db.get(StoredFormState, STORAGE_KEY)
    if row is None:
        return None
    try:
        state = FormState.model_validate(row.payload or {})
    except ValidationError as e:
        _LOG.warning("FORM_STATE_UNREADABLE key=%s err=%s", STORAGE_KEY, str(e)[:400])
        return None

    if state.prefill_next_period and state.start_date and state.end_date:
        try:
            start, end = next_period(state.start_date, state.end_date)
        except InvalidRange:
            _LOG.warning("FORM_STATE_PREFILL_SKIPPED key=%s reason=invalid_range", STORAGE_KEY)
            return state
        state = state.model_copy(update={"start_date": start, "end_date": end})
    return state


def clear_form_state(db: Session) -> bool:
    """Delete stored state; True when something was removed."""
    row = db.get(StoredFormState, STORAGE_KEY)
    if row is None:
        return False
    db.delete(row)
    db.commit()
    return True


def form_state_from_request(request: ReceiptRequest, previous: FormState | None = None) -> FormState:
    """
    State to persist after a generation run. Tenants are renumbered from 0 and
    tenant_counter never goes backwards. Entries with neither name nor address are dropped.
    """
    kept = [t for t in request.tenants if t.name or t.address]
    tenants = [TenantEntry(index=i, name=t.name, address=t.address) for i, t in enumerate(kept)]
    counter = max(len(tenants), 1)
    if previous is not None:
        counter = max(counter, previous.tenant_counter)
    return FormState(
        landlord_name=request.landlord.name,
        landlord_address=request.landlord.address,
        tenants=tenants,
        signature_image=request.signature_image,
        prefill_next_period=previous.prefill_next_period if previous else False,
        tenant_counter=counter,
        start_date=request.lease.start_date,
        end_date=request.lease.end_date,
        payment_date=request.payment_date,
        monthly_rent=request.lease.monthly_rent,
        monthly_charges=request.lease.monthly_charges,
        charge_type=request.charge_type,
    )
