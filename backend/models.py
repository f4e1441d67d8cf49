from __future__ import annotations

import base64
import binascii
import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

MAX_SIGNATURE_BYTES = 800 * 1024
_SIGNATURE_DATA_URL = re.compile(r"data:image/(png|jpeg|jpg|gif);base64,(.+)", re.DOTALL)


class ChargeType(str, Enum):
    FORFAIT = "forfait"
    PROVISION = "provision"


class LeaseTerm(BaseModel):
    """
    Lease span and monthly rates fed to the proration engine.

    Ordering of the dates and the sign of the amounts are checked by the engine
    (InvalidRange / InvalidRate), not here.
    """
    model_config = ConfigDict(populate_by_name=True)

    start_date: date = Field(validation_alias=AliasChoices("start_date", "startDate"))
    end_date: date = Field(validation_alias=AliasChoices("end_date", "endDate"))
    monthly_rent: Decimal = Field(validation_alias=AliasChoices("monthly_rent", "monthlyRent"))
    monthly_charges: Decimal = Field(
        default=Decimal("0"),
        validation_alias=AliasChoices("monthly_charges", "monthlyCharges"),
    )


class BillingPeriod(BaseModel):
    """One calendar-month slice of a lease with its prorated amounts."""
    model_config = ConfigDict(frozen=True)

    period_start: date
    period_end: date
    days_charged: int = Field(ge=1)
    days_in_month: int = Field(ge=28, le=31)
    rent_due: Decimal
    charges_due: Decimal
    total_due: Decimal

    @computed_field  # type: ignore[misc]
    @property
    def is_partial(self) -> bool:
        return self.days_charged < self.days_in_month


class PeriodTotals(BaseModel):
    period_count: int = 0
    days_charged: int = 0
    rent_due: Decimal = Decimal("0.00")
    charges_due: Decimal = Decimal("0.00")
    total_due: Decimal = Decimal("0.00")


class BillingPeriodsResponse(BaseModel):
    """Response from POST /billing-periods."""
    lease: LeaseTerm
    periods: List[BillingPeriod] = Field(default_factory=list)
    totals: PeriodTotals = Field(default_factory=PeriodTotals)


class Party(BaseModel):
    """Landlord or tenant identity printed on a receipt."""
    name: str = ""
    address: str = ""

    @field_validator("name", "address", mode="before")
    @classmethod
    def _trim(cls, value: Optional[str]) -> str:
        if value is None:
            return ""
        return str(value).strip()[:400]


class ReceiptRequest(BaseModel):
    """Request body for POST /receipts and POST /receipts/preview."""
    model_config = ConfigDict(populate_by_name=True)

    landlord: Party
    tenants: List[Party]
    lease: LeaseTerm
    payment_date: Optional[date] = Field(
        default=None, validation_alias=AliasChoices("payment_date", "paymentDate")
    )
    charge_type: ChargeType = Field(
        default=ChargeType.PROVISION, validation_alias=AliasChoices("charge_type", "chargeType")
    )
    notes: str = ""
    signature_image: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("signature_image", "signatureImage")
    )
    issued_on: Optional[date] = Field(
        default=None, validation_alias=AliasChoices("issued_on", "issuedOn")
    )

    @field_validator("charge_type", mode="before")
    @classmethod
    def _coerce_charge_type(cls, value: Optional[str]) -> str:
        """Accept the form labels ("Forfait", "Provision") as well as enum values."""
        if value is None:
            return ChargeType.PROVISION.value
        if isinstance(value, ChargeType):
            return value.value
        return str(value).strip().lower() or ChargeType.PROVISION.value

    @field_validator("notes", mode="before")
    @classmethod
    def _trim_notes(cls, value: Optional[str]) -> str:
        if value is None:
            return ""
        return str(value).strip()[:3000]

    @field_validator("signature_image", mode="before")
    @classmethod
    def _validate_signature(cls, value: Optional[str]) -> Optional[str]:
        return validate_signature_data_url(value)

    @model_validator(mode="after")
    def _check_required_parties(self) -> "ReceiptRequest":
        if not self.landlord.name:
            raise ValueError("landlord name is required")
        if not any(t.name for t in self.tenants):
            raise ValueError("at least one tenant with a name is required")
        if self.lease.monthly_rent <= 0:
            raise ValueError("monthly_rent must be > 0")
        return self

    @property
    def named_tenants(self) -> List[Party]:
        return [t for t in self.tenants if t.name]


def validate_signature_data_url(value: Optional[str]) -> Optional[str]:
    """Return a PNG/JPEG/GIF data URL under 800 KB, None when blank; raise ValueError otherwise."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    match = _SIGNATURE_DATA_URL.fullmatch(text)
    if not match:
        raise ValueError("signature must be a PNG, JPG or GIF data URL")
    try:
        decoded = base64.b64decode(match.group(2), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("signature image must be valid base64") from e
    if len(decoded) > MAX_SIGNATURE_BYTES:
        raise ValueError("signature image must be smaller than 800 KB")
    return text


class TenantEntry(BaseModel):
    index: int = Field(ge=0)
    name: str = ""
    address: str = ""


class FormState(BaseModel):
    """
    Form fields persisted between sessions under a single storage key.
    """
    model_config = ConfigDict(populate_by_name=True)

    landlord_name: str = Field(default="", validation_alias=AliasChoices("landlord_name", "landlordName"))
    landlord_address: str = Field(default="", validation_alias=AliasChoices("landlord_address", "landlordAddress"))
    tenants: List[TenantEntry] = Field(default_factory=list)
    signature_image: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("signature_image", "signatureImage")
    )
    prefill_next_period: bool = Field(
        default=False, validation_alias=AliasChoices("prefill_next_period", "preFillNextPeriod")
    )
    tenant_counter: int = Field(default=1, ge=1, validation_alias=AliasChoices("tenant_counter", "tenantCounter"))
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    payment_date: Optional[date] = None
    monthly_rent: Optional[Decimal] = Field(default=None, ge=0)
    monthly_charges: Optional[Decimal] = Field(default=None, ge=0)
    charge_type: ChargeType = ChargeType.PROVISION
    saved_at: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("saved_at", "timestamp"))

    @field_validator("signature_image", mode="before")
    @classmethod
    def _validate_signature(cls, value: Optional[str]) -> Optional[str]:
        return validate_signature_data_url(value)

    @model_validator(mode="after")
    def _counter_covers_tenants(self) -> "FormState":
        if self.tenants:
            highest = max(t.index for t in self.tenants)
            if self.tenant_counter <= highest:
                self.tenant_counter = highest + 1
        return self
