"""SQLAlchemy models for persisted form state."""
from __future__ import annotations

from datetime import datetime, timezone
from sqlalchemy import JSON, Column, DateTime, String

from .session import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoredFormState(Base):
    """Key-value row; one key per stored form."""
    __tablename__ = "form_states"

    storage_key = Column("storage_key", String, primary_key=True)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column("created_at", DateTime, default=_utcnow)
    updated_at = Column("updated_at", DateTime, default=_utcnow, onupdate=_utcnow)
