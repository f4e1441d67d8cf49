"""
Content-hash disk cache for rendered receipts.
Receipt: key = sha256(receipt payload JSON) -> PDF bytes.
"""
from __future__ import annotations

import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Any

# Cache directory under backend/cache unless RECEIPT_CACHE_DIR is set
_CACHE_DIR = Path(__file__).resolve().parent
RECEIPT_CACHE_DIR = Path(os.environ.get("RECEIPT_CACHE_DIR") or (_CACHE_DIR / "receipts"))

_LOG = logging.getLogger("uvicorn.error")


def _ensure_dir(d: Path) -> None:
    d.mkdir(parents=True, exist_ok=True)


def _receipt_key(payload: dict[str, Any]) -> str:
    text = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(text.encode()).hexdigest()


def get_cached_receipt(payload: dict[str, Any]) -> bytes | None:
    """Return cached PDF bytes, or None."""
    path = RECEIPT_CACHE_DIR / f"{_receipt_key(payload)}.pdf"
    if not path.exists():
        return None
    try:
        return path.read_bytes()
    except OSError as e:
        _LOG.warning("RECEIPT_CACHE_READ_FAILED path=%s err=%s", path.name, e)
        return None


def set_cached_receipt(payload: dict[str, Any], pdf_bytes: bytes) -> None:
    """Store PDF bytes in cache."""
    _ensure_dir(RECEIPT_CACHE_DIR)
    path = RECEIPT_CACHE_DIR / f"{_receipt_key(payload)}.pdf"
    path.write_bytes(pdf_bytes)


def clear_receipt_cache() -> int:
    """Delete every cached receipt; returns the number removed."""
    if not RECEIPT_CACHE_DIR.is_dir():
        return 0
    removed = 0
    for path in RECEIPT_CACHE_DIR.glob("*.pdf"):
        path.unlink(missing_ok=True)
        removed += 1
    return removed
