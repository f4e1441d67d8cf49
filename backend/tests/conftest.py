"""Add backend to path so tests can resolve 'from models import' when run from project root."""
import os
import sys
import tempfile

_backend_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _backend_dir not in sys.path:
    sys.path.insert(0, _backend_dir)

# Isolated database and receipt cache for the test session; must be set before db.session is imported.
_tmp_dir = tempfile.mkdtemp(prefix="receipts-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmp_dir, 'test.db')}"
os.environ["RECEIPT_CACHE_DIR"] = os.path.join(_tmp_dir, "receipt-cache")

import pytest  # noqa: E402

from db.session import SessionLocal, init_db  # noqa: E402
from form_store import clear_form_state  # noqa: E402

init_db()


@pytest.fixture
def db():
    session = SessionLocal()
    clear_form_state(session)
    try:
        yield session
    finally:
        clear_form_state(session)
        session.close()
