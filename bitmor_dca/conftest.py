# bitmor_dca/conftest.py
import pytest

from bitmor_dca.core import idempotency
from bitmor_dca.core.config import settings
from bitmor_dca.core.database import reset_engine


@pytest.fixture(autouse=True)
def isolate_nonce_registry(monkeypatch):
    """Keep the issued-nonce registry in memory and empty for every test."""
    monkeypatch.delenv("TEST_DATABASE_URL", raising=False)
    monkeypatch.setattr(settings, "DATABASE_URL", None)
    reset_engine()
    idempotency.clear_all_keys()
    yield
    idempotency.clear_all_keys()
    reset_engine()
