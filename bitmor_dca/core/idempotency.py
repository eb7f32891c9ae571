"""
bitmor_dca/core/idempotency.py
Issued-nonce registry for the authorization coordinator.

The ledger keeps its own consumed-nonce set; this registry only guarantees the
coordinator never hands out the same nonce twice.
"""

import threading
from datetime import datetime, timezone
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from bitmor_dca.core.database import (
    authorization_nonces,
    get_db_session,
    get_session_factory,
    is_database_configured,
)

# In-memory fallback
_in_memory_keys: set = set()
_lock = threading.Lock()


def check_and_set(key: str, operation: str = "generic") -> bool:
    """
    Check if a nonce was already issued, and record it if not (atomic).

    Args:
        key: Hex nonce string
        operation: Operation kind (for debugging/monitoring)

    Returns:
        True if key was already seen (duplicate)
        False if key is new (first time seeing it)
    """
    if is_database_configured():
        SessionLocal = get_session_factory()
        session = SessionLocal()
        try:
            session.execute(
                authorization_nonces.insert().values(
                    nonce=key,
                    operation=operation,
                    created_at=datetime.now(timezone.utc),
                )
            )
            session.commit()
            return False
        except IntegrityError:
            # UNIQUE constraint violation
            session.rollback()
            return True
        finally:
            session.close()

    with _lock:
        if key in _in_memory_keys:
            return True
        _in_memory_keys.add(key)
        return False


def check_key(key: str) -> bool:
    """Read-only lookup."""
    if is_database_configured():
        with get_db_session() as session:
            result = session.execute(
                select(authorization_nonces.c.nonce).where(
                    authorization_nonces.c.nonce == key
                )
            ).first()
            return result is not None
    with _lock:
        return key in _in_memory_keys


def clear_all_keys() -> None:
    """Clear all issued nonces (testing only)."""
    if is_database_configured():
        with get_db_session() as session:
            session.execute(authorization_nonces.delete())
    with _lock:
        _in_memory_keys.clear()
