"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Table definitions for the ledger event log, issued nonces and plan terms
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, Float, String, DateTime, JSON, Index, text
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import logging
import os

from bitmor_dca.core.config import settings

logger = logging.getLogger("bitmor_dca")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def is_database_configured() -> bool:
    return bool(get_database_url())


def build_engine(url: str):
    """Create an engine; SQLite gets a single shared connection."""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        echo=False,  # Set to True for SQL query logging
    )


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    _engine = build_engine(url)

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


def reset_engine() -> None:
    """Forget the cached engine (tests swap databases between cases)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)
            session.commit()
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine=None):
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    metadata.create_all(bind=engine or get_engine())


def drop_all_tables(engine=None):
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    metadata.drop_all(bind=engine or get_engine())


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


# Ledger event log (append-only; sequence is assigned by the ledger)
ledger_events = Table(
    'ledger_events',
    metadata,
    Column('sequence', Integer, primary_key=True, autoincrement=False),
    Column('event_type', String(64), nullable=False, index=True),
    Column('account', String(42), nullable=True, index=True),
    Column('payload', JSON, nullable=False),
    Column('occurred_at', Integer, nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_ledger_events_account_sequence', 'account', 'sequence'),
)

# Nonces handed out by the authorization coordinator
authorization_nonces = Table(
    'authorization_nonces',
    metadata,
    Column('nonce', String(66), primary_key=True),
    Column('operation', String(64), nullable=True, index=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_authorization_nonces_operation_created', 'operation', 'created_at'),
)

# Per-plan penalty terms chosen at plan creation
plan_terms = Table(
    'plan_terms',
    metadata,
    Column('account', String(42), primary_key=True),
    Column('penalty_min_bps', Integer, nullable=False),
    Column('penalty_max_bps', Integer, nullable=False),
    Column('penalty_exponent', Float, nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)
