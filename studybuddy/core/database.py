"""
studybuddy/core/database.py

SQLAlchemy plumbing and the tables behind the tier catalog, usage ledger,
tier assignments, limit overrides and upgrade-prompt state.

The same Core code runs against Supabase/Postgres (DATABASE_URL) and the
desktop app's local SQLite mirror (LOCAL_DATABASE_URL, the default).
Store access must fail fast: pool and connect timeouts are short so a
slow database turns into StoreUnavailableError rather than hung requests.
"""
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    create_engine, MetaData, Table, Column, Integer, BigInteger, String, DateTime,
    Boolean, Float, JSON, Text, Index, UniqueConstraint,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func, text

from studybuddy.core.config import settings


logger = logging.getLogger("studybuddy")

metadata = MetaData()

# Postgres pool
PG_POOL_SIZE = 10
PG_MAX_OVERFLOW = 20
PG_POOL_RECYCLE_SECONDS = 60 * 60

# Seconds a SQLite writer waits for the file lock
SQLITE_BUSY_TIMEOUT = 30

_engine: Optional[Engine] = None
_session_factory = None


def get_database_url() -> str:
    """TEST_DATABASE_URL, then DATABASE_URL, then the local SQLite mirror."""
    return os.getenv("TEST_DATABASE_URL") or settings.DATABASE_URL or settings.LOCAL_DATABASE_URL


def _is_in_memory_sqlite(url: str) -> bool:
    return ":memory:" in url or url in ("sqlite://", "sqlite:///")


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}}
        if _is_in_memory_sqlite(url):
            # One shared connection, otherwise each checkout sees an empty db
            options["poolclass"] = StaticPool
        return options

    return {
        "poolclass": QueuePool,
        "pool_size": PG_POOL_SIZE,
        "max_overflow": PG_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_recycle": PG_POOL_RECYCLE_SECONDS,
        "pool_pre_ping": True,
        "connect_args": {"connect_timeout": settings.DB_CONNECT_TIMEOUT},
    }


def init_engine(database_url: Optional[str] = None) -> Engine:
    """(Re)create the engine and session factory, disposing any previous engine."""
    global _engine, _session_factory

    url = database_url or get_database_url()
    if _engine is not None:
        _engine.dispose()

    _engine = create_engine(url, echo=False, **_engine_options(url))
    _session_factory = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
    logger.info("[db] engine ready", extra={"dialect": _engine.dialect.name})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    if _session_factory is None:
        init_engine()
    return _session_factory


def dispose_engine() -> None:
    """Close pooled connections and forget the engine (tests, shutdown)."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


@contextmanager
def get_db_session(session_factory=None):
    """
    One unit of work: commit when the block exits cleanly, roll back and
    re-raise otherwise.
    """
    session = (session_factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables() -> None:
    """Create missing tables; existing ones are left alone."""
    metadata.create_all(bind=get_engine())


def drop_all_tables() -> None:
    """Destructive. Tests and local development only."""
    metadata.drop_all(bind=get_engine())


def reset_database() -> None:
    """Destructive. Empty schema with every table recreated."""
    drop_all_tables()
    create_all_tables()


def check_connection() -> bool:
    """True when a trivial query round-trips; never raises."""
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("[db] connection check failed", extra={"error": str(e)})
        return False
    return True


# Tier catalog: one row per tier, limits/features/ads as JSON
tier_definitions = Table(
    'tier_definitions',
    metadata,
    Column('tier_id', String(50), primary_key=True),
    Column('name', String(200), nullable=False),
    Column('price', Float, nullable=False, server_default='0'),
    Column('currency', String(10), nullable=False, server_default='USD'),
    Column('interval', String(20), nullable=False, server_default='month'),
    Column('limits', JSON, nullable=False),
    Column('features', JSON, nullable=False),
    Column('ads', JSON, nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Global feature flags (kill switches / rollout status)
feature_flags = Table(
    'feature_flags',
    metadata,
    Column('name', String(100), primary_key=True),
    Column('enabled', Boolean, nullable=False, server_default='true'),
    Column('status', String(20), nullable=False, server_default='stable'),
    Column('description', Text, nullable=True),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Each user has exactly one active tier
user_tiers = Table(
    'user_tiers',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('tier_id', String(50), nullable=False),
    Column('assigned_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_user_tiers_tier_id', 'tier_id'),
)

# Usage ledger: one counter per (user, month, quota)
usage_counters = Table(
    'usage_counters',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False),
    Column('period_key', String(7), nullable=False),
    Column('quota_name', String(100), nullable=False),
    Column('used', BigInteger, nullable=False, server_default='0'),
    # Units held by in-flight guarded actions; moved into used on success
    Column('reserved', BigInteger, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('user_id', 'period_key', 'quota_name', name='uq_usage_counters_key'),
    Index('idx_usage_counters_user_period', 'user_id', 'period_key'),
)

# Temporary per-tier limit overrides (promotions, testing)
tier_limit_overrides = Table(
    'tier_limit_overrides',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('tier_id', String(50), nullable=False),
    Column('quota_name', String(100), nullable=False),
    Column('value', BigInteger, nullable=False),
    Column('expires_at', DateTime(timezone=True), nullable=True),
    Column('created_by', String(100), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('tier_id', 'quota_name', name='uq_tier_limit_overrides_key'),
)

# Upgrade prompt throttling state
upgrade_prompt_state = Table(
    'upgrade_prompt_state',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('last_shown_at', DateTime(timezone=True), nullable=True),
    Column('actions_since_prompt', Integer, nullable=False, server_default='0'),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite returns them without tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
