"""
Database configuration and table definitions.

The store handle passed to every ledger/token function is a SQLAlchemy
``Engine``. Each mutation runs as a single statement inside its own
``engine.begin()`` block; nothing relies on multi-statement transactions or
row locks.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, JSON, Index, UniqueConstraint, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func

from arcade.core.config import settings


metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600

_engine: Optional[Engine] = None


def utc_now() -> datetime:
    """Timezone-aware UTC now; the single wall clock used for expiry checks."""
    return datetime.now(timezone.utc)


def build_engine(url: str) -> Engine:
    """Create an engine for ``url``.

    SQLite in-memory URLs share one connection across threads so a test
    client and the test body see the same data.
    """
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)

    return create_engine(
        url,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,
    )


def init_engine(database_url: Optional[str] = None) -> Engine:
    """Initialize the process-wide engine used by the HTTP layer."""
    global _engine

    url = database_url or settings.DATABASE_URL
    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    _engine = build_engine(url)
    return _engine


def get_engine() -> Engine:
    """Get the current engine, initializing it from settings on first use."""
    if _engine is None:
        init_engine()
    return _engine


def create_all_tables(engine: Optional[Engine] = None) -> None:
    """Create all tables defined in metadata (idempotent)."""
    metadata.create_all(bind=engine or get_engine())


def drop_all_tables(engine: Optional[Engine] = None) -> None:
    """Drop all tables. Only use in tests or development."""
    metadata.drop_all(bind=engine or get_engine())


def check_connection(engine: Optional[Engine] = None) -> bool:
    try:
        with (engine or get_engine()).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


# Per-user credit balance (owned by the credit ledger)
user_credits = Table(
    'user_credits',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('balance', Integer, nullable=False, server_default='0'),
    Column('free_credits_remaining', Integer, nullable=False, server_default='3'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Append-only credit movement log
credit_transactions = Table(
    'credit_transactions',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), nullable=False),
    Column('type', String(20), nullable=False),  # free_use | paid_use | purchase
    Column('amount', Integer, nullable=False),
    Column('external_ref', String(255), nullable=True),
    Column('metadata', JSON, nullable=False, default=dict),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    # Idempotency key for purchases; NULLs are not compared
    UniqueConstraint('external_ref', name='uq_credit_transactions_external_ref'),
    Index('idx_credit_transactions_user_created', 'user_id', 'created_at'),
)

# One-time continue authorisations
continue_tokens = Table(
    'continue_tokens',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('token', String(512), nullable=False, unique=True),
    Column('save_version', Integer, nullable=False),
    Column('consumed', Boolean, nullable=False, default=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('expires_at', DateTime(timezone=True), nullable=False, index=True),
)

# Save-write sessions
save_sessions = Table(
    'save_sessions',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('token', String(512), nullable=False, unique=True),
    Column('expires_at', DateTime(timezone=True), nullable=False, index=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Save snapshots (one row per user; save_version bumps on every write)
save_states = Table(
    'save_states',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), nullable=False, unique=True),
    Column('schema_version', Integer, nullable=False, server_default='1'),
    Column('save_data', JSON, nullable=False),
    Column('wave', Integer, nullable=False),
    Column('game_state', String(50), nullable=False),
    Column('session_token', String(512), nullable=True),
    Column('save_version', Integer, nullable=False, server_default='1'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)
