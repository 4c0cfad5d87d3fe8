"""
============================================================================
Agent Session Orchestrator v1.0.0
Database Session - SQLAlchemy Engine, Session Factory & Schema
============================================================================

Reliability Level: L6 Critical
Input Constraints: DATABASE_URL must be a SQLAlchemy URL (postgresql, sqlite)
Side Effects: Database connections, DDL on create_schema()

TABLES:
    - agent_sessions:  One row per delegated trading session
    - session_trades:  Trades observed from the execution service
    - session_owners:  Registered wallet identities

Amounts are stored as their exact decimal string and timestamps as
ISO-8601 UTC strings, so the same rows round-trip on PostgreSQL and SQLite.

============================================================================
"""

import logging
from contextlib import contextmanager
from typing import Iterator, List

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool

logger = logging.getLogger(__name__)


# ============================================================================
# SCHEMA
# ============================================================================

SCHEMA_STATEMENTS: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS agent_sessions (
        id VARCHAR(64) PRIMARY KEY,
        user_id VARCHAR(64) NOT NULL,
        agent_id VARCHAR(128) NOT NULL,
        safe_address VARCHAR(64) NOT NULL,
        channel_id VARCHAR(128),
        status VARCHAR(16) NOT NULL,
        started_at VARCHAR(40) NOT NULL,
        ended_at VARCHAR(40),
        pnl_usd VARCHAR(64) NOT NULL,
        market VARCHAR(64),
        base_collateral_usd VARCHAR(64),
        max_duration_seconds INTEGER,
        outcome TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_agent_sessions_user_id ON agent_sessions (user_id)",
    "CREATE INDEX IF NOT EXISTS ix_agent_sessions_agent_id ON agent_sessions (agent_id)",
    """
    CREATE TABLE IF NOT EXISTS session_trades (
        id VARCHAR(128) PRIMARY KEY,
        session_id VARCHAR(64) NOT NULL,
        symbol VARCHAR(64) NOT NULL,
        side VARCHAR(8) NOT NULL,
        size_usd VARCHAR(64) NOT NULL,
        entry_price VARCHAR(64) NOT NULL,
        exit_price VARCHAR(64),
        opened_at VARCHAR(40) NOT NULL,
        closed_at VARCHAR(40),
        pnl_usd VARCHAR(64)
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_session_trades_session_id ON session_trades (session_id)",
    """
    CREATE TABLE IF NOT EXISTS session_owners (
        id VARCHAR(64) PRIMARY KEY,
        wallet_address VARCHAR(64) NOT NULL UNIQUE,
        safe_address VARCHAR(64),
        created_at VARCHAR(40) NOT NULL
    )
    """,
]


# ============================================================================
# SQLALCHEMY ENGINE
# ============================================================================

def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create the SQLAlchemy engine for the session store.

    Reliability Level: L6 Critical
    Input Constraints: database_url must be a valid SQLAlchemy URL
    Side Effects: None until first connection

    SQLite in-memory URLs get a StaticPool so every thread shares the one
    connection that holds the data. Server databases get a QueuePool.
    """
    if database_url.startswith("sqlite"):
        in_memory = ":memory:" in database_url or database_url.rstrip("/") == "sqlite:"
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool if in_memory else None,
        )
    else:
        engine = create_engine(
            database_url,
            poolclass=QueuePool,
            pool_size=10,           # Maintain 10 connections
            max_overflow=20,        # Allow up to 20 additional connections under load
            pool_timeout=30,        # Wait up to 30s for a connection
            pool_recycle=1800,      # Recycle connections after 30 minutes
            pool_pre_ping=True,     # Verify connections before use
            echo=echo,
        )

    if engine.dialect.name == "postgresql":
        event.listen(engine, "connect", _set_utc_timezone)

    logger.info(
        f"[DATABASE] Engine created | dialect={engine.dialect.name}"
    )
    return engine


def _set_utc_timezone(dbapi_connection, connection_record):
    """All timestamps must be UTC."""
    cursor = dbapi_connection.cursor()
    cursor.execute("SET timezone TO 'UTC'")
    cursor.close()


# ============================================================================
# SESSION FACTORY
# ============================================================================

def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to engine (no autoflush, explicit commit)."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine
    )


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """
    Yield a database session, rolling back on exception.

    Usage:
        with session_scope(factory) as db:
            db.execute(...)
            db.commit()
    """
    db = factory()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# ============================================================================
# SCHEMA MANAGEMENT
# ============================================================================

def create_schema(engine: Engine) -> None:
    """
    Create the orchestrator tables if they do not exist.

    Reliability Level: L6 Critical
    Side Effects: Executes DDL
    """
    with engine.begin() as conn:
        for statement in SCHEMA_STATEMENTS:
            conn.execute(text(statement))
    logger.info("[DATABASE] Schema ensured | tables=agent_sessions,session_trades,session_owners")


# ============================================================================
# HEALTH CHECK
# ============================================================================

def check_database_connection(engine: Engine) -> bool:
    """
    Verify database connectivity.

    Returns:
        bool: True if database is reachable

    Raises:
        ConnectionError: If database connection fails
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        raise ConnectionError(f"Database connection failed: {e}") from e


# ============================================================================
# END OF DATABASE SESSION MODULE
# ============================================================================
