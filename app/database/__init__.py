# ============================================================================
# Agent Session Orchestrator v1.0.0
# Database Module - SQLAlchemy Engine & Schema Management
# ============================================================================

from app.database.session import (
    create_db_engine,
    create_session_factory,
    create_schema,
    check_database_connection,
)

__all__ = [
    "create_db_engine",
    "create_session_factory",
    "create_schema",
    "check_database_connection",
]
