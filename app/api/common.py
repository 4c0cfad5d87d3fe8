"""
============================================================================
Agent Session Orchestrator - Shared API Dependencies
============================================================================

Reliability Level: L6 Critical
Side Effects: None

Error body shape (every non-2xx response):
    {"error_code": "SOR-002", "error": "session_not_found",
     "message": "...", "timestamp": "2026-01-01T00:00:00+00:00"}

STATUS MAPPING:
    NotFoundError               → 404
    InvalidSessionRequestError  → 400
    InvalidSessionStateError    → 409
    ChannelOpenFailedError      → 502
    SessionPersistenceError     → 500
    missing x-wallet-address    → 400 (REQ-001)
    orchestrator not ready      → 503 (SYS-503)

============================================================================
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any

from fastapi import Header, HTTPException

from services.owner_registry import OwnerRegistry
from services.session_orchestrator import (
    AgentNotFoundError,
    ChannelOpenFailedError,
    InvalidSessionRequestError,
    InvalidSessionStateError,
    NotFoundError,
    OwnerNotFoundError,
    SessionNotFoundError,
    SessionOrchestratorError,
    SessionPersistenceError,
    SessionOrchestrator,
)

import logging

# Configure module logger
logger = logging.getLogger(__name__)


class ApiErrorCode:
    """API-layer error codes (orchestrator errors keep their SOR codes)."""
    MISSING_WALLET = "REQ-001"
    VALIDATION_FAILED = "REQ-002"
    NOT_READY = "SYS-503"
    INTERNAL = "SYS-500"


def error_detail(error_code: str, error: str, message: str) -> Dict[str, Any]:
    return {
        "error_code": error_code,
        "error": error,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def http_error_for(e: SessionOrchestratorError) -> HTTPException:
    """Map an orchestrator exception to an HTTPException with an error body."""
    if isinstance(e, SessionNotFoundError):
        status_code, error = 404, "session_not_found"
    elif isinstance(e, AgentNotFoundError):
        status_code, error = 404, "agent_not_found"
    elif isinstance(e, OwnerNotFoundError):
        status_code, error = 404, "owner_not_found"
    elif isinstance(e, NotFoundError):
        status_code, error = 404, "not_found"
    elif isinstance(e, InvalidSessionRequestError):
        status_code, error = 400, "invalid_request"
    elif isinstance(e, InvalidSessionStateError):
        status_code, error = 409, "invalid_state"
    elif isinstance(e, ChannelOpenFailedError):
        status_code, error = 502, "channel_open_failed"
    elif isinstance(e, SessionPersistenceError):
        status_code, error = 500, "persistence_failure"
    else:
        status_code, error = 500, "internal_error"
    return HTTPException(
        status_code=status_code,
        detail=error_detail(e.error_code, error, e.message),
    )


# ============================================================================
# Dependencies
# ============================================================================

def require_wallet_address(
    x_wallet_address: Optional[str] = Header(None, description="Owner wallet address")
) -> str:
    """
    The caller's wallet from the x-wallet-address header.

    Raises:
        HTTPException: 400 REQ-001 if the header is missing or blank
    """
    wallet = (x_wallet_address or "").strip()
    if not wallet:
        logger.warning(f"[{ApiErrorCode.MISSING_WALLET}] Missing x-wallet-address header")
        raise HTTPException(
            status_code=400,
            detail=error_detail(
                ApiErrorCode.MISSING_WALLET,
                "missing_wallet_address",
                "x-wallet-address header is required",
            ),
        )
    return wallet


def _not_ready(component: str) -> HTTPException:
    logger.error(f"[{ApiErrorCode.NOT_READY}] {component} not initialized")
    return HTTPException(
        status_code=503,
        detail=error_detail(
            ApiErrorCode.NOT_READY,
            "service_unavailable",
            f"{component} is not initialized",
        ),
    )


def get_session_orchestrator() -> SessionOrchestrator:
    """The process-wide orchestrator built in the application lifespan."""
    from app.main import get_orchestrator
    orchestrator = get_orchestrator()
    if orchestrator is None:
        raise _not_ready("Session orchestrator")
    return orchestrator


def get_owner_registry() -> OwnerRegistry:
    """The process-wide owner registry built in the application lifespan."""
    from app.main import get_owners
    owners = get_owners()
    if owners is None:
        raise _not_ready("Owner registry")
    return owners


__all__ = [
    "ApiErrorCode",
    "error_detail",
    "http_error_for",
    "require_wallet_address",
    "get_session_orchestrator",
    "get_owner_registry",
]
