"""
============================================================================
Agent Session Orchestrator - Session API Endpoints
============================================================================

Reliability Level: L6 Critical
Input Constraints:
    - x-wallet-address header identifies the owner (start, list)
    - All amounts are decimal strings on the wire
Side Effects:
    - Session/trade store writes via SessionOrchestrator
    - Calls to channel, execution and settlement services

ENDPOINTS:
    POST /api/sessions/start              - Start a session for an agent
    GET  /api/sessions/{session_id}/status - Session state, trades, channel
    POST /api/sessions/{session_id}/stop   - Stop with best-effort teardown
    GET  /api/sessions                     - Sessions of the calling owner

Endpoints are plain (sync) functions: the orchestrator blocks on remote
calls and FastAPI runs sync endpoints in its threadpool.

============================================================================
"""

import uuid
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException

from app.api.common import (
    ApiErrorCode,
    error_detail,
    get_session_orchestrator,
    http_error_for,
    require_wallet_address,
)
from app.schemas.session import (
    SessionOut,
    SessionStatusResponse,
    StartSessionRequest,
    StopSessionRequest,
    StopSessionResponse,
)
from services.session_models import StopReason
from services.session_orchestrator import SessionOrchestrator, SessionOrchestratorError
from services.session_store import RecordStoreError

import logging

# Configure module logger
logger = logging.getLogger(__name__)


# ============================================================================
# Router Configuration
# ============================================================================

router = APIRouter()


def _unexpected(operation: str, e: Exception, correlation_id: str) -> HTTPException:
    logger.error(
        f"[SESSION-API] {operation} failed unexpectedly: {str(e)} | "
        f"correlation_id={correlation_id}",
        exc_info=True,
    )
    detail = error_detail(
        ApiErrorCode.INTERNAL,
        "internal_error",
        f"Failed to {operation}: {str(e)}",
    )
    detail["correlation_id"] = correlation_id
    return HTTPException(status_code=500, detail=detail)


# ============================================================================
# Endpoints
# ============================================================================

@router.post(
    "/start",
    response_model=SessionOut,
    summary="Start Session",
    description=(
        "Open a channel between the owner's safe and the agent's payout "
        "address, persist the session and delegate it to the execution "
        "service.\n\n"
        "**Partial failure:** if delegation fails the session is returned "
        "with status `error` and a degraded outcome, not an HTTP error."
    ),
    responses={
        400: {"description": "Missing header or invalid body (REQ-001, REQ-002, SOR-007)"},
        404: {"description": "Unknown owner or agent (SOR-003, SOR-004)"},
        502: {"description": "Channel open failed (SOR-010)"},
        500: {"description": "Persistence failure (SOR-005)"},
    },
)
def start_session(
    body: StartSessionRequest,
    wallet_address: str = Depends(require_wallet_address),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator)
) -> SessionOut:
    correlation_id = str(uuid.uuid4())
    logger.info(
        f"[SESSION-API] POST /start | wallet={wallet_address} | "
        f"agent_id={body.agent_id} | correlation_id={correlation_id}"
    )

    try:
        session = orchestrator.start_session(
            owner_wallet=wallet_address,
            agent_id=body.agent_id,
            safe_address=body.safe_address,
            base_collateral_usd=body.base_collateral_usd,
            max_duration_seconds=body.max_duration_seconds,
            market=body.market,
        )
    except SessionOrchestratorError as e:
        raise http_error_for(e)
    except Exception as e:
        raise _unexpected("start session", e, correlation_id)

    return SessionOut.from_session(session)


@router.get(
    "/{session_id}/status",
    response_model=SessionStatusResponse,
    summary="Session Status",
    description=(
        "Persisted session plus one live query to the execution service. "
        "When the live query fails the persisted values are served."
    ),
    responses={404: {"description": "Session not found (SOR-002)"}},
)
def get_session_status(
    session_id: str,
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator)
) -> SessionStatusResponse:
    correlation_id = str(uuid.uuid4())
    try:
        view = orchestrator.get_session_status(session_id)
    except SessionOrchestratorError as e:
        raise http_error_for(e)
    except Exception as e:
        raise _unexpected("get session status", e, correlation_id)

    return SessionStatusResponse.from_view(view)


@router.post(
    "/{session_id}/stop",
    response_model=StopSessionResponse,
    summary="Stop Session",
    description=(
        "Stop the session: stop execution, fetch final PnL, close the "
        "channel and record settlement. Every remote step is best-effort; "
        "failures are reported in `steps` and the session still closes.\n\n"
        "Stopping a closed session returns it unchanged. A session whose "
        "start failed (status error) is torn down and closed the same way."
    ),
    responses={
        400: {"description": "Unknown stop reason (REQ-002)"},
        404: {"description": "Session not found (SOR-002)"},
    },
)
def stop_session(
    session_id: str,
    body: Optional[StopSessionRequest] = None,
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator)
) -> StopSessionResponse:
    correlation_id = str(uuid.uuid4())
    reason = body.reason if body is not None else StopReason.USER_REQUESTED
    logger.info(
        f"[SESSION-API] POST /{session_id}/stop | reason={reason.value} | "
        f"correlation_id={correlation_id}"
    )

    try:
        session = orchestrator.stop_session(session_id, reason)
    except SessionOrchestratorError as e:
        raise http_error_for(e)
    except Exception as e:
        raise _unexpected("stop session", e, correlation_id)

    # The stop is committed; a trade read failure only empties the summary
    try:
        trades = orchestrator.get_trades(session_id)
    except RecordStoreError as e:
        logger.warning(
            f"[SESSION-API] Trades unavailable after stop, empty summary | "
            f"session_id={session_id} | error={str(e)} | correlation_id={correlation_id}"
        )
        trades = []

    return StopSessionResponse.from_session(session, trades)


@router.get(
    "",
    response_model=List[SessionOut],
    summary="List Sessions",
    description="Sessions of the calling owner, newest first. Unknown wallets get an empty list.",
    responses={400: {"description": "Missing x-wallet-address (REQ-001)"}},
)
def list_sessions(
    wallet_address: str = Depends(require_wallet_address),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator)
) -> List[SessionOut]:
    correlation_id = str(uuid.uuid4())
    try:
        sessions = orchestrator.list_sessions(wallet_address)
    except SessionOrchestratorError as e:
        raise http_error_for(e)
    except Exception as e:
        raise _unexpected("list sessions", e, correlation_id)

    return [SessionOut.from_session(s) for s in sessions]


__all__ = ["router"]
