"""
============================================================================
Agent Session Orchestrator - Agent API Endpoints
============================================================================

Reliability Level: L5 High
Side Effects: None (read-only)

ENDPOINTS:
    GET /api/agents            - Catalog with reputation
    GET /api/agents/{agent_id} - One agent with reputation and last 10 sessions

Reputation is aggregated from closed sessions on every request.

============================================================================
"""

from typing import List

from fastapi import APIRouter, Depends

from app.api.common import get_session_orchestrator, http_error_for
from app.schemas.session import AgentDetailResponse, AgentOut
from services.session_orchestrator import SessionOrchestrator, SessionOrchestratorError

import logging

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter()

RECENT_SESSIONS_LIMIT = 10


@router.get(
    "",
    response_model=List[AgentOut],
    summary="List Agents",
)
def list_agents(
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator)
) -> List[AgentOut]:
    profiles = orchestrator.list_agents()
    logger.debug(f"[AGENT-API] GET /agents | count={len(profiles)}")
    return [AgentOut.from_profile(p) for p in profiles]


@router.get(
    "/{agent_id}",
    response_model=AgentDetailResponse,
    summary="Agent Detail",
    responses={404: {"description": "Agent not found (SOR-004)"}},
)
def get_agent(
    agent_id: str,
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator)
) -> AgentDetailResponse:
    try:
        profile = orchestrator.describe_agent(agent_id, recent_limit=RECENT_SESSIONS_LIMIT)
    except SessionOrchestratorError as e:
        raise http_error_for(e)
    return AgentDetailResponse.from_profile(profile)


__all__ = ["router"]
