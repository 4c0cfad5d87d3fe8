# ============================================================================
# Agent Session Orchestrator
# Pydantic Schemas - Request Validation and Response Serialization
# ============================================================================

from app.schemas.session import (
    StartSessionRequest,
    StopSessionRequest,
    RegisterOwnerRequest,
    SessionOut,
    SessionStatusResponse,
    StopSessionResponse,
    AgentOut,
    AgentDetailResponse,
    OwnerOut,
)

__all__ = [
    "StartSessionRequest",
    "StopSessionRequest",
    "RegisterOwnerRequest",
    "SessionOut",
    "SessionStatusResponse",
    "StopSessionResponse",
    "AgentOut",
    "AgentDetailResponse",
    "OwnerOut",
]
