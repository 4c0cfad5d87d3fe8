"""
============================================================================
Agent Session Orchestrator - Services Layer
============================================================================

Session orchestration services: domain records, state machine, record
store, remote dependency gateways and reputation aggregation.

Reliability Level: L6 Critical
============================================================================
"""

from services.session_models import (
    Session,
    SessionStatus,
    Trade,
    TradeSide,
    Agent,
    RiskProfile,
    Owner,
    StopReason,
    StepResult,
    OutcomeReport,
)

from services.session_orchestrator import (
    SessionOrchestrator,
    SessionStatusView,
    AgentProfile,
    SessionOrchestratorError,
    NotFoundError,
    OwnerNotFoundError,
    AgentNotFoundError,
    SessionNotFoundError,
    HardDependencyError,
    ChannelOpenFailedError,
    SessionPersistenceError,
    InvalidSessionStateError,
    InvalidSessionRequestError,
)

from services.session_store import (
    SessionStores,
    build_in_memory_stores,
    build_sql_stores,
)

from services.orchestrator_config import (
    OrchestratorConfig,
    OrchestratorConfigurationError,
    get_orchestrator_config,
    reset_orchestrator_config,
)

__all__ = [
    # Records
    "Session",
    "SessionStatus",
    "Trade",
    "TradeSide",
    "Agent",
    "RiskProfile",
    "Owner",
    "StopReason",
    "StepResult",
    "OutcomeReport",
    # Orchestrator
    "SessionOrchestrator",
    "SessionStatusView",
    "AgentProfile",
    "SessionOrchestratorError",
    "NotFoundError",
    "OwnerNotFoundError",
    "AgentNotFoundError",
    "SessionNotFoundError",
    "HardDependencyError",
    "ChannelOpenFailedError",
    "SessionPersistenceError",
    "InvalidSessionStateError",
    "InvalidSessionRequestError",
    # Store
    "SessionStores",
    "build_in_memory_stores",
    "build_sql_stores",
    # Configuration
    "OrchestratorConfig",
    "OrchestratorConfigurationError",
    "get_orchestrator_config",
    "reset_orchestrator_config",
]
