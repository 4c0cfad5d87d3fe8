"""
============================================================================
Agent Session Orchestrator v1.0.0
Observability Module - Prometheus Metrics
============================================================================

Reliability Level: L6 Critical
Input Constraints: None
Side Effects: Exposes Prometheus metrics

============================================================================
"""

from app.observability.metrics import (
    SESSIONS_STARTED,
    SESSIONS_STOPPED,
    STEP_FAILURES,
    RECONCILIATIONS,
    REMOTE_CALL_SECONDS,
    record_session_started,
    record_session_stopped,
    record_step_failure,
    record_reconciliation,
    record_remote_call,
)

__all__ = [
    "SESSIONS_STARTED",
    "SESSIONS_STOPPED",
    "STEP_FAILURES",
    "RECONCILIATIONS",
    "REMOTE_CALL_SECONDS",
    "record_session_started",
    "record_session_stopped",
    "record_step_failure",
    "record_reconciliation",
    "record_remote_call",
]
