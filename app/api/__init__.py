# ============================================================================
# Agent Session Orchestrator
# API Routes Module
# ============================================================================

from app.api.sessions import router as sessions_router
from app.api.agents import router as agents_router
from app.api.users import router as users_router

__all__ = ["sessions_router", "agents_router", "users_router"]
