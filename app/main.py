"""
============================================================================
Agent Session Orchestrator
FastAPI Application Entry Point
============================================================================

Reliability Level: L6 Critical
Input Constraints: Owner identity via x-wallet-address header
Side Effects: Session store writes, calls to channel/execution/settlement

WIRING (constructed once in the lifespan, torn down on shutdown):
    OrchestratorConfig ─┬─ DATABASE_URL set   → SqlRecordStore x3
                        ├─ DATABASE_URL unset → InMemoryRecordStore x3
                        ├─ RemoteServiceClient per remote service
                        ├─ CHANNEL_SERVICE_BASE_URL    → HttpChannelService
                        │                       unset → LocalChannelService
                        └─ SETTLEMENT_SERVICE_BASE_URL → HttpSettlementRecorder
                                                unset → LocalSettlementRecorder

============================================================================
"""

import os
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.agents import router as agents_router
from app.api.common import ApiErrorCode, error_detail
from app.api.sessions import router as sessions_router
from app.api.users import router as users_router
from app.database.session import check_database_connection, create_db_engine
from services.agent_catalog import build_default_catalog
from services.channel_service import ChannelService, HttpChannelService, LocalChannelService
from services.execution_gateway import ExecutionGateway
from services.orchestrator_config import OrchestratorConfig, get_orchestrator_config
from services.owner_registry import OwnerRegistry
from services.remote_client import RemoteServiceClient
from services.session_orchestrator import SessionOrchestrator
from services.session_store import build_in_memory_stores, build_sql_stores
from services.settlement_recorder import (
    HttpSettlementRecorder,
    LocalSettlementRecorder,
    SettlementRecorder,
)

import logging

# Configure module logger
logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

APP_VERSION = "1.0.0"


# ============================================================================
# COMPONENT WIRING
# ============================================================================

@dataclass
class OrchestratorComponents:
    """Everything the lifespan builds and must release on shutdown."""
    orchestrator: SessionOrchestrator
    owners: OwnerRegistry
    engine: Optional[Engine] = None
    clients: List[RemoteServiceClient] = field(default_factory=list)

    def close(self) -> None:
        for client in self.clients:
            client.close()
        if self.engine is not None:
            self.engine.dispose()


def build_components(config: OrchestratorConfig) -> OrchestratorComponents:
    """
    Construct stores, gateways and the orchestrator from configuration.

    Raises:
        ConnectionError: If DATABASE_URL is set but unreachable
    """
    engine = None
    if config.database_url:
        engine = create_db_engine(config.database_url)
        check_database_connection(engine)
        stores = build_sql_stores(engine)
    else:
        stores = build_in_memory_stores()

    clients: List[RemoteServiceClient] = []

    execution_client = RemoteServiceClient(
        service="execution",
        base_url=config.agent_service_base_url,
        timeout=config.execution_timeout_seconds,
        max_retries=config.remote_max_retries,
    )
    clients.append(execution_client)

    channels: ChannelService
    if config.channel_service_base_url:
        channel_client = RemoteServiceClient(
            service="channel",
            base_url=config.channel_service_base_url,
            timeout=config.channel_timeout_seconds,
            max_retries=config.remote_max_retries,
        )
        clients.append(channel_client)
        channels = HttpChannelService(channel_client)
    else:
        channels = LocalChannelService()

    settlement: SettlementRecorder
    if config.settlement_service_base_url:
        settlement_client = RemoteServiceClient(
            service="settlement",
            base_url=config.settlement_service_base_url,
            timeout=config.settlement_timeout_seconds,
            max_retries=config.remote_max_retries,
        )
        clients.append(settlement_client)
        settlement = HttpSettlementRecorder(settlement_client)
    else:
        settlement = LocalSettlementRecorder()

    owners = OwnerRegistry(stores.owners)
    orchestrator = SessionOrchestrator(
        stores=stores,
        catalog=build_default_catalog(),
        owners=owners,
        channels=channels,
        execution=ExecutionGateway(execution_client),
        settlement=settlement,
        default_collateral_usd=config.default_collateral_usd,
        default_max_duration_seconds=config.default_max_duration_seconds,
    )
    return OrchestratorComponents(
        orchestrator=orchestrator,
        owners=owners,
        engine=engine,
        clients=clients,
    )


# ============================================================================
# GLOBAL INSTANCES
# ============================================================================

# Components singleton (initialized in lifespan)
_components: Optional[OrchestratorComponents] = None


def get_orchestrator() -> Optional[SessionOrchestrator]:
    """
    Get the global SessionOrchestrator instance.

    Returns:
        SessionOrchestrator instance or None if not initialized
    """
    return _components.orchestrator if _components is not None else None


def get_owners() -> Optional[OwnerRegistry]:
    """Get the global OwnerRegistry instance, or None if not initialized."""
    return _components.owners if _components is not None else None


# ============================================================================
# APPLICATION LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager for startup/shutdown events.

    Startup:
        - Load and validate configuration (fail closed)
        - Verify database connectivity when DATABASE_URL is set
        - Build stores, gateways and the orchestrator

    Shutdown:
        - Close remote client sessions
        - Dispose the database engine
    """
    global _components

    print("=" * 60)
    print(f"AGENT SESSION ORCHESTRATOR v{APP_VERSION}")
    print("=" * 60)
    print(f"Startup Time: {datetime.now(timezone.utc).isoformat()}")

    try:
        config = get_orchestrator_config()
        print(f"[OK] Configuration loaded (env={config.app_env})")
    except Exception as e:
        print(f"[CRITICAL] Configuration invalid: {e}")
        raise

    try:
        _components = build_components(config)
    except Exception as e:
        print(f"[CRITICAL] Orchestrator initialization failed: {e}")
        print("[CRITICAL] System cannot start without its session store")
        raise

    if config.database_url:
        print("[OK] Database connection verified")
    else:
        print("[WARN] DATABASE_URL not set, sessions are kept in memory")
    print(f"[OK] Execution service: {config.agent_service_base_url}")
    if config.channel_service_base_url:
        print(f"[OK] Channel service: {config.channel_service_base_url}")
    else:
        print("[WARN] CHANNEL_SERVICE_BASE_URL not set, using local channel stand-in")
    if config.settlement_service_base_url:
        print(f"[OK] Settlement service: {config.settlement_service_base_url}")
    else:
        print("[WARN] SETTLEMENT_SERVICE_BASE_URL not set, using local settlement stand-in")
    print("[OK] Session Orchestrator initialized")
    print("=" * 60)

    yield

    print("=" * 60)
    print("AGENT SESSION ORCHESTRATOR - SHUTDOWN INITIATED")
    print(f"Shutdown Time: {datetime.now(timezone.utc).isoformat()}")
    if _components is not None:
        _components.close()
        _components = None
    print("[OK] Remote clients and database connections closed")
    print("=" * 60)


# ============================================================================
# FASTAPI APPLICATION
# ============================================================================

app = FastAPI(
    title="Agent Session Orchestrator",
    description=(
        "Starts, monitors and stops delegated trading sessions between an "
        "owner's safe and a trading agent.\n\n"
        "Remote failures during start delegation and teardown are reported "
        "in each session's outcome, never as HTTP errors."
    ),
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)


# ============================================================================
# MIDDLEWARE
# ============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Serve HTTPException detail dicts as the top-level error body."""
    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = error_detail(f"HTTP-{exc.status_code}", "http_error", str(exc.detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Missing or malformed input is a 400, not FastAPI's default 422."""
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        problems.append(f"{location}: {error.get('msg')}")
    message = "; ".join(problems) or "Invalid request"
    logger.warning(
        f"[{ApiErrorCode.VALIDATION_FAILED}] Request rejected | "
        f"path={request.url.path} | {message}"
    )
    return JSONResponse(
        status_code=400,
        content=error_detail(ApiErrorCode.VALIDATION_FAILED, "invalid_request", message),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unhandled errors.

    Side Effects: Logs error, returns safe response
    """
    logger.error(
        f"[{ApiErrorCode.INTERNAL}] Unhandled exception | path={request.url.path} | {exc}",
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content=error_detail(
            ApiErrorCode.INTERNAL,
            "internal_error",
            "Internal server error. This incident has been logged.",
        ),
    )


# ============================================================================
# ROUTERS
# ============================================================================

app.include_router(
    sessions_router,
    prefix="/api/sessions",
    tags=["Sessions"]
)

app.include_router(
    agents_router,
    prefix="/api/agents",
    tags=["Agents"]
)

app.include_router(
    users_router,
    prefix="/api",
    tags=["Users"]
)


# ============================================================================
# SYSTEM ENDPOINTS
# ============================================================================

@app.get(
    "/",
    summary="System Status",
    tags=["System"]
)
async def root():
    return {
        "system": "Agent Session Orchestrator",
        "version": APP_VERSION,
        "status": "operational" if _components is not None else "starting",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get(
    "/health",
    summary="Health Check",
    description="Lightweight health check for load balancers and monitoring.",
    tags=["System"]
)
def health_check():
    if _components is None:
        return JSONResponse(
            status_code=503,
            content={"ok": False, "status": "starting"}
        )
    if _components.engine is None:
        return {"ok": True, "status": "healthy", "database": "in-memory"}
    try:
        check_database_connection(_components.engine)
        return {"ok": True, "status": "healthy", "database": "connected"}
    except ConnectionError as e:
        return JSONResponse(
            status_code=503,
            content={"ok": False, "status": "unhealthy", "database": "disconnected", "error": str(e)}
        )


@app.get(
    "/metrics",
    summary="Prometheus Metrics",
    description="Exposes Prometheus metrics for observability.",
    tags=["Observability"]
)
async def metrics():
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )
