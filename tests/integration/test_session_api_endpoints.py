"""
============================================================================
Agent Session Orchestrator
Integration Test: Session API Endpoints
============================================================================

Reliability Level: L6 Critical
Input Constraints: FastAPI TestClient, dependency overrides
Side Effects: None (in-memory stores, mocked remote services)

Exercises the real application object (routers, schemas, exception
handlers) with the orchestrator wired to in-memory stores and MagicMock
remote services:
- Owner registration and /me
- Start, status, stop and list over HTTP
- Error bodies: top-level error_code, 400 instead of 422
- Agents with reputation, /metrics

The lifespan is not run: dependencies are overridden instead.

Python 3.8 Compatible
============================================================================
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from app.api.common import get_owner_registry, get_session_orchestrator
from app.main import app
from services.agent_catalog import build_default_catalog
from services.channel_service import (
    CHANNEL_SETTLED,
    ChannelCloseResult,
    ChannelHandle,
    ChannelService,
)
from services.execution_gateway import ExecutionGateway, ExecutionStatusReport, parse_trade
from services.owner_registry import OwnerRegistry
from services.remote_client import RemoteErrorCode, RemoteServiceError
from services.session_orchestrator import SessionOrchestrator
from services.session_store import RecordStoreError, build_in_memory_stores
from services.settlement_recorder import SettlementReceipt, SettlementRecorder


WALLET = "0xA11CE00000000000000000000000000000000001"
SAFE = "0x5afe000000000000000000000000000000000001"
HEADERS = {"x-wallet-address": WALLET}


# ============================================================================
# Fixtures
# ============================================================================

class Backend:
    """Orchestrator and owner registry behind the overridden dependencies."""

    def __init__(self):
        self.stores = build_in_memory_stores()
        self.owners = OwnerRegistry(self.stores.owners)
        self.channels = MagicMock(spec=ChannelService)
        self.channels.open.return_value = ChannelHandle(channel_id="ch_api_1")
        self.channels.close.return_value = ChannelCloseResult(CHANNEL_SETTLED, "0xfeed")
        self.execution = MagicMock(spec=ExecutionGateway)
        self.execution.start.return_value = None
        self.execution.stop.return_value = None
        self.execution.get_status.return_value = ExecutionStatusReport(pnl_usd=Decimal("0"))
        self.settlement = MagicMock(spec=SettlementRecorder)
        self.settlement.record.return_value = SettlementReceipt(receipt_id="0xreceipt")
        self.orchestrator = SessionOrchestrator(
            stores=self.stores,
            catalog=build_default_catalog(),
            owners=self.owners,
            channels=self.channels,
            execution=self.execution,
            settlement=self.settlement,
        )


@pytest.fixture
def backend():
    return Backend()


@pytest.fixture
def client(backend):
    """TestClient over the real app with orchestrator dependencies overridden."""
    app.dependency_overrides[get_session_orchestrator] = lambda: backend.orchestrator
    app.dependency_overrides[get_owner_registry] = lambda: backend.owners
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def registered(client):
    response = client.post("/api/users", headers=HEADERS, json={"safeAddress": SAFE})
    assert response.status_code == 200
    return response.json()


def start(client, **overrides):
    body = {"agentId": "trend-bandit-v1", "safeAddress": SAFE}
    body.update(overrides)
    return client.post("/api/sessions/start", headers=HEADERS, json=body)


# ============================================================================
# Owners
# ============================================================================

class TestOwnerEndpoints:

    def test_register_owner(self, client) -> None:
        response = client.post("/api/users", headers=HEADERS, json={"safeAddress": SAFE})

        data = response.json()
        assert response.status_code == 200
        assert data["walletAddress"] == WALLET.lower()
        assert data["safeAddress"] == SAFE
        assert data["registered"] is True
        assert data["userId"]

    def test_register_without_body(self, client) -> None:
        response = client.post("/api/users", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["safeAddress"] is None

    def test_register_is_idempotent(self, client, registered) -> None:
        again = client.post("/api/users", headers=HEADERS).json()

        assert again["userId"] == registered["userId"]

    def test_me_registered(self, client, registered) -> None:
        response = client.get("/api/me", headers={"x-wallet-address": WALLET.lower()})

        assert response.status_code == 200
        assert response.json()["userId"] == registered["userId"]

    def test_me_unregistered(self, client) -> None:
        response = client.get("/api/me", headers={"x-wallet-address": "0xNEW"})

        data = response.json()
        assert response.status_code == 200
        assert data["registered"] is False
        assert data["userId"] == "0xnew"

    def test_missing_wallet_header(self, client) -> None:
        response = client.get("/api/me")

        data = response.json()
        assert response.status_code == 400
        assert data["error_code"] == "REQ-001"
        assert data["error"] == "missing_wallet_address"
        assert "timestamp" in data


# ============================================================================
# Start
# ============================================================================

class TestStartEndpoint:

    def test_start_session(self, client, backend, registered) -> None:
        response = start(client, baseCollateralUsd="75.5", maxDurationSeconds=120)

        data = response.json()
        assert response.status_code == 200
        assert data["sessionId"].startswith("sess_")
        assert data["status"] == "running"
        assert data["channelId"] == "ch_api_1"
        assert data["market"] == "BTCUSDT_PERP"
        assert Decimal(data["baseCollateralUsd"]) == Decimal("75.5")
        assert data["maxDurationSeconds"] == 120
        assert data["pnlUsd"] == "0"
        assert data["endedAt"] is None
        assert data["outcome"]["degraded"] is False
        assert [s["name"] for s in data["outcome"]["steps"]] == [
            "open_channel", "persist_session", "start_execution",
        ]

    def test_start_defaults(self, client, registered) -> None:
        data = start(client).json()

        assert data["baseCollateralUsd"] == "50"
        assert data["maxDurationSeconds"] == 600

    def test_execution_failure_returns_error_session(self, client, backend, registered) -> None:
        backend.execution.start.side_effect = RemoteServiceError(
            "execution down", RemoteErrorCode.UNREACHABLE, "execution"
        )

        response = start(client)

        data = response.json()
        assert response.status_code == 200
        assert data["status"] == "error"
        assert data["endedAt"] is not None
        assert data["outcome"]["degraded"] is True
        assert data["outcome"]["steps"][-1]["errorCode"] == "RMT-003"

    def test_missing_header(self, client, registered) -> None:
        response = client.post(
            "/api/sessions/start", json={"agentId": "trend-bandit-v1", "safeAddress": SAFE}
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "REQ-001"

    @pytest.mark.parametrize("body", [
        {"safeAddress": SAFE},
        {"agentId": "trend-bandit-v1"},
        {"agentId": "  ", "safeAddress": SAFE},
        {"agentId": "trend-bandit-v1", "safeAddress": SAFE, "baseCollateralUsd": "-5"},
        {"agentId": "trend-bandit-v1", "safeAddress": SAFE, "baseCollateralUsd": "abc"},
        {"agentId": "trend-bandit-v1", "safeAddress": SAFE, "maxDurationSeconds": 0},
    ])
    def test_invalid_body_is_400(self, client, registered, body) -> None:
        response = client.post("/api/sessions/start", headers=HEADERS, json=body)

        data = response.json()
        assert response.status_code == 400
        assert data["error_code"] == "REQ-002"
        assert data["error"] == "invalid_request"

    def test_market_not_traded_by_agent(self, client, registered) -> None:
        response = start(client, market="ETHUSDT_PERP")

        assert response.status_code == 400
        assert response.json()["error_code"] == "SOR-007"

    def test_unknown_owner(self, client) -> None:
        response = start(client)

        assert response.status_code == 404
        assert response.json()["error_code"] == "SOR-003"

    def test_unknown_agent(self, client, registered) -> None:
        response = start(client, agentId="nope")

        assert response.status_code == 404
        assert response.json()["error"] == "agent_not_found"

    def test_channel_open_failure(self, client, backend, registered) -> None:
        backend.channels.open.side_effect = RemoteServiceError(
            "channel down", RemoteErrorCode.TIMEOUT, "channel"
        )

        response = start(client)

        assert response.status_code == 502
        assert response.json()["error_code"] == "SOR-010"
        assert backend.stores.sessions.scan_all() == []


# ============================================================================
# Status
# ============================================================================

class TestStatusEndpoint:

    def test_status_with_trades(self, client, backend, registered) -> None:
        session_id = start(client).json()["sessionId"]
        backend.execution.get_status.return_value = ExecutionStatusReport(
            pnl_usd=Decimal("4.2"),
            trades=[parse_trade(session_id, {
                "id": "t1",
                "symbol": "BTCUSDT_PERP",
                "side": "LONG",
                "sizeUsd": "20",
                "entryPrice": "64000",
                "openedAt": "2026-03-01T12:00:00Z",
            })],
        )

        response = client.get(f"/api/sessions/{session_id}/status")

        data = response.json()
        assert response.status_code == 200
        assert Decimal(data["pnlUsd"]) == Decimal("4.2")
        assert data["numTrades"] == 1
        assert data["lastAction"]["id"] == "t1"
        assert data["lastAction"]["side"] == "LONG"
        assert data["channel"] == {"channelId": "ch_api_1", "settlementStatus": "in_progress"}

    def test_status_unknown_session(self, client) -> None:
        response = client.get("/api/sessions/sess_missing/status")

        data = response.json()
        assert response.status_code == 404
        assert data["error_code"] == "SOR-002"
        assert data["error"] == "session_not_found"


# ============================================================================
# Stop
# ============================================================================

class TestStopEndpoint:

    def test_stop_session(self, client, backend, registered) -> None:
        session_id = start(client).json()["sessionId"]
        backend.execution.get_status.return_value = ExecutionStatusReport(pnl_usd=Decimal("12.34"))

        response = client.post(f"/api/sessions/{session_id}/stop")

        data = response.json()
        assert response.status_code == 200
        assert data["status"] == "closed"
        assert data["endedAt"] is not None
        assert Decimal(data["finalPnlUsd"]) == Decimal("12.34")
        assert data["summary"] == {"numTrades": 0, "winRate": "0.0000"}
        assert data["settlementReceipt"] == "0xreceipt"
        assert data["degraded"] is False
        backend.execution.stop.assert_called_once_with(session_id, "user_requested")

    def test_stop_with_reason(self, client, backend, registered) -> None:
        session_id = start(client).json()["sessionId"]

        response = client.post(f"/api/sessions/{session_id}/stop", json={"reason": "risk_limit"})

        assert response.status_code == 200
        backend.execution.stop.assert_called_once_with(session_id, "risk_limit")

    def test_stop_unknown_reason(self, client, registered) -> None:
        session_id = start(client).json()["sessionId"]

        response = client.post(f"/api/sessions/{session_id}/stop", json={"reason": "bored"})

        assert response.status_code == 400
        assert response.json()["error_code"] == "REQ-002"

    def test_degraded_stop_still_closes(self, client, backend, registered) -> None:
        session_id = start(client).json()["sessionId"]
        backend.channels.close.side_effect = RemoteServiceError(
            "channel down", RemoteErrorCode.UNREACHABLE, "channel"
        )

        data = client.post(f"/api/sessions/{session_id}/stop").json()

        assert data["status"] == "closed"
        assert data["degraded"] is True
        failed = [s for s in data["steps"] if not s["ok"]]
        assert [s["name"] for s in failed] == ["close_channel"]

    def test_stop_twice_is_idempotent(self, client, backend, registered) -> None:
        session_id = start(client).json()["sessionId"]
        first = client.post(f"/api/sessions/{session_id}/stop").json()

        second = client.post(f"/api/sessions/{session_id}/stop").json()

        assert second["endedAt"] == first["endedAt"]
        assert backend.execution.stop.call_count == 1

    def test_stop_error_session_tears_down(self, client, backend, registered) -> None:
        backend.execution.start.side_effect = RemoteServiceError(
            "execution down", RemoteErrorCode.UNREACHABLE, "execution"
        )
        session_id = start(client).json()["sessionId"]

        response = client.post(f"/api/sessions/{session_id}/stop")

        assert response.status_code == 200
        assert response.json()["status"] == "closed"
        backend.channels.close.assert_called_once_with("ch_api_1")

    def test_trade_read_failure_after_stop(self, client, backend, registered) -> None:
        session_id = start(client).json()["sessionId"]
        backend.stores.trades.scan_by = MagicMock(side_effect=RecordStoreError("trades down"))

        response = client.post(f"/api/sessions/{session_id}/stop")

        data = response.json()
        assert response.status_code == 200
        assert data["status"] == "closed"
        assert data["summary"] == {"numTrades": 0, "winRate": "0.0000"}
        assert backend.stores.sessions.get(session_id).status.value == "closed"

    def test_stop_unknown_session(self, client) -> None:
        response = client.post("/api/sessions/sess_missing/stop")

        assert response.status_code == 404


# ============================================================================
# List / Agents / System
# ============================================================================

class TestListAndAgents:

    def test_list_sessions(self, client, backend, registered) -> None:
        first = start(client).json()["sessionId"]
        second = start(client).json()["sessionId"]

        response = client.get("/api/sessions", headers=HEADERS)

        assert response.status_code == 200
        assert sorted(s["sessionId"] for s in response.json()) == sorted([first, second])

    def test_list_sessions_unknown_wallet(self, client) -> None:
        response = client.get("/api/sessions", headers={"x-wallet-address": "0xnobody"})

        assert response.status_code == 200
        assert response.json() == []

    def test_list_agents(self, client, backend, registered) -> None:
        session_id = start(client).json()["sessionId"]
        backend.execution.get_status.return_value = ExecutionStatusReport(pnl_usd=Decimal("10"))
        client.post(f"/api/sessions/{session_id}/stop")

        agents = {a["id"]: a for a in client.get("/api/agents").json()}

        assert sorted(agents) == ["mean-reversion-v1", "trend-bandit-v1"]
        trend = agents["trend-bandit-v1"]
        assert trend["reputation"]["sessions"] == 1
        assert trend["reputation"]["winRate"] == "1.0000"
        assert Decimal(trend["reputation"]["avgPnlUsd"]) == Decimal("10")
        assert trend["riskProfile"]["maxLeverage"] == 5
        assert trend["markets"] == ["BTCUSDT_PERP"]

    def test_agent_detail(self, client, backend, registered) -> None:
        session_id = start(client).json()["sessionId"]
        client.post(f"/api/sessions/{session_id}/stop")

        data = client.get("/api/agents/trend-bandit-v1").json()

        assert [s["sessionId"] for s in data["lastSessions"]] == [session_id]
        assert data["payoutAddress"] == "0x0000000000000000000000000000000000000001"

    def test_agent_detail_unknown(self, client) -> None:
        response = client.get("/api/agents/nope")

        assert response.status_code == 404
        assert response.json()["error_code"] == "SOR-004"

    def test_metrics_exposed(self, client, registered) -> None:
        start(client)

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "session_orchestrator_sessions_started_total" in response.text

    def test_health_before_startup(self, client) -> None:
        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["ok"] is False


class TestNotReady:

    def test_orchestrator_not_initialized(self) -> None:
        app.dependency_overrides.clear()
        client = TestClient(app)

        response = client.get("/api/agents")

        assert response.status_code == 503
        assert response.json()["error_code"] == "SYS-503"
