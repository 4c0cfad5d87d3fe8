"""
============================================================================
Property-Based Tests for the Session Lifecycle
============================================================================

Reliability Level: L6 Critical
Python 3.8 Compatible

Drives the orchestrator with random sequences of start, status and stop
operations while remote dependencies fail at random, then checks the
persisted records after every operation.

Properties tested:
- Property 1: ended_at is set iff the session is terminal (closed, error)
- Property 2: every persisted session has a channel_id
- Property 3: a closed session never changes again
- Property 4: every stop ends in closed, whatever fails downstream
- Property 5: the status table only admits documented edges

============================================================================
"""

from decimal import Decimal
from typing import Dict, List
from unittest.mock import MagicMock

from hypothesis import given, settings
from hypothesis import strategies as st

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from services.agent_catalog import build_default_catalog
from services.channel_service import (
    CHANNEL_SETTLED,
    ChannelCloseResult,
    ChannelHandle,
    ChannelService,
)
from services.execution_gateway import ExecutionGateway, ExecutionStatusReport
from services.owner_registry import OwnerRegistry
from services.remote_client import RemoteErrorCode, RemoteServiceError
from services.session_models import Session, SessionStatus
from services.session_orchestrator import (
    ChannelOpenFailedError,
    SessionOrchestrator,
)
from services.session_state_machine import (
    TERMINAL_STATES,
    VALID_STATES,
    VALID_TRANSITIONS,
    validate_transition,
)
from services.session_store import build_in_memory_stores
from services.settlement_recorder import SettlementReceipt, SettlementRecorder


WALLET = "0xa11ce00000000000000000000000000000000001"
SAFE = "0x5afe000000000000000000000000000000000001"


# =============================================================================
# HYPOTHESIS STRATEGIES
# =============================================================================

pnl_strategy = st.decimals(
    min_value=Decimal("-1000"),
    max_value=Decimal("1000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)

start_op = st.tuples(st.just("start"), st.booleans(), st.booleans())
status_op = st.tuples(st.just("status"), st.integers(0, 20), st.booleans(), pnl_strategy)
stop_op = st.tuples(st.just("stop"), st.integers(0, 20), st.booleans(), pnl_strategy)

operations_strategy = st.lists(st.one_of(start_op, status_op, stop_op), min_size=1, max_size=25)


# =============================================================================
# Harness
# =============================================================================

def down(service: str) -> RemoteServiceError:
    return RemoteServiceError(f"{service} unavailable", RemoteErrorCode.UNREACHABLE, service)


class LifecycleHarness:
    """Fresh orchestrator per example: in-memory stores, mocked remotes."""

    def __init__(self):
        self.stores = build_in_memory_stores()
        owners = OwnerRegistry(self.stores.owners)
        owners.register_owner(WALLET)
        self.channels = MagicMock(spec=ChannelService)
        self.channels.open.return_value = ChannelHandle(channel_id="ch_prop")
        self.channels.close.return_value = ChannelCloseResult(CHANNEL_SETTLED)
        self.execution = MagicMock(spec=ExecutionGateway)
        self.execution.start.return_value = None
        self.execution.stop.return_value = None
        self.execution.get_status.return_value = ExecutionStatusReport(pnl_usd=Decimal("0"))
        self.settlement = MagicMock(spec=SettlementRecorder)
        self.settlement.record.return_value = SettlementReceipt(receipt_id="0xprop")
        self.orchestrator = SessionOrchestrator(
            stores=self.stores,
            catalog=build_default_catalog(),
            owners=owners,
            channels=self.channels,
            execution=self.execution,
            settlement=self.settlement,
        )
        self.session_ids: List[str] = []

    def pick(self, index: int) -> str:
        return self.session_ids[index % len(self.session_ids)]

    def remotes_failing(self, failing: bool, pnl: Decimal) -> None:
        self.execution.get_status.return_value = ExecutionStatusReport(pnl_usd=pnl)
        self.execution.get_status.side_effect = down("execution") if failing else None
        self.execution.stop.side_effect = down("execution") if failing else None
        self.channels.close.side_effect = down("channel") if failing else None
        self.settlement.record.side_effect = down("settlement") if failing else None

    def apply(self, op) -> None:
        kind = op[0]
        if kind == "start":
            _, channel_down, execution_down = op
            self.channels.open.side_effect = down("channel") if channel_down else None
            self.execution.start.side_effect = down("execution") if execution_down else None
            try:
                session = self.orchestrator.start_session(WALLET, "trend-bandit-v1", SAFE)
            except ChannelOpenFailedError:
                assert channel_down
                return
            assert not channel_down
            expected = SessionStatus.ERROR if execution_down else SessionStatus.RUNNING
            assert session.status == expected
            self.session_ids.append(session.id)
            return

        if not self.session_ids:
            return
        _, index, failing, pnl = op
        session_id = self.pick(index)
        self.remotes_failing(failing, pnl)

        if kind == "status":
            self.orchestrator.get_session_status(session_id)
            return

        stopped = self.orchestrator.stop_session(session_id)
        assert stopped.status == SessionStatus.CLOSED

    def all_sessions(self) -> Dict[str, Session]:
        return {s.id: s for s in self.stores.sessions.scan_all()}


# =============================================================================
# PROPERTIES 1-4: Persisted Records Under Random Operations
# =============================================================================

class TestLifecycleInvariantsUnderRandomOperations:
    """
    *For any* sequence of start/status/stop operations and any pattern of
    remote failures, the persisted records stay consistent.
    """

    @settings(max_examples=100, deadline=None)
    @given(operations=operations_strategy)
    def test_records_stay_consistent(self, operations) -> None:
        harness = LifecycleHarness()
        closed_snapshots: Dict[str, Session] = {}

        for op in operations:
            harness.apply(op)

            for session_id, session in harness.all_sessions().items():
                terminal = session.status.value in TERMINAL_STATES
                assert (session.ended_at is not None) == terminal
                assert session.channel_id
                if session_id in closed_snapshots:
                    assert session == closed_snapshots[session_id]
                elif session.status == SessionStatus.CLOSED:
                    closed_snapshots[session_id] = session

    @settings(max_examples=100, deadline=None)
    @given(failing=st.booleans(), pnl=pnl_strategy)
    def test_stop_always_reaches_closed(self, failing, pnl) -> None:
        harness = LifecycleHarness()
        session = harness.orchestrator.start_session(WALLET, "trend-bandit-v1", SAFE)
        harness.remotes_failing(failing, pnl)

        closed = harness.orchestrator.stop_session(session.id)

        assert closed.status == SessionStatus.CLOSED
        assert closed.outcome.is_degraded == failing
        if failing:
            assert closed.pnl_usd == session.pnl_usd
        else:
            assert closed.pnl_usd == pnl


# =============================================================================
# PROPERTY 5: Transition Table
# =============================================================================

class TestTransitionTableProperties:

    @settings(max_examples=100)
    @given(current=st.sampled_from(VALID_STATES), target=st.sampled_from(VALID_STATES))
    def test_only_documented_edges_accepted(self, current, target) -> None:
        is_valid, error_code = validate_transition(current, target)

        expected = current == target or target in VALID_TRANSITIONS[current]
        assert is_valid == expected
        assert (error_code is None) == expected

    @settings(max_examples=100)
    @given(target=st.sampled_from(VALID_STATES))
    def test_closed_is_absorbing(self, target) -> None:
        is_valid, _ = validate_transition("closed", target)

        assert is_valid == (target == "closed")

    @settings(max_examples=100)
    @given(target=st.sampled_from(VALID_STATES))
    def test_error_only_reopens_for_teardown(self, target) -> None:
        is_valid, _ = validate_transition("error", target)

        assert is_valid == (target in ("error", "closing"))
