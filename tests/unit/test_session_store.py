"""
Unit Tests for the Session Record Stores

Reliability Level: L6 Critical
Python 3.8 Compatible

Every test runs against both implementations:
- InMemoryRecordStore
- SqlRecordStore on SQLite in-memory (StaticPool)

Covers put/get round-trips (Decimal and OutcomeReport intact), duplicate
ids (STO-002), read-then-replace updates, unknown fields (STO-003) and
scan_by with enum values.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from app.database.session import create_db_engine
from services.owner_registry import OwnerRegistry
from services.session_models import (
    OutcomeReport,
    Owner,
    Session,
    SessionStatus,
    StepResult,
    Trade,
    TradeSide,
)
from services.session_store import (
    RecordStoreError,
    SessionLockRegistry,
    StoreErrorCode,
    build_in_memory_stores,
    build_sql_stores,
)


T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_session(session_id: str = "sess_1", **overrides) -> Session:
    values = dict(
        id=session_id,
        user_id="owner_1",
        agent_id="trend-bandit-v1",
        safe_address="0x5afe",
        channel_id="ch_1",
        status=SessionStatus.RUNNING,
        started_at=T0,
        pnl_usd=Decimal("12.5"),
        market="BTCUSDT_PERP",
        base_collateral_usd=Decimal("50"),
        max_duration_seconds=600,
    )
    values.update(overrides)
    return Session(**values)


def make_trade(trade_id: str = "t1", session_id: str = "sess_1", **overrides) -> Trade:
    values = dict(
        id=trade_id,
        session_id=session_id,
        symbol="BTCUSDT_PERP",
        side=TradeSide.LONG,
        size_usd=Decimal("25"),
        entry_price=Decimal("64000.5"),
        opened_at=T0,
    )
    values.update(overrides)
    return Trade(**values)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(params=["memory", "sqlite"])
def stores(request):
    if request.param == "memory":
        yield build_in_memory_stores()
    else:
        engine = create_db_engine("sqlite://")
        yield build_sql_stores(engine)
        engine.dispose()


# =============================================================================
# Put / Get
# =============================================================================

class TestPutGet:

    def test_session_round_trip(self, stores) -> None:
        session = make_session()
        stores.sessions.put(session)

        loaded = stores.sessions.get("sess_1")

        assert loaded == session
        assert loaded.pnl_usd == Decimal("12.5")
        assert loaded.started_at == T0
        assert loaded.ended_at is None

    def test_outcome_round_trip(self, stores) -> None:
        report = OutcomeReport(operation="stop", session_id="sess_1")
        report.add(StepResult(name="stop_execution", ok=True))
        report.add(StepResult(
            name="close_channel", ok=False, error="channel down", error_code="RMT-003",
        ))
        report.completed_at = T0 + timedelta(minutes=5)
        stores.sessions.put(make_session(outcome=report))

        loaded = stores.sessions.get("sess_1")

        assert loaded.outcome == report
        assert loaded.outcome.is_degraded
        assert loaded.outcome.step("close_channel").error_code == "RMT-003"

    def test_get_missing_returns_none(self, stores) -> None:
        assert stores.sessions.get("nope") is None

    def test_duplicate_id_rejected(self, stores) -> None:
        stores.sessions.put(make_session())

        with pytest.raises(RecordStoreError) as exc_info:
            stores.sessions.put(make_session())

        assert exc_info.value.error_code == StoreErrorCode.DUPLICATE_RECORD

    def test_trade_round_trip_with_open_fields(self, stores) -> None:
        trade = make_trade()
        stores.trades.put(trade)

        loaded = stores.trades.get("t1")

        assert loaded == trade
        assert loaded.exit_price is None
        assert loaded.is_closed is False

    def test_returned_record_is_a_copy(self, stores) -> None:
        stores.sessions.put(make_session())
        loaded = stores.sessions.get("sess_1")
        loaded.pnl_usd = Decimal("999")

        assert stores.sessions.get("sess_1").pnl_usd == Decimal("12.5")


# =============================================================================
# Update
# =============================================================================

class TestUpdate:

    def test_update_replaces_fields(self, stores) -> None:
        stores.sessions.put(make_session())

        updated = stores.sessions.update(
            "sess_1", status=SessionStatus.CLOSED, ended_at=T0 + timedelta(hours=1),
        )

        assert updated.status == SessionStatus.CLOSED
        assert updated.pnl_usd == Decimal("12.5")
        assert stores.sessions.get("sess_1") == updated

    def test_update_missing_returns_none(self, stores) -> None:
        assert stores.sessions.update("nope", pnl_usd=Decimal("1")) is None

    def test_update_unknown_field_rejected(self, stores) -> None:
        stores.sessions.put(make_session())

        with pytest.raises(RecordStoreError) as exc_info:
            stores.sessions.update("sess_1", balance=Decimal("1"))

        assert exc_info.value.error_code == StoreErrorCode.UNKNOWN_FIELD

    def test_trade_terminal_fields_filled(self, stores) -> None:
        stores.trades.put(make_trade())

        stores.trades.update(
            "t1",
            exit_price=Decimal("64100"),
            closed_at=T0 + timedelta(minutes=3),
            pnl_usd=Decimal("-1.25"),
        )

        loaded = stores.trades.get("t1")
        assert loaded.is_closed
        assert loaded.pnl_usd == Decimal("-1.25")


# =============================================================================
# Scan
# =============================================================================

class TestScan:

    def test_scan_by_enum_value(self, stores) -> None:
        stores.sessions.put(make_session("a"))
        stores.sessions.put(make_session("b", status=SessionStatus.CLOSED, ended_at=T0))
        stores.sessions.put(make_session("c"))

        running = stores.sessions.scan_by("status", SessionStatus.RUNNING)

        assert sorted(s.id for s in running) == ["a", "c"]

    def test_scan_by_string_field(self, stores) -> None:
        stores.trades.put(make_trade("t1", "sess_1"))
        stores.trades.put(make_trade("t2", "sess_2"))

        assert [t.id for t in stores.trades.scan_by("session_id", "sess_2")] == ["t2"]

    def test_scan_by_unknown_field_rejected(self, stores) -> None:
        with pytest.raises(RecordStoreError) as exc_info:
            stores.sessions.scan_by("balance", 1)

        assert exc_info.value.error_code == StoreErrorCode.UNKNOWN_FIELD

    def test_scan_all(self, stores) -> None:
        stores.sessions.put(make_session("a"))
        stores.sessions.put(make_session("b"))

        assert sorted(s.id for s in stores.sessions.scan_all()) == ["a", "b"]


# =============================================================================
# Owner Registry over both stores
# =============================================================================

class TestOwnerRegistry:

    def test_register_is_idempotent_by_wallet(self, stores) -> None:
        registry = OwnerRegistry(stores.owners)

        first = registry.register_owner("0xAbC")
        second = registry.register_owner("0xabc ")

        assert first.id == second.id
        assert first.wallet_address == "0xabc"
        assert len(stores.owners.scan_all()) == 1

    def test_register_updates_safe_address(self, stores) -> None:
        registry = OwnerRegistry(stores.owners)
        owner = registry.register_owner("0xabc")

        updated = registry.register_owner("0xABC", safe_address="0x5afe")

        assert updated.id == owner.id
        assert registry.get_owner(owner.id).safe_address == "0x5afe"

    def test_find_by_wallet_is_case_insensitive(self, stores) -> None:
        registry = OwnerRegistry(stores.owners)
        owner = registry.register_owner("0xAbC")

        assert registry.find_by_wallet("0XABC").id == owner.id
        assert registry.find_by_wallet("0xdef") is None
        assert registry.find_by_wallet("") is None

    def test_empty_wallet_rejected(self, stores) -> None:
        with pytest.raises(ValueError):
            OwnerRegistry(stores.owners).register_owner("   ")


class TestSqlOwnerConstraints:

    def test_wallet_address_unique(self) -> None:
        engine = create_db_engine("sqlite://")
        stores = build_sql_stores(engine)
        stores.owners.put(Owner(id="o1", wallet_address="0xabc", safe_address=None, created_at=T0))

        with pytest.raises(RecordStoreError) as exc_info:
            stores.owners.put(Owner(id="o2", wallet_address="0xabc", safe_address=None, created_at=T0))

        assert exc_info.value.error_code == StoreErrorCode.DUPLICATE_RECORD
        engine.dispose()


class TestSessionLockRegistry:

    def test_same_session_same_lock(self) -> None:
        locks = SessionLockRegistry()
        assert locks.lock_for("a") is locks.lock_for("a")
        assert locks.lock_for("a") is not locks.lock_for("b")
