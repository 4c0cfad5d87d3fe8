"""
============================================================================
Agent Session Orchestrator - Record Store
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: Amounts persisted as exact decimal strings
Traceability: Every write logged with record id

STORE CONTRACT (RecordStore):
    put(record)                 Insert a new record (duplicate id → STO-002)
    get(record_id)              Record or None
    update(record_id, **fields) Read-then-replace; returns new record or None
    scan_by(field, value)       All records whose field equals value
    scan_all()                  Every record

IMPLEMENTATIONS:
    - InMemoryRecordStore: dict guarded by a lock, copies in and out
    - SqlRecordStore:      SQLAlchemy text() queries, rows mapped by RecordCodec

Callers never receive a live reference to stored state. Every update is a
dataclasses.replace() of the current record, so a reader never observes a
half-applied write.

ERROR CODES:
    - STO-001: Persistence failure
    - STO-002: Duplicate record id
    - STO-003: Unknown field

============================================================================
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List, Callable, Tuple
from dataclasses import dataclass, replace, fields as dataclass_fields
from enum import Enum
import copy
import json
import logging
import threading

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.database.session import create_schema, create_session_factory, session_scope
from services.session_models import (
    Session,
    SessionStatus,
    Trade,
    TradeSide,
    Owner,
    OutcomeReport,
    to_usd,
    optional_usd,
    parse_timestamp,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Error Codes
# =============================================================================

class StoreErrorCode:
    """Record store error codes for audit logging."""
    PERSISTENCE_FAILURE = "STO-001"
    DUPLICATE_RECORD = "STO-002"
    UNKNOWN_FIELD = "STO-003"


class RecordStoreError(Exception):
    """
    Raised when the store cannot complete a read or write.

    Reliability Level: L6 Critical
    """

    def __init__(self, message: str, error_code: str = StoreErrorCode.PERSISTENCE_FAILURE):
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


# =============================================================================
# Store Contract
# =============================================================================

class RecordStore(ABC):
    """Keyed collection of immutable-by-convention dataclass records."""

    name: str = "records"

    @abstractmethod
    def put(self, record: Any) -> Any:
        """Insert a new record. Raises RecordStoreError on duplicate id."""

    @abstractmethod
    def get(self, record_id: str) -> Optional[Any]:
        """Return a copy of the record or None."""

    @abstractmethod
    def update(self, record_id: str, **changes: Any) -> Optional[Any]:
        """Replace fields on an existing record. Returns None if absent."""

    @abstractmethod
    def scan_by(self, field: str, value: Any) -> List[Any]:
        """Return every record whose field equals value."""

    @abstractmethod
    def scan_all(self) -> List[Any]:
        """Return every record."""


def _check_fields(record_type: type, names, store_name: str) -> None:
    known = {f.name for f in dataclass_fields(record_type)}
    unknown = [n for n in names if n not in known]
    if unknown:
        raise RecordStoreError(
            f"Unknown field(s) {unknown} for {store_name}",
            StoreErrorCode.UNKNOWN_FIELD,
        )


# =============================================================================
# In-Memory Implementation
# =============================================================================

class InMemoryRecordStore(RecordStore):
    """
    Process-local store used in development, tests, and when no
    DATABASE_URL is configured.
    """

    def __init__(self, name: str, record_type: type):
        self.name = name
        self._record_type = record_type
        self._records: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def put(self, record: Any) -> Any:
        with self._lock:
            if record.id in self._records:
                raise RecordStoreError(
                    f"Duplicate record id in {self.name}: {record.id}",
                    StoreErrorCode.DUPLICATE_RECORD,
                )
            self._records[record.id] = copy.deepcopy(record)
        logger.debug(f"[SESSION-STORE] put | store={self.name} | id={record.id}")
        return copy.deepcopy(record)

    def get(self, record_id: str) -> Optional[Any]:
        with self._lock:
            record = self._records.get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def update(self, record_id: str, **changes: Any) -> Optional[Any]:
        _check_fields(self._record_type, changes.keys(), self.name)
        with self._lock:
            current = self._records.get(record_id)
            if current is None:
                return None
            updated = replace(current, **changes)
            self._records[record_id] = copy.deepcopy(updated)
        logger.debug(
            f"[SESSION-STORE] update | store={self.name} | id={record_id} | "
            f"fields={sorted(changes.keys())}"
        )
        return updated

    def scan_by(self, field: str, value: Any) -> List[Any]:
        _check_fields(self._record_type, [field], self.name)
        with self._lock:
            return [
                copy.deepcopy(r) for r in self._records.values()
                if getattr(r, field) == value
            ]

    def scan_all(self) -> List[Any]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._records.values()]


# =============================================================================
# Row Codecs
# =============================================================================

def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _str_or_none(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def _iso_or_none(value: Any) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class RecordCodec:
    """
    Maps one dataclass record type onto one table.

    encode_value converts a single field value to its column representation
    so scan_by() can bind typed values (enums, timestamps).
    """
    table: str
    record_type: type
    columns: Tuple[str, ...]
    to_row: Callable[[Any], Dict[str, Any]]
    from_row: Callable[[Dict[str, Any]], Any]

    def encode_value(self, field: str, value: Any) -> Any:
        if hasattr(value, "isoformat"):
            return value.isoformat()
        return _enum_value(value)


def _session_to_row(s: Session) -> Dict[str, Any]:
    return {
        "id": s.id,
        "user_id": s.user_id,
        "agent_id": s.agent_id,
        "safe_address": s.safe_address,
        "channel_id": s.channel_id,
        "status": s.status.value,
        "started_at": s.started_at.isoformat(),
        "ended_at": _iso_or_none(s.ended_at),
        "pnl_usd": str(s.pnl_usd),
        "market": s.market,
        "base_collateral_usd": _str_or_none(s.base_collateral_usd),
        "max_duration_seconds": s.max_duration_seconds,
        "outcome": json.dumps(s.outcome.to_dict()) if s.outcome is not None else None,
    }


def _session_from_row(row: Dict[str, Any]) -> Session:
    outcome = row.get("outcome")
    return Session(
        id=row["id"],
        user_id=row["user_id"],
        agent_id=row["agent_id"],
        safe_address=row["safe_address"],
        channel_id=row["channel_id"],
        status=SessionStatus(row["status"]),
        started_at=parse_timestamp(row["started_at"]),
        ended_at=parse_timestamp(row["ended_at"]),
        pnl_usd=to_usd(row["pnl_usd"]),
        market=row["market"],
        base_collateral_usd=optional_usd(row["base_collateral_usd"]),
        max_duration_seconds=row["max_duration_seconds"],
        outcome=OutcomeReport.from_dict(json.loads(outcome)) if outcome else None,
    )


def _trade_to_row(t: Trade) -> Dict[str, Any]:
    return {
        "id": t.id,
        "session_id": t.session_id,
        "symbol": t.symbol,
        "side": t.side.value,
        "size_usd": str(t.size_usd),
        "entry_price": str(t.entry_price),
        "exit_price": _str_or_none(t.exit_price),
        "opened_at": t.opened_at.isoformat(),
        "closed_at": _iso_or_none(t.closed_at),
        "pnl_usd": _str_or_none(t.pnl_usd),
    }


def _trade_from_row(row: Dict[str, Any]) -> Trade:
    return Trade(
        id=row["id"],
        session_id=row["session_id"],
        symbol=row["symbol"],
        side=TradeSide(row["side"]),
        size_usd=to_usd(row["size_usd"]),
        entry_price=to_usd(row["entry_price"]),
        exit_price=optional_usd(row["exit_price"]),
        opened_at=parse_timestamp(row["opened_at"]),
        closed_at=parse_timestamp(row["closed_at"]),
        pnl_usd=optional_usd(row["pnl_usd"]),
    )


def _owner_to_row(o: Owner) -> Dict[str, Any]:
    return {
        "id": o.id,
        "wallet_address": o.wallet_address,
        "safe_address": o.safe_address,
        "created_at": o.created_at.isoformat(),
    }


def _owner_from_row(row: Dict[str, Any]) -> Owner:
    return Owner(
        id=row["id"],
        wallet_address=row["wallet_address"],
        safe_address=row["safe_address"],
        created_at=parse_timestamp(row["created_at"]),
    )


SESSION_CODEC = RecordCodec(
    table="agent_sessions",
    record_type=Session,
    columns=(
        "id", "user_id", "agent_id", "safe_address", "channel_id", "status",
        "started_at", "ended_at", "pnl_usd", "market", "base_collateral_usd",
        "max_duration_seconds", "outcome",
    ),
    to_row=_session_to_row,
    from_row=_session_from_row,
)

TRADE_CODEC = RecordCodec(
    table="session_trades",
    record_type=Trade,
    columns=(
        "id", "session_id", "symbol", "side", "size_usd", "entry_price",
        "exit_price", "opened_at", "closed_at", "pnl_usd",
    ),
    to_row=_trade_to_row,
    from_row=_trade_from_row,
)

OWNER_CODEC = RecordCodec(
    table="session_owners",
    record_type=Owner,
    columns=("id", "wallet_address", "safe_address", "created_at"),
    to_row=_owner_to_row,
    from_row=_owner_from_row,
)


# =============================================================================
# SQL Implementation
# =============================================================================

class SqlRecordStore(RecordStore):
    """
    SQLAlchemy-backed store. One table per codec.

    Reliability Level: L6 Critical
    Side Effects: Database reads/writes; every write commits or rolls back
    """

    def __init__(self, engine: Engine, codec: RecordCodec):
        self.name = codec.table
        self._codec = codec
        self._session_factory = create_session_factory(engine)
        self._select = f"SELECT {', '.join(codec.columns)} FROM {codec.table}"

    def _fail(self, action: str, record_id: Optional[str], e: Exception) -> RecordStoreError:
        error_msg = (
            f"[{StoreErrorCode.PERSISTENCE_FAILURE}] {action} failed | "
            f"table={self.name} | id={record_id} | error={str(e)}"
        )
        logger.error(error_msg)
        return RecordStoreError(
            f"{action} failed on {self.name}: {e}",
            StoreErrorCode.PERSISTENCE_FAILURE,
        )

    def put(self, record: Any) -> Any:
        row = self._codec.to_row(record)
        columns = self._codec.columns
        query = text(
            f"INSERT INTO {self.name} ({', '.join(columns)}) "
            f"VALUES ({', '.join(':' + c for c in columns)})"
        )
        try:
            with session_scope(self._session_factory) as db:
                db.execute(query, row)
                db.commit()
        except IntegrityError as e:
            raise RecordStoreError(
                f"Duplicate record id in {self.name}: {record.id}",
                StoreErrorCode.DUPLICATE_RECORD,
            ) from e
        except SQLAlchemyError as e:
            raise self._fail("INSERT", record.id, e) from e
        logger.debug(f"[SESSION-STORE] put | store={self.name} | id={record.id}")
        return record

    def get(self, record_id: str) -> Optional[Any]:
        query = text(f"{self._select} WHERE id = :id")
        try:
            with session_scope(self._session_factory) as db:
                row = db.execute(query, {"id": record_id}).mappings().first()
        except SQLAlchemyError as e:
            raise self._fail("SELECT", record_id, e) from e
        return self._codec.from_row(dict(row)) if row is not None else None

    def update(self, record_id: str, **changes: Any) -> Optional[Any]:
        _check_fields(self._codec.record_type, changes.keys(), self.name)
        assignments = ", ".join(f"{c} = :{c}" for c in self._codec.columns if c != "id")
        select_query = text(f"{self._select} WHERE id = :id")
        update_query = text(f"UPDATE {self.name} SET {assignments} WHERE id = :id")
        try:
            with session_scope(self._session_factory) as db:
                row = db.execute(select_query, {"id": record_id}).mappings().first()
                if row is None:
                    return None
                updated = replace(self._codec.from_row(dict(row)), **changes)
                db.execute(update_query, self._codec.to_row(updated))
                db.commit()
        except SQLAlchemyError as e:
            raise self._fail("UPDATE", record_id, e) from e
        logger.debug(
            f"[SESSION-STORE] update | store={self.name} | id={record_id} | "
            f"fields={sorted(changes.keys())}"
        )
        return updated

    def scan_by(self, field: str, value: Any) -> List[Any]:
        if field not in self._codec.columns:
            raise RecordStoreError(
                f"Unknown field(s) ['{field}'] for {self.name}",
                StoreErrorCode.UNKNOWN_FIELD,
            )
        query = text(f"{self._select} WHERE {field} = :value")
        params = {"value": self._codec.encode_value(field, value)}
        return self._fetch(query, params)

    def scan_all(self) -> List[Any]:
        return self._fetch(text(self._select), {})

    def _fetch(self, query, params: Dict[str, Any]) -> List[Any]:
        try:
            with session_scope(self._session_factory) as db:
                rows = db.execute(query, params).mappings().all()
        except SQLAlchemyError as e:
            raise self._fail("SELECT", None, e) from e
        return [self._codec.from_row(dict(r)) for r in rows]


# =============================================================================
# Store Bundle
# =============================================================================

@dataclass
class SessionStores:
    """The three collections the orchestrator persists to."""
    sessions: RecordStore
    trades: RecordStore
    owners: RecordStore


def build_in_memory_stores() -> SessionStores:
    """Process-local stores (development and tests)."""
    return SessionStores(
        sessions=InMemoryRecordStore("agent_sessions", Session),
        trades=InMemoryRecordStore("session_trades", Trade),
        owners=InMemoryRecordStore("session_owners", Owner),
    )


def build_sql_stores(engine: Engine, ensure_schema: bool = True) -> SessionStores:
    """SQL-backed stores sharing one engine."""
    if ensure_schema:
        create_schema(engine)
    return SessionStores(
        sessions=SqlRecordStore(engine, SESSION_CODEC),
        trades=SqlRecordStore(engine, TRADE_CODEC),
        owners=SqlRecordStore(engine, OWNER_CODEC),
    )


# =============================================================================
# Per-Session Locks
# =============================================================================

class SessionLockRegistry:
    """
    One lock per session id.

    Held only across a record's read-validate-write, never across a
    remote call.
    """

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, session_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_id] = lock
            return lock


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "StoreErrorCode",
    "RecordStoreError",
    "RecordStore",
    "InMemoryRecordStore",
    "RecordCodec",
    "SqlRecordStore",
    "SESSION_CODEC",
    "TRADE_CODEC",
    "OWNER_CODEC",
    "SessionStores",
    "build_in_memory_stores",
    "build_sql_stores",
    "SessionLockRegistry",
]
