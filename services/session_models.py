"""
============================================================================
Agent Session Orchestrator - Domain Records
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: All financial values use decimal.Decimal with ROUND_HALF_EVEN
Traceability: Every session carries its own id through every record

RECORDS:
    - Session:       Bounded delegation of capital to a trading agent
    - Trade:         A position opened by the execution service for a session
    - Agent:         Read-only execution profile (provisioned out of band)
    - Owner:         Registered wallet identity that starts sessions
    - StepResult:    Outcome of a single named orchestration step
    - OutcomeReport: Ordered StepResults of one start/stop operation

Records are plain dataclasses. Mutation goes through the store with
dataclasses.replace() (read-then-replace), never in place.

============================================================================
"""

from decimal import Decimal, ROUND_HALF_EVEN, InvalidOperation
from typing import Optional, Dict, Any, List, Tuple
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime, timezone


# =============================================================================
# Constants
# =============================================================================

# 8 decimal places for USD amounts and prices reported by the execution service
PRECISION_USD = Decimal("0.00000001")

ZERO_USD = Decimal("0")


# =============================================================================
# Enums
# =============================================================================

class SessionStatus(Enum):
    """
    Session lifecycle states.

    State Machine:
        pending → running → closing → closed
        pending|running|closing → error (unrecoverable setup failure)

    Terminal States: closed, error
    """
    PENDING = "pending"
    RUNNING = "running"
    CLOSING = "closing"
    CLOSED = "closed"
    ERROR = "error"


class TradeSide(Enum):
    """Direction of a futures position."""
    LONG = "LONG"
    SHORT = "SHORT"


class StopReason(Enum):
    """Why a session teardown was requested."""
    USER_REQUESTED = "user_requested"
    TIMEOUT = "timeout"
    RISK_LIMIT = "risk_limit"


class SettlementStatus(Enum):
    """Derived channel settlement status reported with session status."""
    SETTLED = "settled"
    IN_PROGRESS = "in_progress"


# =============================================================================
# Helpers
# =============================================================================

def utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def to_usd(value: Any) -> Decimal:
    """
    Convert a remote or user supplied amount to a quantized Decimal.

    Floats are routed through str() so binary noise never reaches the ledger.

    Raises:
        ValueError: If value is None or not numeric
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f"Not a numeric amount: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Not a numeric amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Amount must be finite: {value!r}")
    return amount.quantize(PRECISION_USD, rounding=ROUND_HALF_EVEN)


def optional_usd(value: Any) -> Optional[Decimal]:
    """Like to_usd() but maps None to None."""
    if value is None:
        return None
    return to_usd(value)


def format_usd(value: Optional[Decimal]) -> Optional[str]:
    """Fixed-point string for the wire (never exponent notation such as 0E-8)."""
    if value is None:
        return None
    return format(value, "f")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 string, epoch milliseconds or datetime into UTC.

    Returns None for None/empty input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


# =============================================================================
# Outcome Reports
# =============================================================================

@dataclass
class StepResult:
    """
    Result of a single named orchestration step.

    A failed step carries the error message and code; a successful step
    may carry a small JSON-safe payload (channel id, receipt id, pnl).
    """
    name: str
    ok: bool
    value: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "ok": self.ok,
            "value": self.value,
            "error": self.error,
            "error_code": self.error_code,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepResult":
        return cls(
            name=str(data["name"]),
            ok=bool(data["ok"]),
            value=data.get("value"),
            error=data.get("error"),
            error_code=data.get("error_code"),
        )


@dataclass
class OutcomeReport:
    """
    Ordered step results of one orchestration operation (start or stop).

    Attached to the session record on the operation's final transition.
    A degraded report means at least one step failed but the operation
    still completed.
    """
    operation: str
    session_id: str
    steps: List[StepResult] = field(default_factory=list)
    completed_at: Optional[datetime] = None

    def add(self, step: StepResult) -> StepResult:
        self.steps.append(step)
        return step

    def step(self, name: str) -> Optional[StepResult]:
        for candidate in self.steps:
            if candidate.name == name:
                return candidate
        return None

    def failed_steps(self) -> List[StepResult]:
        return [s for s in self.steps if not s.ok]

    @property
    def is_degraded(self) -> bool:
        return any(not s.ok for s in self.steps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "session_id": self.session_id,
            "steps": [s.to_dict() for s in self.steps],
            "completed_at": _iso(self.completed_at),
            "degraded": self.is_degraded,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OutcomeReport":
        return cls(
            operation=str(data["operation"]),
            session_id=str(data["session_id"]),
            steps=[StepResult.from_dict(s) for s in data.get("steps", [])],
            completed_at=parse_timestamp(data.get("completed_at")),
        )


# =============================================================================
# Session / Trade / Agent / Owner
# =============================================================================

@dataclass
class Session:
    """
    A single delegated trading session between an owner and an agent.

    Invariants:
        - ended_at is set iff status is terminal (closed, error)
        - pnl_usd is the last observed value, not an accumulation
        - channel_id is non-null for every persisted session
    """
    id: str
    user_id: str
    agent_id: str
    safe_address: str
    channel_id: Optional[str]
    status: SessionStatus
    started_at: datetime
    ended_at: Optional[datetime] = None
    pnl_usd: Decimal = ZERO_USD
    market: Optional[str] = None
    base_collateral_usd: Optional[Decimal] = None
    max_duration_seconds: Optional[int] = None
    outcome: Optional[OutcomeReport] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/API responses."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "agent_id": self.agent_id,
            "safe_address": self.safe_address,
            "channel_id": self.channel_id,
            "status": self.status.value,
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "pnl_usd": format_usd(self.pnl_usd),
            "market": self.market,
            "base_collateral_usd": format_usd(self.base_collateral_usd),
            "max_duration_seconds": self.max_duration_seconds,
            "outcome": self.outcome.to_dict() if self.outcome else None,
        }


@dataclass
class Trade:
    """
    A position opened by the execution service within a session.

    exit_price, closed_at and pnl_usd are the terminal fill fields: they are
    populated once the trade closes and never overwritten afterwards.
    """
    id: str
    session_id: str
    symbol: str
    side: TradeSide
    size_usd: Decimal
    entry_price: Decimal
    opened_at: datetime
    exit_price: Optional[Decimal] = None
    closed_at: Optional[datetime] = None
    pnl_usd: Optional[Decimal] = None

    TERMINAL_FIELDS = ("exit_price", "closed_at", "pnl_usd")

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "symbol": self.symbol,
            "side": self.side.value,
            "size_usd": format_usd(self.size_usd),
            "entry_price": format_usd(self.entry_price),
            "exit_price": format_usd(self.exit_price),
            "opened_at": _iso(self.opened_at),
            "closed_at": _iso(self.closed_at),
            "pnl_usd": format_usd(self.pnl_usd),
        }


@dataclass(frozen=True)
class RiskProfile:
    """Informational bounds enforced by the execution service."""
    max_leverage: int
    max_position_usd: Decimal
    max_daily_loss_usd: Decimal


@dataclass(frozen=True)
class Agent:
    """Statically configured execution profile. Never mutated."""
    id: str
    name: str
    description: str
    payout_address: str
    risk_profile: RiskProfile
    learning_mode: str
    markets: Tuple[str, ...]

    @property
    def default_market(self) -> str:
        return self.markets[0]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "payout_address": self.payout_address,
            "risk_profile": {
                "max_leverage": self.risk_profile.max_leverage,
                "max_position_usd": format_usd(self.risk_profile.max_position_usd),
                "max_daily_loss_usd": format_usd(self.risk_profile.max_daily_loss_usd),
            },
            "learning_mode": self.learning_mode,
            "markets": list(self.markets),
        }


@dataclass
class Owner:
    """Registered wallet identity. wallet_address is stored lower-cased."""
    id: str
    wallet_address: str
    safe_address: Optional[str]
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "wallet_address": self.wallet_address,
            "safe_address": self.safe_address,
            "created_at": _iso(self.created_at),
        }


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "PRECISION_USD",
    "ZERO_USD",
    "SessionStatus",
    "TradeSide",
    "StopReason",
    "SettlementStatus",
    "StepResult",
    "OutcomeReport",
    "Session",
    "Trade",
    "RiskProfile",
    "Agent",
    "Owner",
    "utc_now",
    "to_usd",
    "optional_usd",
    "format_usd",
    "parse_timestamp",
]
