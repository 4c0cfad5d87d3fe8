"""
============================================================================
Agent Session Orchestrator - Reputation Aggregation
============================================================================

Reliability Level: L5 High
Decimal Integrity: All calculations use decimal.Decimal with ROUND_HALF_EVEN
Side Effects: None (pure functions over persisted records)

FORMULAS (over closed sessions only):
    win_rate    = count(pnl_usd > 0) / count(closed)    (0 when none)
    avg_pnl_usd = sum(pnl_usd) / count(closed)           (0 when none)

Example: [+10, -5, +3, 0] → win_rate 0.5, avg_pnl_usd 2

============================================================================
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Iterable, List, Tuple

from services.session_models import Session, SessionStatus, Trade, PRECISION_USD, format_usd

# 4 decimal places for ratios
PRECISION_RATE = Decimal("0.0001")

ZERO = Decimal("0")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Reputation:
    sessions: int
    win_rate: Decimal
    avg_pnl_usd: Decimal

    def to_dict(self):
        return {
            "sessions": self.sessions,
            "win_rate": str(self.win_rate),
            "avg_pnl_usd": format_usd(self.avg_pnl_usd),
        }


def closed_sessions(sessions: Iterable[Session]) -> List[Session]:
    return [s for s in sessions if s.status == SessionStatus.CLOSED]


def _ratio(numerator: int, denominator: int) -> Decimal:
    if denominator == 0:
        return ZERO.quantize(PRECISION_RATE)
    return (Decimal(numerator) / Decimal(denominator)).quantize(
        PRECISION_RATE, rounding=ROUND_HALF_EVEN
    )


def compute_reputation(sessions: Iterable[Session]) -> Reputation:
    """
    Aggregate an agent's track record from its sessions.

    Sessions in any status other than closed are ignored.
    """
    closed = closed_sessions(sessions)
    total = len(closed)
    if total == 0:
        return Reputation(
            sessions=0,
            win_rate=ZERO.quantize(PRECISION_RATE),
            avg_pnl_usd=ZERO.quantize(PRECISION_USD),
        )

    winners = sum(1 for s in closed if s.pnl_usd > 0)
    pnl_sum = sum((s.pnl_usd for s in closed), ZERO)
    avg = (pnl_sum / Decimal(total)).quantize(PRECISION_USD, rounding=ROUND_HALF_EVEN)

    return Reputation(sessions=total, win_rate=_ratio(winners, total), avg_pnl_usd=avg)


def recent_sessions(sessions: Iterable[Session], limit: int = 10) -> List[Session]:
    """Closed sessions, most recently ended first (ties by id), at most limit."""
    closed = closed_sessions(sessions)
    # Two stable sorts: id ascending, then ended_at descending
    closed.sort(key=lambda s: s.id)
    closed.sort(key=lambda s: s.ended_at or _EPOCH, reverse=True)
    return closed[:limit]


def trade_summary(trades: Iterable[Trade]) -> Tuple[int, Decimal]:
    """
    (num_trades, win_rate) for a session's trades.

    A winning trade is a closed trade with positive pnl. The rate is taken
    over all trades, open ones included.
    """
    trades = list(trades)
    winners = sum(
        1 for t in trades
        if t.is_closed and t.pnl_usd is not None and t.pnl_usd > 0
    )
    return len(trades), _ratio(winners, len(trades))


__all__ = [
    "PRECISION_RATE",
    "Reputation",
    "closed_sessions",
    "compute_reputation",
    "recent_sessions",
    "trade_summary",
]
