"""
============================================================================
Agent Session Orchestrator - Session API Schemas
============================================================================

Reliability Level: L6 Critical
Input Constraints: Amounts as decimal strings or numbers, never NaN/Infinity
Side Effects: None (pure validation and serialization)

WIRE CONVENTIONS:
- Field names are camelCase on the wire, snake_case in Python
- Every Decimal amount is serialized as a string
- Timestamps are ISO-8601 UTC

============================================================================
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from services.reputation import Reputation, trade_summary
from services.session_models import (
    Agent,
    Owner,
    Session,
    StepResult,
    StopReason,
    Trade,
    format_usd,
    to_usd,
)
from services.session_orchestrator import AgentProfile, SessionStatusView


# ============================================================================
# BASE MODEL
# ============================================================================

class CamelModel(BaseModel):
    """camelCase aliases on the wire, snake_case attribute names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class StartSessionRequest(CamelModel):
    """
    Body of POST /sessions/start. The owner comes from x-wallet-address.

    Reliability Level: L6 Critical
    Input Constraints:
        - agentId, safeAddress: non-empty
        - baseCollateralUsd: positive, finite (default from configuration)
        - maxDurationSeconds: positive integer (default from configuration)
        - market: one of the agent's markets (default: agent's first market)
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "agentId": "trend-bandit-v1",
                "safeAddress": "0x4f2a0000000000000000000000000000000000aa",
                "baseCollateralUsd": "50",
                "maxDurationSeconds": 600,
                "market": "BTCUSDT_PERP",
            }
        }
    )

    agent_id: str = Field(..., min_length=1, max_length=128)
    safe_address: str = Field(..., min_length=1, max_length=128)
    base_collateral_usd: Optional[Decimal] = None
    max_duration_seconds: Optional[int] = Field(None, gt=0)
    market: Optional[str] = Field(None, min_length=1, max_length=64)

    @field_validator("agent_id", "safe_address")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("base_collateral_usd", mode="before")
    @classmethod
    def validate_collateral(cls, v: Any) -> Optional[Decimal]:
        if v is None:
            return None
        amount = to_usd(v)
        if amount <= 0:
            raise ValueError(f"baseCollateralUsd must be positive, got {amount}")
        return amount


class StopSessionRequest(CamelModel):
    """Body of POST /sessions/{id}/stop. An empty body means user_requested."""

    reason: StopReason = StopReason.USER_REQUESTED


class RegisterOwnerRequest(CamelModel):
    """Body of POST /users. The wallet comes from x-wallet-address."""

    safe_address: Optional[str] = Field(None, min_length=1, max_length=128)


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class TradeOut(CamelModel):
    id: str
    symbol: str
    side: str
    size_usd: str
    entry_price: str
    exit_price: Optional[str] = None
    opened_at: datetime
    closed_at: Optional[datetime] = None
    pnl_usd: Optional[str] = None

    @classmethod
    def from_trade(cls, trade: Trade) -> "TradeOut":
        return cls(
            id=trade.id,
            symbol=trade.symbol,
            side=trade.side.value,
            size_usd=format_usd(trade.size_usd),
            entry_price=format_usd(trade.entry_price),
            exit_price=format_usd(trade.exit_price),
            opened_at=trade.opened_at,
            closed_at=trade.closed_at,
            pnl_usd=format_usd(trade.pnl_usd),
        )


class StepOut(CamelModel):
    name: str
    ok: bool
    value: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def from_step(cls, step: StepResult) -> "StepOut":
        return cls(
            name=step.name,
            ok=step.ok,
            value=step.value,
            error=step.error,
            error_code=step.error_code,
        )


class OutcomeOut(CamelModel):
    operation: str
    degraded: bool
    completed_at: Optional[datetime] = None
    steps: List[StepOut] = Field(default_factory=list)


def _outcome_out(session: Session) -> Optional[OutcomeOut]:
    report = session.outcome
    if report is None:
        return None
    return OutcomeOut(
        operation=report.operation,
        degraded=report.is_degraded,
        completed_at=report.completed_at,
        steps=[StepOut.from_step(s) for s in report.steps],
    )


class SessionOut(CamelModel):
    """Full session record as returned by start and list endpoints."""

    session_id: str
    agent_id: str
    status: str
    safe_address: str
    channel_id: Optional[str] = None
    market: Optional[str] = None
    base_collateral_usd: Optional[str] = None
    max_duration_seconds: Optional[int] = None
    started_at: datetime
    ended_at: Optional[datetime] = None
    pnl_usd: str
    outcome: Optional[OutcomeOut] = None

    @classmethod
    def from_session(cls, session: Session) -> "SessionOut":
        return cls(
            session_id=session.id,
            agent_id=session.agent_id,
            status=session.status.value,
            safe_address=session.safe_address,
            channel_id=session.channel_id,
            market=session.market,
            base_collateral_usd=format_usd(session.base_collateral_usd),
            max_duration_seconds=session.max_duration_seconds,
            started_at=session.started_at,
            ended_at=session.ended_at,
            pnl_usd=format_usd(session.pnl_usd),
            outcome=_outcome_out(session),
        )


class ChannelOut(CamelModel):
    channel_id: Optional[str] = None
    settlement_status: str


class SessionStatusResponse(CamelModel):
    session_id: str
    agent_id: str
    status: str
    safe_address: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    pnl_usd: str
    num_trades: int
    last_action: Optional[TradeOut] = None
    trades: List[TradeOut] = Field(default_factory=list)
    channel: ChannelOut

    @classmethod
    def from_view(cls, view: SessionStatusView) -> "SessionStatusResponse":
        session = view.session
        last = view.last_action
        return cls(
            session_id=session.id,
            agent_id=session.agent_id,
            status=session.status.value,
            safe_address=session.safe_address,
            started_at=session.started_at,
            ended_at=session.ended_at,
            pnl_usd=format_usd(session.pnl_usd),
            num_trades=len(view.trades),
            last_action=TradeOut.from_trade(last) if last is not None else None,
            trades=[TradeOut.from_trade(t) for t in view.trades],
            channel=ChannelOut(
                channel_id=view.channel_info.channel_id,
                settlement_status=view.channel_info.settlement_status.value,
            ),
        )


class TradeSummaryOut(CamelModel):
    num_trades: int
    win_rate: str


class StopSessionResponse(CamelModel):
    session_id: str
    agent_id: str
    status: str
    ended_at: Optional[datetime] = None
    final_pnl_usd: str
    summary: TradeSummaryOut
    settlement_receipt: Optional[str] = None
    degraded: bool
    steps: List[StepOut] = Field(default_factory=list)

    @classmethod
    def from_session(cls, session: Session, trades: List[Trade]) -> "StopSessionResponse":
        num_trades, win_rate = trade_summary(trades)
        report = session.outcome
        receipt = None
        steps: List[StepOut] = []
        if report is not None:
            steps = [StepOut.from_step(s) for s in report.steps]
            settlement = report.step("record_settlement")
            if settlement is not None and settlement.ok and settlement.value:
                receipt = settlement.value.get("receipt_id")
        return cls(
            session_id=session.id,
            agent_id=session.agent_id,
            status=session.status.value,
            ended_at=session.ended_at,
            final_pnl_usd=format_usd(session.pnl_usd),
            summary=TradeSummaryOut(num_trades=num_trades, win_rate=str(win_rate)),
            settlement_receipt=receipt,
            degraded=report.is_degraded if report is not None else False,
            steps=steps,
        )


class ReputationOut(CamelModel):
    sessions: int
    win_rate: str
    avg_pnl_usd: str

    @classmethod
    def from_reputation(cls, reputation: Reputation) -> "ReputationOut":
        return cls(
            sessions=reputation.sessions,
            win_rate=str(reputation.win_rate),
            avg_pnl_usd=format_usd(reputation.avg_pnl_usd),
        )


class RiskProfileOut(CamelModel):
    max_leverage: int
    max_position_usd: str
    max_daily_loss_usd: str


class RecentSessionOut(CamelModel):
    session_id: str
    pnl_usd: str
    ended_at: Optional[datetime] = None


class AgentOut(CamelModel):
    id: str
    name: str
    description: str
    payout_address: str
    risk_profile: RiskProfileOut
    learning_mode: str
    markets: List[str]
    reputation: ReputationOut

    @classmethod
    def _agent_fields(cls, agent: Agent, reputation: Reputation) -> Dict[str, Any]:
        return {
            "id": agent.id,
            "name": agent.name,
            "description": agent.description,
            "payout_address": agent.payout_address,
            "risk_profile": RiskProfileOut(
                max_leverage=agent.risk_profile.max_leverage,
                max_position_usd=format_usd(agent.risk_profile.max_position_usd),
                max_daily_loss_usd=format_usd(agent.risk_profile.max_daily_loss_usd),
            ),
            "learning_mode": agent.learning_mode,
            "markets": list(agent.markets),
            "reputation": ReputationOut.from_reputation(reputation),
        }

    @classmethod
    def from_profile(cls, profile: AgentProfile) -> "AgentOut":
        return cls(**cls._agent_fields(profile.agent, profile.reputation))


class AgentDetailResponse(AgentOut):
    last_sessions: List[RecentSessionOut] = Field(default_factory=list)

    @classmethod
    def from_profile(cls, profile: AgentProfile) -> "AgentDetailResponse":
        return cls(
            **cls._agent_fields(profile.agent, profile.reputation),
            last_sessions=[
                RecentSessionOut(
                    session_id=s.id,
                    pnl_usd=format_usd(s.pnl_usd),
                    ended_at=s.ended_at,
                )
                for s in profile.recent_sessions
            ],
        )


class OwnerOut(CamelModel):
    user_id: str
    wallet_address: str
    safe_address: Optional[str] = None
    created_at: Optional[datetime] = None
    registered: bool

    @classmethod
    def from_owner(cls, owner: Owner) -> "OwnerOut":
        return cls(
            user_id=owner.id,
            wallet_address=owner.wallet_address,
            safe_address=owner.safe_address,
            created_at=owner.created_at,
            registered=True,
        )

    @classmethod
    def unregistered(cls, wallet_address: str) -> "OwnerOut":
        """Placeholder for a wallet that never registered."""
        return cls(
            user_id=wallet_address.lower(),
            wallet_address=wallet_address,
            safe_address=None,
            created_at=None,
            registered=False,
        )
