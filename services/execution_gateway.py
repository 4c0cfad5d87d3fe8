"""
============================================================================
Agent Session Orchestrator - Execution Service Gateway
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: Remote amounts converted with Decimal(str(value))
Dependency Class: start() SOFT at creation (session lands in error)
                  stop()/get_status() SOFT (teardown and status tolerate failure)

The execution service runs the agent's trading loop. The orchestrator
only tells it when to start and stop and asks it for the live PnL and
trade list.

WIRE CONTRACT:
    POST {base}/internal/sessions/start        body: sessionId, agentId, userAddress,
                                                     safeAddress, market,
                                                     baseCollateralUsd, maxDurationSeconds
    POST {base}/internal/sessions/{id}/stop    body: reason
    GET  {base}/internal/sessions/{id}/status  → {pnlUsd, trades?}

A status body without pnlUsd is a failed query (RMT-004).

============================================================================
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Dict, Any, List
import logging

from services.remote_client import RemoteServiceClient, RemoteServiceError, RemoteErrorCode
from services.session_models import (
    Trade,
    TradeSide,
    format_usd,
    to_usd,
    optional_usd,
    parse_timestamp,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StartDelegation:
    """Everything the execution service needs to begin trading a session."""
    session_id: str
    agent_id: str
    owner_address: str
    safe_address: str
    market: str
    collateral_usd: Decimal
    max_duration_seconds: int

    def to_payload(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "agentId": self.agent_id,
            "userAddress": self.owner_address,
            "safeAddress": self.safe_address,
            "market": self.market,
            "baseCollateralUsd": format_usd(self.collateral_usd),
            "maxDurationSeconds": self.max_duration_seconds,
        }


@dataclass(frozen=True)
class ExecutionStatusReport:
    """Live view of a session from the execution service."""
    pnl_usd: Decimal
    trades: Optional[List[Trade]] = None


def parse_trade(session_id: str, raw: Dict[str, Any]) -> Trade:
    """
    Build a Trade from one execution-service trade object.

    Raises:
        ValueError/KeyError: On missing or malformed fields
    """
    side = str(raw["side"]).upper()
    opened_at = parse_timestamp(raw["openedAt"])
    if opened_at is None:
        raise ValueError("openedAt is required")
    size_usd = to_usd(raw["sizeUsd"])
    if size_usd <= 0:
        raise ValueError(f"sizeUsd must be positive: {size_usd}")
    return Trade(
        id=str(raw["id"]),
        session_id=session_id,
        symbol=str(raw["symbol"]),
        side=TradeSide(side),
        size_usd=size_usd,
        entry_price=to_usd(raw["entryPrice"]),
        opened_at=opened_at,
        exit_price=optional_usd(raw.get("exitPrice")),
        closed_at=parse_timestamp(raw.get("closedAt")),
        pnl_usd=optional_usd(raw.get("pnlUsd")),
    )


class ExecutionGateway:
    """
    HTTP gateway to the execution service.

    Reliability Level: L6 Critical
    Side Effects: Network I/O only; never touches the store
    """

    def __init__(self, client: RemoteServiceClient):
        self._client = client

    def start(self, delegation: StartDelegation) -> None:
        """Ask the execution service to begin trading. Raises RemoteServiceError."""
        self._client.post_json(
            "/internal/sessions/start",
            delegation.to_payload(),
            operation="start",
        )
        logger.info(
            f"[EXEC-GATEWAY] Delegation accepted | session_id={delegation.session_id} | "
            f"agent_id={delegation.agent_id} | market={delegation.market}"
        )

    def stop(self, session_id: str, reason: str) -> None:
        """Ask the execution service to stop trading. Raises RemoteServiceError."""
        self._client.post_json(
            f"/internal/sessions/{session_id}/stop",
            {"reason": reason},
            operation="stop",
        )
        logger.info(
            f"[EXEC-GATEWAY] Stop acknowledged | session_id={session_id} | reason={reason}"
        )

    def get_status(self, session_id: str) -> ExecutionStatusReport:
        """
        Query live PnL and trades.

        Individual malformed trades are dropped with a warning; a missing or
        non-numeric pnlUsd fails the whole query.

        Raises:
            RemoteServiceError: On transport failure or malformed body
        """
        payload = self._client.get_json(
            f"/internal/sessions/{session_id}/status",
            operation="get_status",
        )
        if payload.get("pnlUsd") is None:
            raise RemoteServiceError(
                f"status for {session_id} carried no pnlUsd",
                RemoteErrorCode.MALFORMED_RESPONSE,
                self._client.service,
            )
        try:
            pnl_usd = to_usd(payload["pnlUsd"])
        except ValueError as e:
            raise RemoteServiceError(
                f"status for {session_id} carried invalid pnlUsd: {payload['pnlUsd']!r}",
                RemoteErrorCode.MALFORMED_RESPONSE,
                self._client.service,
            ) from e

        raw_trades = payload.get("trades")
        if not isinstance(raw_trades, list):
            return ExecutionStatusReport(pnl_usd=pnl_usd)

        trades: List[Trade] = []
        for raw in raw_trades:
            try:
                trades.append(parse_trade(session_id, raw))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(
                    f"[{RemoteErrorCode.MALFORMED_RESPONSE}] Dropping malformed trade | "
                    f"session_id={session_id} | error={str(e)}"
                )
        return ExecutionStatusReport(pnl_usd=pnl_usd, trades=trades)


__all__ = [
    "StartDelegation",
    "ExecutionStatusReport",
    "ExecutionGateway",
    "parse_trade",
]
