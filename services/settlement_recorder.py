"""
============================================================================
Agent Session Orchestrator - Settlement Recorder
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: final PnL sent as an exact decimal string
Dependency Class: SOFT (teardown continues on failure)

Durable record of a session's final outcome. The recorder returns an
opaque receipt reference (transaction hash or ledger id).

IMPLEMENTATIONS:
    - HttpSettlementRecorder:  POST {base}/settlements → {receiptId}
    - LocalSettlementRecorder: Deterministic 0x + 64 hex receipt from the session id

============================================================================
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Dict, Any
import logging
import re

from services.remote_client import RemoteServiceClient, RemoteServiceError, RemoteErrorCode
from services.session_models import format_usd

logger = logging.getLogger(__name__)

_NON_HEX = re.compile(r"[^0-9a-fA-F]")


@dataclass(frozen=True)
class SettlementRequest:
    session_id: str
    owner_address: str
    agent_id: str
    pnl_usd: Decimal
    channel_id: Optional[str]

    def to_payload(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "userAddress": self.owner_address,
            "agentId": self.agent_id,
            "pnlUsd": format_usd(self.pnl_usd),
            "channelId": self.channel_id,
        }


@dataclass(frozen=True)
class SettlementReceipt:
    receipt_id: str


class SettlementRecorder(ABC):

    @abstractmethod
    def record(self, request: SettlementRequest) -> SettlementReceipt:
        """Record a final settlement. Raises on failure."""


class HttpSettlementRecorder(SettlementRecorder):

    def __init__(self, client: RemoteServiceClient):
        self._client = client

    def record(self, request: SettlementRequest) -> SettlementReceipt:
        payload = self._client.post_json(
            "/settlements",
            request.to_payload(),
            operation="record_settlement",
        )
        receipt_id = payload.get("receiptId") or payload.get("txHash")
        if not receipt_id:
            raise RemoteServiceError(
                f"settlement for {request.session_id} returned no receipt",
                RemoteErrorCode.MALFORMED_RESPONSE,
                self._client.service,
            )
        logger.info(
            f"[SETTLEMENT] Settlement recorded | session_id={request.session_id} | "
            f"receipt_id={receipt_id} | pnl_usd={request.pnl_usd}"
        )
        return SettlementReceipt(receipt_id=str(receipt_id))


def local_receipt_id(session_id: str) -> str:
    """0x followed by the session id's hex characters, right-padded with zeros to 64."""
    return "0x" + _NON_HEX.sub("", session_id).ljust(64, "0")


class LocalSettlementRecorder(SettlementRecorder):
    """Development stand-in used when no settlement URL is configured."""

    def record(self, request: SettlementRequest) -> SettlementReceipt:
        receipt_id = local_receipt_id(request.session_id)
        logger.debug(
            f"[SETTLEMENT] Local settlement recorded | session_id={request.session_id} | "
            f"receipt_id={receipt_id}"
        )
        return SettlementReceipt(receipt_id=receipt_id)


__all__ = [
    "SettlementRequest",
    "SettlementReceipt",
    "SettlementRecorder",
    "HttpSettlementRecorder",
    "LocalSettlementRecorder",
    "local_receipt_id",
]
