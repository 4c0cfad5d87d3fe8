"""
============================================================================
Agent Session Orchestrator - Settlement Channel Service
============================================================================

Reliability Level: L6 Critical
Dependency Class: open() HARD (session cannot exist without a channel)
                  close() SOFT (teardown continues on failure)

An off-chain payment/state channel between the owner's capital source
(safe address) and the agent's payout address. This module only knows the
channel service's request/response shape; channel cryptography lives on
the other side of the wire.

IMPLEMENTATIONS:
    - HttpChannelService:  POST {base}/channels, POST {base}/channels/{id}/close
    - LocalChannelService: Development stand-in, deterministic ids, never settles

============================================================================
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Callable
import logging
import time

from services.remote_client import RemoteServiceClient, RemoteServiceError, RemoteErrorCode

logger = logging.getLogger(__name__)

CHANNEL_SETTLED = "settled"
CHANNEL_UNSETTLED = "unsettled"


@dataclass(frozen=True)
class ChannelHandle:
    channel_id: str


@dataclass(frozen=True)
class ChannelCloseResult:
    status: str
    settlement_reference: Optional[str] = None

    @property
    def settled(self) -> bool:
        return self.status == CHANNEL_SETTLED


class ChannelService(ABC):
    """Contract for opening and closing settlement channels."""

    @abstractmethod
    def open(self, party_a: str, party_b: str) -> ChannelHandle:
        """Open a channel. Raises on failure."""

    @abstractmethod
    def close(self, channel_id: str) -> ChannelCloseResult:
        """Close a channel and report its settlement status. Raises on failure."""


class HttpChannelService(ChannelService):
    """Channel service reached over HTTP through RemoteServiceClient."""

    def __init__(self, client: RemoteServiceClient):
        self._client = client

    def open(self, party_a: str, party_b: str) -> ChannelHandle:
        payload = self._client.post_json(
            "/channels",
            {"participants": [party_a, party_b]},
            operation="open_channel",
        )
        channel_id = payload.get("channelId") or payload.get("id")
        if not channel_id:
            raise RemoteServiceError(
                "channel open response carried no channel id",
                RemoteErrorCode.MALFORMED_RESPONSE,
                self._client.service,
            )
        logger.info(
            f"[CHANNEL-SVC] Channel opened | channel_id={channel_id} | "
            f"party_a={party_a} | party_b={party_b}"
        )
        return ChannelHandle(channel_id=str(channel_id))

    def close(self, channel_id: str) -> ChannelCloseResult:
        payload = self._client.post_json(
            f"/channels/{channel_id}/close",
            {},
            operation="close_channel",
        )
        status = CHANNEL_SETTLED if payload.get("status") == CHANNEL_SETTLED else CHANNEL_UNSETTLED
        reference = payload.get("settlementReference") or payload.get("settlementTxHash")
        logger.info(
            f"[CHANNEL-SVC] Channel closed | channel_id={channel_id} | "
            f"status={status} | reference={reference}"
        )
        return ChannelCloseResult(status=status, settlement_reference=reference)


class LocalChannelService(ChannelService):
    """
    Development stand-in used when no channel service URL is configured.

    Channel ids are nl_<epoch_ms>_<first 8 hex chars of party_a>. Closing
    never settles.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock

    def open(self, party_a: str, party_b: str) -> ChannelHandle:
        channel_id = f"nl_{int(self._clock() * 1000)}_{party_a[2:10]}"
        logger.debug(
            f"[CHANNEL-SVC] Local channel opened | channel_id={channel_id}"
        )
        return ChannelHandle(channel_id=channel_id)

    def close(self, channel_id: str) -> ChannelCloseResult:
        logger.debug(
            f"[CHANNEL-SVC] Local channel closed | channel_id={channel_id} | status=unsettled"
        )
        return ChannelCloseResult(status=CHANNEL_UNSETTLED)


__all__ = [
    "CHANNEL_SETTLED",
    "CHANNEL_UNSETTLED",
    "ChannelHandle",
    "ChannelCloseResult",
    "ChannelService",
    "HttpChannelService",
    "LocalChannelService",
]
