"""
============================================================================
Agent Session Orchestrator - Owner Registry
============================================================================

Reliability Level: L5 High
Traceability: Owner id assigned once at registration

Owners are the wallet identities allowed to start sessions. Wallet
addresses are matched case-insensitively: they are stored lower-cased and
every lookup lower-cases its input.

============================================================================
"""

from typing import Optional
import logging
import threading
import uuid

from services.session_models import Owner, utc_now
from services.session_store import RecordStore

logger = logging.getLogger(__name__)


def normalize_wallet(wallet_address: str) -> str:
    """Strip and lower-case a wallet address for lookup."""
    return (wallet_address or "").strip().lower()


class OwnerRegistry:
    """Registration and lookup of owners over the owner record store."""

    def __init__(self, store: RecordStore):
        self._store = store
        self._register_lock = threading.Lock()

    def register_owner(self, wallet_address: str, safe_address: Optional[str] = None) -> Owner:
        """
        Register an owner, idempotent by wallet.

        An existing owner keeps its id; a provided safe_address replaces the
        stored one.

        Raises:
            ValueError: If wallet_address is empty
        """
        wallet = normalize_wallet(wallet_address)
        if not wallet:
            raise ValueError("wallet_address is required")

        with self._register_lock:
            existing = self.find_by_wallet(wallet)
            if existing is not None:
                if safe_address and safe_address != existing.safe_address:
                    existing = self._store.update(existing.id, safe_address=safe_address)
                    logger.info(
                        f"[OWNER-REGISTRY] Safe address updated | "
                        f"owner_id={existing.id} | safe_address={safe_address}"
                    )
                return existing

            owner = Owner(
                id=str(uuid.uuid4()),
                wallet_address=wallet,
                safe_address=safe_address,
                created_at=utc_now(),
            )
            self._store.put(owner)

        logger.info(
            f"[OWNER-REGISTRY] Owner registered | owner_id={owner.id} | wallet={wallet}"
        )
        return owner

    def find_by_wallet(self, wallet_address: str) -> Optional[Owner]:
        wallet = normalize_wallet(wallet_address)
        if not wallet:
            return None
        matches = self._store.scan_by("wallet_address", wallet)
        return matches[0] if matches else None

    def get_owner(self, owner_id: str) -> Optional[Owner]:
        return self._store.get(owner_id)


__all__ = ["OwnerRegistry", "normalize_wallet"]
