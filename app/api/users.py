"""
============================================================================
Agent Session Orchestrator - Owner API Endpoints
============================================================================

Reliability Level: L5 High
Side Effects: Owner store writes (POST /users)

ENDPOINTS:
    POST /api/users - Register the calling wallet as an owner (idempotent)
    GET  /api/me    - The calling wallet's owner record

An unregistered wallet on GET /me gets a placeholder record with
registered=false rather than a 404.

============================================================================
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from app.api.common import (
    ApiErrorCode,
    error_detail,
    get_owner_registry,
    require_wallet_address,
)
from app.schemas.session import OwnerOut, RegisterOwnerRequest
from services.owner_registry import OwnerRegistry
from services.session_store import RecordStoreError

import logging

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/users",
    response_model=OwnerOut,
    summary="Register Owner",
    responses={400: {"description": "Missing x-wallet-address (REQ-001)"}},
)
def register_owner(
    body: Optional[RegisterOwnerRequest] = None,
    wallet_address: str = Depends(require_wallet_address),
    owners: OwnerRegistry = Depends(get_owner_registry)
) -> OwnerOut:
    safe_address = body.safe_address if body is not None else None
    try:
        owner = owners.register_owner(wallet_address, safe_address=safe_address)
    except RecordStoreError as e:
        logger.error(f"[OWNER-API] Registration failed | wallet={wallet_address} | error={str(e)}")
        raise HTTPException(
            status_code=500,
            detail=error_detail(e.error_code, "persistence_failure", e.message),
        )
    except ValueError as e:
        raise HTTPException(
            status_code=400,
            detail=error_detail(ApiErrorCode.VALIDATION_FAILED, "invalid_request", str(e)),
        )
    return OwnerOut.from_owner(owner)


@router.get(
    "/me",
    response_model=OwnerOut,
    summary="Current Owner",
    responses={400: {"description": "Missing x-wallet-address (REQ-001)"}},
)
def get_me(
    wallet_address: str = Depends(require_wallet_address),
    owners: OwnerRegistry = Depends(get_owner_registry)
) -> OwnerOut:
    owner = owners.find_by_wallet(wallet_address)
    if owner is None:
        return OwnerOut.unregistered(wallet_address)
    return OwnerOut.from_owner(owner)


__all__ = ["router"]
