"""Escrow routes.

Lifecycle endpoints for escrows, plus the operator-facing expiry sweep.
"""

import binascii
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field

from ...errors import InvalidArgumentError
from ..deps import AppServices, require_admin
from ..logging_config import get_logger
from ..rate_limit import OPERATOR_LIMIT, READ_LIMIT, WRITE_LIMIT, limiter

logger = get_logger("gigescrow.api.escrows")
router = APIRouter(prefix="/escrows", tags=["escrows"])


# =============================================================================
# Request/Response Models
# =============================================================================


class EscrowCreate(BaseModel):
    """Request to open an escrow for a gig purchase."""

    gig_id: str = Field(..., min_length=1)
    buyer_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., description="Amount in ADA")
    expires_at: datetime


class EscrowLock(BaseModel):
    tx_hash: str = Field(..., min_length=1, description="Hash of the buyer's locking transaction")


class EscrowDeliver(BaseModel):
    delivery_hash: str = Field(..., min_length=1, description="Content hash of the delivered work")
    message: Optional[str] = Field(None, max_length=2000)


class EscrowRelease(BaseModel):
    signature: str = Field(..., min_length=1)
    signer_id: str = Field(..., min_length=1)
    signed_tx: Optional[str] = Field(None, description="Hex CBOR of a signed settlement transaction")


class EscrowRefund(EscrowRelease):
    reason: Optional[str] = Field(None, max_length=1000)


class MonitorRequest(BaseModel):
    dry_run: bool = Field(
        default=False, description="If true, report what would be refunded without changing anything"
    )


class EscrowResponse(BaseModel):
    id: str
    gig_id: str
    buyer_id: str
    seller_id: str
    state: str
    amount: Decimal
    expires_at: datetime
    on_chain_tx_hash: Optional[str] = None
    delivery_hash: Optional[str] = None
    delivery_message: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime


class EscrowCreatedResponse(EscrowResponse):
    lock_payload: Optional[Dict[str, Any]] = None


class TransitionResponse(BaseModel):
    id: str
    escrow_id: str
    from_state: Optional[str] = None
    to_state: str
    actor_id: str
    reason: Optional[str] = None
    tx_hash: Optional[str] = None
    created_at: datetime


def _signed_tx_bytes(signed_tx: Optional[str]) -> Optional[bytes]:
    if not signed_tx:
        return None
    try:
        return bytes.fromhex(signed_tx)
    except (ValueError, binascii.Error) as e:
        raise InvalidArgumentError(f"signed_tx must be hex-encoded CBOR: {e}") from e


# =============================================================================
# Routes
# =============================================================================


@router.post("", response_model=EscrowCreatedResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(WRITE_LIMIT)
async def create_escrow(request: Request, body: EscrowCreate, services: AppServices):
    """
    Create an escrow for a gig purchase.

    The response carries the lock payload (script address, lovelace, datum)
    the buyer's wallet needs, when both parties have wallet addresses and a
    contract is configured.
    """
    logger.info(f"POST /escrows | gig={body.gig_id} | buyer={body.buyer_id} | amount={body.amount}")
    escrow = await services.escrows.create_escrow(
        body.gig_id, body.buyer_id, body.amount, body.expires_at
    )

    lock_payload = None
    try:
        lock_payload = (await services.escrows.build_lock_payload(escrow.id)).to_dict()
    except InvalidArgumentError as e:
        logger.info(f"Lock payload unavailable | escrow={escrow.id} | {e.message}")

    return {**escrow.to_dict(), "lock_payload": lock_payload}


@router.post("/monitor")
@limiter.limit(OPERATOR_LIMIT)
async def trigger_expiry_sweep(
    request: Request,
    services: AppServices,
    body: Optional[MonitorRequest] = None,
    _: None = Depends(require_admin),
):
    """Refund every LOCKED escrow whose expiry has passed."""
    dry_run = body.dry_run if body else False
    logger.info(f"POST /escrows/monitor | dry_run={dry_run}")
    report = await services.monitor.sweep(dry_run=dry_run)
    return {"message": "Escrow monitoring completed", **report.to_dict()}


@router.get("/monitor/health")
@limiter.limit(READ_LIMIT)
async def monitor_health(request: Request, services: AppServices):
    """Counts of expired locked escrows and stale disputes."""
    return await services.monitor.health()


@router.get("/user/{user_id}", response_model=list[EscrowResponse])
@limiter.limit(READ_LIMIT)
async def list_user_escrows(request: Request, user_id: str, services: AppServices):
    """Escrows where the user is buyer or seller."""
    escrows = await services.escrows.list_escrows_for_user(user_id)
    return [e.to_dict() for e in escrows]


@router.get("/{escrow_id}", response_model=EscrowResponse)
@limiter.limit(READ_LIMIT)
async def get_escrow(request: Request, escrow_id: str, services: AppServices):
    return (await services.escrows.get_escrow(escrow_id)).to_dict()


@router.get("/{escrow_id}/lock-payload")
@limiter.limit(READ_LIMIT)
async def get_lock_payload(request: Request, escrow_id: str, services: AppServices):
    """Lock payload for an escrow (400 if addresses or contract are missing)."""
    return (await services.escrows.build_lock_payload(escrow_id)).to_dict()


@router.get("/{escrow_id}/transitions", response_model=list[TransitionResponse])
@limiter.limit(READ_LIMIT)
async def get_escrow_transitions(request: Request, escrow_id: str, services: AppServices):
    """Audit trail of state changes, oldest first."""
    transitions = await services.escrows.get_transitions(escrow_id)
    return [t.to_dict() for t in transitions]


@router.post("/{escrow_id}/lock", response_model=EscrowResponse)
@limiter.limit(WRITE_LIMIT)
async def lock_escrow(request: Request, escrow_id: str, body: EscrowLock, services: AppServices):
    """Confirm the buyer's deposit on chain (CREATED -> LOCKED)."""
    logger.info(f"POST /escrows/{escrow_id}/lock | tx={body.tx_hash}")
    escrow = await services.escrows.lock_escrow(escrow_id, body.tx_hash)
    return escrow.to_dict()


@router.post("/{escrow_id}/deliver", response_model=EscrowResponse)
@limiter.limit(WRITE_LIMIT)
async def deliver_escrow(
    request: Request, escrow_id: str, body: EscrowDeliver, services: AppServices
):
    """Record the seller's delivery (LOCKED -> DELIVERED)."""
    logger.info(f"POST /escrows/{escrow_id}/deliver | hash={body.delivery_hash}")
    escrow = await services.escrows.deliver_escrow(escrow_id, body.delivery_hash, body.message)
    return escrow.to_dict()


@router.post("/{escrow_id}/release", response_model=EscrowResponse)
@limiter.limit(WRITE_LIMIT)
async def release_escrow(
    request: Request, escrow_id: str, body: EscrowRelease, services: AppServices
):
    """Release funds to the seller (DELIVERED -> RELEASED)."""
    logger.info(f"POST /escrows/{escrow_id}/release | signer={body.signer_id}")
    escrow = await services.escrows.release_escrow(
        escrow_id, body.signature, body.signer_id, _signed_tx_bytes(body.signed_tx)
    )
    return escrow.to_dict()


@router.post("/{escrow_id}/refund", response_model=EscrowResponse)
@limiter.limit(WRITE_LIMIT)
async def refund_escrow(
    request: Request, escrow_id: str, body: EscrowRefund, services: AppServices
):
    """Refund funds to the buyer ({LOCKED, DELIVERED} -> REFUNDED)."""
    logger.info(f"POST /escrows/{escrow_id}/refund | signer={body.signer_id} | reason={body.reason}")
    escrow = await services.escrows.refund_escrow(
        escrow_id,
        body.signature,
        body.signer_id,
        reason=body.reason,
        signed_tx=_signed_tx_bytes(body.signed_tx),
    )
    return escrow.to_dict()
