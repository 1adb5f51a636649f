"""Dispute routes."""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Query, Request, status
from pydantic import BaseModel, Field

from ...disputes.models import DisputeOutcome
from ..deps import AppServices
from ..logging_config import get_logger
from ..rate_limit import READ_LIMIT, WRITE_LIMIT, limiter

logger = get_logger("gigescrow.api.disputes")
router = APIRouter(prefix="/disputes", tags=["disputes"])


class DisputeCreate(BaseModel):
    escrow_id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, max_length=2000)
    complainant_id: str = Field(..., min_length=1)


class DisputeResolve(BaseModel):
    arbiter_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)
    outcome: DisputeOutcome


class DisputeResponse(BaseModel):
    id: str
    escrow_id: str
    status: str
    reason: str
    complainant_id: Optional[str] = None
    assigned_arbiter_id: Optional[str] = None
    arbiter_id: Optional[str] = None
    resolution: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime


@router.post("", response_model=DisputeResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(WRITE_LIMIT)
async def open_dispute(request: Request, body: DisputeCreate, services: AppServices):
    """
    Open a dispute against a LOCKED or DELIVERED escrow.

    Only the buyer or seller may open one, and an escrow can only ever
    have one dispute.
    """
    logger.info(f"POST /disputes | escrow={body.escrow_id} | complainant={body.complainant_id}")
    dispute = await services.disputes.open_dispute(body.escrow_id, body.reason, body.complainant_id)
    return dispute.to_dict()


@router.get("/open/list", response_model=list[DisputeResponse])
@limiter.limit(READ_LIMIT)
async def list_open_disputes(request: Request, services: AppServices):
    return [d.to_dict() for d in await services.disputes.list_open_disputes()]


@router.get("/stale/list", response_model=list[DisputeResponse])
@limiter.limit(READ_LIMIT)
async def list_stale_disputes(
    request: Request,
    services: AppServices,
    older_than_days: Optional[int] = Query(None, ge=1, le=365),
):
    """Open disputes older than the resolution window (or ``older_than_days``)."""
    older_than = timedelta(days=older_than_days) if older_than_days else None
    return [d.to_dict() for d in await services.disputes.list_stale_disputes(older_than)]


@router.get("/escrow/{escrow_id}", response_model=list[DisputeResponse])
@limiter.limit(READ_LIMIT)
async def list_escrow_disputes(request: Request, escrow_id: str, services: AppServices):
    return [d.to_dict() for d in await services.disputes.list_disputes_for_escrow(escrow_id)]


@router.get("/{dispute_id}", response_model=DisputeResponse)
@limiter.limit(READ_LIMIT)
async def get_dispute(request: Request, dispute_id: str, services: AppServices):
    return (await services.disputes.get_dispute(dispute_id)).to_dict()


@router.post("/{dispute_id}/resolve", response_model=DisputeResponse)
@limiter.limit(WRITE_LIMIT)
async def resolve_dispute(
    request: Request, dispute_id: str, body: DisputeResolve, services: AppServices
):
    """Decide a dispute; settles the escrow with the arbiter as signer."""
    logger.info(
        f"POST /disputes/{dispute_id}/resolve | arbiter={body.arbiter_id} | outcome={body.outcome.value}"
    )
    dispute = await services.disputes.resolve_dispute(
        dispute_id, body.arbiter_id, body.signature, body.outcome
    )
    return dispute.to_dict()


@router.post("/{dispute_id}/close", response_model=DisputeResponse)
@limiter.limit(WRITE_LIMIT)
async def close_dispute(request: Request, dispute_id: str, services: AppServices):
    logger.info(f"POST /disputes/{dispute_id}/close")
    return (await services.disputes.close_dispute(dispute_id)).to_dict()
