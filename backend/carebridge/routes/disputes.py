"""
CareBridge Backend — Dispute Route Handlers

Parties open disputes and see only those naming them; administrators see
and review all of them.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from carebridge.database import get_db_session
from carebridge.exceptions import AuthorizationError
from carebridge.models.dispute import Dispute
from carebridge.models.profile import ROLE_ADMIN, ROLE_ELDERLY, ROLE_NURSE
from carebridge.routes.deps import Actor, get_actor, require_roles
from carebridge.schemas.common import ErrorResponse
from carebridge.schemas.dispute import (
    DisputeCreateRequest,
    DisputeListResponse,
    DisputeResponse,
    DisputeStatusUpdate,
)
from carebridge.services.dispute_service import dispute_service
from carebridge.services.profile_service import profile_resolver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/disputes", tags=["Disputes"])

_ERRORS = {
    400: {"description": "Invalid input", "model": ErrorResponse},
    401: {"description": "Missing caller identity", "model": ErrorResponse},
    403: {"description": "Caller may not see this dispute", "model": ErrorResponse},
    404: {"description": "Dispute not found", "model": ErrorResponse},
}


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=DisputeResponse,
    responses=_ERRORS,
    summary="Open a dispute against a transaction",
)
async def create_dispute(
    body: DisputeCreateRequest,
    actor: Actor = Depends(require_roles(ROLE_ELDERLY, ROLE_NURSE)),
    db: AsyncSession = Depends(get_db_session),
) -> Dispute:
    # Defendant role comes from the stored profile, never from the request
    defendant_role = None
    if body.defendant_id is not None:
        defendant = await profile_resolver.get_profile(db, body.defendant_id)
        defendant_role = defendant.role
    return await dispute_service.create_dispute(
        db,
        transaction_id=body.transaction_id,
        complainant_id=actor.profile_id,
        complainant_role=actor.role,
        defendant_id=body.defendant_id,
        defendant_role=defendant_role,
        reason=body.reason,
        evidences=body.evidences,
    )


@router.get("", response_model=DisputeListResponse, responses=_ERRORS, summary="List disputes")
async def list_disputes(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status: Optional[str] = Query(default=None),
    complainant_id: Optional[UUID] = Query(default=None),
    defendant_id: Optional[UUID] = Query(default=None),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db_session),
) -> DisputeListResponse:
    # Parties only ever see disputes they are on
    if actor.is_admin:
        items, total = await dispute_service.list_disputes(
            db, page=page, limit=limit, status=status,
            complainant_id=complainant_id, defendant_id=defendant_id,
        )
    else:
        items, total = await dispute_service.list_disputes(
            db, page=page, limit=limit, status=status, party_id=actor.profile_id
        )
    return DisputeListResponse(
        items=[DisputeResponse.model_validate(d) for d in items],
        total_count=total,
        page=page,
        limit=limit,
    )


@router.get("/{dispute_id}", response_model=DisputeResponse, responses=_ERRORS, summary="Get a dispute")
async def get_dispute(
    dispute_id: UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db_session),
) -> Dispute:
    dispute = await dispute_service.get_dispute(db, dispute_id)
    if not actor.is_admin and actor.profile_id not in (dispute.complainant_id, dispute.defendant_id):
        raise AuthorizationError(message="You are not a party to this dispute")
    return dispute


@router.patch(
    "/{dispute_id}/status",
    response_model=DisputeResponse,
    responses=_ERRORS,
    summary="Review a dispute",
)
async def update_dispute_status(
    dispute_id: UUID,
    body: DisputeStatusUpdate,
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
) -> Dispute:
    return await dispute_service.update_dispute_status(db, dispute_id, body.status, body.resolution)
