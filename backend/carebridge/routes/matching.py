"""
CareBridge Backend — Matching Route Handlers
==============================================

What:  Matching lifecycle endpoints under /api/matching, including the OTP
       signing pair /sign/request and /sign/confirm.
How:   Thin handlers: resolve the caller, delegate to MatchingService or
       ContractService, serialize the Matching.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from carebridge.database import get_db_session
from carebridge.exceptions import AuthorizationError
from carebridge.models.matching import Matching
from carebridge.models.profile import ROLE_ADMIN, ROLE_ELDERLY, ROLE_NURSE
from carebridge.routes.deps import Actor, get_actor, require_roles
from carebridge.schemas.common import ErrorResponse, MessageResponse
from carebridge.schemas.matching import (
    BookingUpdateRequest,
    MatchingCreateRequest,
    MatchingListResponse,
    MatchingResponse,
    OtpConfirmRequest,
    SignatureRequest,
    ViolationRequest,
)
from carebridge.services.contract_service import contract_service
from carebridge.services.matching_service import matching_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/matching", tags=["Matching"])

_ERRORS = {
    400: {"description": "Invalid input or state", "model": ErrorResponse},
    401: {"description": "Missing caller identity", "model": ErrorResponse},
    403: {"description": "Caller may not perform this action", "model": ErrorResponse},
    404: {"description": "Matching not found", "model": ErrorResponse},
}


def _ensure_party(matching: Matching, actor: Actor) -> None:
    party_id = matching.elderly_id if actor.role == ROLE_ELDERLY else matching.nurse_id
    if actor.profile_id != party_id:
        raise AuthorizationError(message="You are not a party to this matching")


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=MatchingResponse,
    responses={**_ERRORS, 409: {"description": "Nurse unavailable", "model": ErrorResponse}},
    summary="Create a matching with a nurse",
)
async def create_matching(
    body: MatchingCreateRequest,
    actor: Actor = Depends(require_roles(ROLE_ELDERLY)),
    db: AsyncSession = Depends(get_db_session),
) -> Matching:
    return await matching_service.create_matching(
        db,
        actor_profile=actor.profile,
        nurse_id=body.nurse_id,
        service_level=body.service_level,
        booking_time=body.booking_time,
    )


@router.get(
    "",
    response_model=MatchingListResponse,
    responses=_ERRORS,
    summary="List matchings",
)
async def list_matchings(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    is_matched: Optional[bool] = Query(default=None),
    service_level: Optional[str] = Query(default=None),
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
) -> MatchingListResponse:
    items, total = await matching_service.list_matchings(
        db, page=page, limit=limit, is_matched=is_matched, service_level=service_level
    )
    return MatchingListResponse(
        items=[MatchingResponse.model_validate(m) for m in items],
        total_count=total,
        page=page,
        limit=limit,
    )


@router.get(
    "/{matching_id}",
    response_model=MatchingResponse,
    responses=_ERRORS,
    summary="Get a matching",
)
async def get_matching(
    matching_id: UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db_session),
) -> Matching:
    return await matching_service.get_matching(db, matching_id)


@router.patch(
    "/{matching_id}/booking",
    response_model=MatchingResponse,
    responses=_ERRORS,
    summary="Replace the booking windows",
)
async def update_booking(
    matching_id: UUID,
    body: BookingUpdateRequest,
    actor: Actor = Depends(require_roles(ROLE_ELDERLY)),
    db: AsyncSession = Depends(get_db_session),
) -> Matching:
    _ensure_party(await matching_service.get_matching(db, matching_id), actor)
    return await matching_service.update_booking_time(db, matching_id, body.booking_time)


@router.post(
    "/{matching_id}/sign",
    response_model=MatchingResponse,
    responses=_ERRORS,
    summary="Set the caller's signature directly",
    description=(
        "Legacy path without OTP. The caller's role selects which flag is set. "
        "Withdrawing a signature from a matched pair unmatches it."
    ),
)
async def sign_matching(
    matching_id: UUID,
    body: SignatureRequest,
    actor: Actor = Depends(require_roles(ROLE_ELDERLY, ROLE_NURSE)),
    db: AsyncSession = Depends(get_db_session),
) -> Matching:
    _ensure_party(await matching_service.get_matching(db, matching_id), actor)
    return await matching_service.record_signature(
        db, matching_id, actor.role, body.signature, body.contract_hash
    )


@router.post(
    "/{matching_id}/sign/request",
    response_model=MessageResponse,
    responses={**_ERRORS, 409: {"description": "Already signed", "model": ErrorResponse}},
    summary="Email a signing OTP to the caller",
)
async def request_sign_otp(
    matching_id: UUID,
    actor: Actor = Depends(require_roles(ROLE_ELDERLY, ROLE_NURSE)),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await contract_service.request_signature_otp(db, matching_id, actor.role, actor.profile_id)
    return MessageResponse(message="OTP sent to your registered email")


@router.post(
    "/{matching_id}/sign/confirm",
    response_model=MatchingResponse,
    responses={
        **_ERRORS,
        409: {"description": "Already signed", "model": ErrorResponse},
        502: {"description": "Settlement could not be recorded", "model": ErrorResponse},
    },
    summary="Confirm the caller's signature with an OTP",
)
async def confirm_sign_otp(
    matching_id: UUID,
    body: OtpConfirmRequest,
    actor: Actor = Depends(require_roles(ROLE_ELDERLY, ROLE_NURSE)),
    db: AsyncSession = Depends(get_db_session),
) -> Matching:
    # Party check happens under the signing row lock inside the service
    return await contract_service.confirm_signature(
        db,
        matching_id,
        actor.role,
        body.otp,
        actor_id=actor.account_id,
        actor_profile_id=actor.profile_id,
    )


@router.post(
    "/{matching_id}/violation",
    response_model=MatchingResponse,
    responses=_ERRORS,
    summary="Report a violation",
)
async def report_violation(
    matching_id: UUID,
    body: ViolationRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db_session),
) -> Matching:
    return await matching_service.report_violation(
        db,
        matching_id,
        reporter_id=actor.account_id,
        reason=body.reason,
        reporter_profile_id=actor.profile_id,
        is_admin=actor.is_admin,
    )


@router.post(
    "/{matching_id}/complete",
    response_model=MatchingResponse,
    responses=_ERRORS,
    summary="Mark a fully signed matching as matched",
)
async def complete_match(
    matching_id: UUID,
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
) -> Matching:
    return await matching_service.complete_match(db, matching_id)


@router.post(
    "/{matching_id}/reset",
    response_model=MatchingResponse,
    responses=_ERRORS,
    summary="Unmatch and release the nurse",
)
async def reset_match(
    matching_id: UUID,
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
) -> Matching:
    return await matching_service.reset_match(db, matching_id)


@router.post(
    "/{matching_id}/settle",
    response_model=MatchingResponse,
    responses={
        **_ERRORS,
        409: {"description": "Already settled", "model": ErrorResponse},
        502: {"description": "Settlement could not be recorded", "model": ErrorResponse},
    },
    summary="Retry the ledger settlement of a signed matching",
)
async def retry_settlement(
    matching_id: UUID,
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
) -> Matching:
    return await contract_service.retry_settlement(db, matching_id, actor.account_id)


@router.delete(
    "/{matching_id}",
    response_model=MessageResponse,
    responses=_ERRORS,
    summary="Delete a matching",
)
async def delete_matching(
    matching_id: UUID,
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await matching_service.delete_matching(db, matching_id)
    return MessageResponse(message="Matching deleted")
