"""
CareBridge Backend — Contract Route Handlers

Administration of contracts plus the /fill step that opens a drafting
contract for signature.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from carebridge.database import get_db_session
from carebridge.exceptions import AuthorizationError
from carebridge.models.contract import Contract
from carebridge.models.profile import ROLE_ADMIN, ROLE_NURSE
from carebridge.routes.deps import Actor, get_actor, require_roles
from carebridge.schemas.common import ErrorResponse, MessageResponse
from carebridge.schemas.contract import (
    ContractFillRequest,
    ContractListResponse,
    ContractResponse,
    ContractStatusUpdate,
)
from carebridge.services.contract_service import contract_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/contracts", tags=["Contracts"])

_ERRORS = {
    400: {"description": "Invalid input or state", "model": ErrorResponse},
    401: {"description": "Missing caller identity", "model": ErrorResponse},
    403: {"description": "Caller may not perform this action", "model": ErrorResponse},
    404: {"description": "Contract not found", "model": ErrorResponse},
}


@router.get("", response_model=ContractListResponse, responses=_ERRORS, summary="List contracts")
async def list_contracts(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status: Optional[str] = Query(default=None),
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
) -> ContractListResponse:
    items, total = await contract_service.list_contracts(db, page=page, limit=limit, status=status)
    return ContractListResponse(
        items=[ContractResponse.model_validate(c) for c in items],
        total_count=total,
        page=page,
        limit=limit,
    )


@router.get("/{contract_id}", response_model=ContractResponse, responses=_ERRORS, summary="Get a contract")
async def get_contract(
    contract_id: UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db_session),
) -> Contract:
    return await contract_service.get_contract(db, contract_id)


@router.api_route(
    "/{contract_id}/status",
    methods=["PATCH", "PUT"],
    response_model=ContractResponse,
    responses=_ERRORS,
    summary="Set the contract status",
)
async def update_contract_status(
    contract_id: UUID,
    body: ContractStatusUpdate,
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
) -> Contract:
    return await contract_service.update_contract_status(
        db, contract_id, body.status, actor.account_id
    )


@router.put(
    "/{contract_id}/fill",
    response_model=ContractResponse,
    responses={**_ERRORS, 409: {"description": "Transaction already exists", "model": ErrorResponse}},
    summary="Fill contract details and open it for signature",
    description=(
        "Merges the payment details and derives the transaction. Once that is "
        "committed a signing OTP is emailed to each party. Only allowed while "
        "the contract is pending."
    ),
)
async def fill_contract(
    contract_id: UUID,
    body: ContractFillRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_roles(ROLE_NURSE, ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
) -> Contract:
    if actor.role == ROLE_NURSE:
        contract = await contract_service.get_contract(db, contract_id)
        if contract.nurse_id != actor.profile_id:
            raise AuthorizationError(message="Only the contract's nurse can fill its details")
    contract = await contract_service.fill_contract_details(
        db,
        contract_id,
        terms=body.terms,
        payment_details=body.payment_details,
        effective_date=body.effective_date,
        expiry_date=body.expiry_date,
        actor_id=actor.account_id,
    )

    # Commit before any code is emailed; a failed fill never reaches this point
    await db.commit()
    recipients = await contract_service.signing_recipients(db, contract)
    background_tasks.add_task(contract_service.dispatch_signing_otps, contract.matching_id, recipients)
    return contract


@router.delete("/{contract_id}", response_model=MessageResponse, responses=_ERRORS, summary="Delete a contract")
async def delete_contract(
    contract_id: UUID,
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await contract_service.delete_contract(db, contract_id)
    return MessageResponse(message="Contract deleted")
