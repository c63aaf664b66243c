"""
CareBridge Backend — Transaction Route Handlers
=================================================

What:  Derivation, payment, refund and queries under /api/transactions.
Note:  /user is declared before /{transaction_id} so the literal path wins.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from carebridge.database import get_db_session
from carebridge.models.profile import ROLE_ADMIN, ROLE_ELDERLY, ROLE_NURSE
from carebridge.models.transaction import Transaction
from carebridge.routes.deps import Actor, get_actor, require_roles
from carebridge.schemas.common import ErrorResponse
from carebridge.schemas.transaction import (
    RefundRequest,
    TransactionListResponse,
    TransactionResponse,
    TransactionStatusUpdate,
)
from carebridge.services.transaction_service import transaction_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/transactions", tags=["Transactions"])

_ERRORS = {
    400: {"description": "Invalid input or state", "model": ErrorResponse},
    401: {"description": "Missing caller identity", "model": ErrorResponse},
    403: {"description": "Caller may not perform this action", "model": ErrorResponse},
    404: {"description": "Transaction not found", "model": ErrorResponse},
}


def _page(items, total: int, page: int, limit: int) -> TransactionListResponse:
    return TransactionListResponse(
        items=[TransactionResponse.model_validate(t) for t in items],
        total_count=total,
        page=page,
        limit=limit,
    )


@router.post(
    "/from-contract/{contract_id}",
    status_code=status.HTTP_201_CREATED,
    response_model=TransactionResponse,
    responses={**_ERRORS, 409: {"description": "Transaction already exists", "model": ErrorResponse}},
    summary="Derive the transaction of a contract",
)
async def create_from_contract(
    contract_id: UUID,
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
) -> Transaction:
    return await transaction_service.derive_from_contract(db, contract_id)


@router.post(
    "/{transaction_id}/process",
    response_model=TransactionResponse,
    responses={**_ERRORS, 402: {"description": "Payment failed", "model": ErrorResponse}},
    summary="Pay a pending transaction",
)
async def process_payment(
    transaction_id: UUID,
    actor: Actor = Depends(require_roles(ROLE_ELDERLY)),
    db: AsyncSession = Depends(get_db_session),
) -> Transaction:
    return await transaction_service.process_payment(
        db, transaction_id, actor_profile_id=actor.profile_id, actor_role=actor.role
    )


@router.post(
    "/{transaction_id}/refund",
    response_model=TransactionResponse,
    responses={**_ERRORS, 502: {"description": "Refund failed", "model": ErrorResponse}},
    summary="Refund a completed transaction",
)
async def refund_transaction(
    transaction_id: UUID,
    body: RefundRequest,
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
) -> Transaction:
    return await transaction_service.refund_transaction(db, transaction_id, body.reason)


@router.get("", response_model=TransactionListResponse, responses=_ERRORS, summary="List transactions")
async def list_transactions(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status: Optional[str] = Query(default=None),
    elderly_id: Optional[UUID] = Query(default=None),
    nurse_id: Optional[UUID] = Query(default=None),
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
) -> TransactionListResponse:
    items, total = await transaction_service.list_transactions(
        db, page=page, limit=limit, status=status, elderly_id=elderly_id, nurse_id=nurse_id
    )
    return _page(items, total, page, limit)


@router.get(
    "/user",
    response_model=TransactionListResponse,
    responses=_ERRORS,
    summary="List the caller's transactions, newest first",
)
async def list_user_transactions(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    actor: Actor = Depends(require_roles(ROLE_ELDERLY, ROLE_NURSE)),
    db: AsyncSession = Depends(get_db_session),
) -> TransactionListResponse:
    items, total = await transaction_service.get_user_transactions(
        db, actor.profile_id, actor.role, page=page, limit=limit
    )
    return _page(items, total, page, limit)


@router.get(
    "/{transaction_id}",
    response_model=TransactionResponse,
    responses=_ERRORS,
    summary="Get a transaction",
)
async def get_transaction(
    transaction_id: UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db_session),
) -> Transaction:
    return await transaction_service.get_transaction(db, transaction_id)


@router.patch(
    "/{transaction_id}/status",
    response_model=TransactionResponse,
    responses=_ERRORS,
    summary="Set the transaction status",
)
async def update_transaction_status(
    transaction_id: UUID,
    body: TransactionStatusUpdate,
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
) -> Transaction:
    return await transaction_service.update_transaction_status(db, transaction_id, body.status)
