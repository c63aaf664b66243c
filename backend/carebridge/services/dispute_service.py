"""
CareBridge Backend — Dispute Handler

Complaints raised by one party of a transaction against the other, and the
administrative review that closes them.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import desc, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from carebridge.exceptions import CareBridgeError, DatabaseError, NotFoundError, ValidationError
from carebridge.models.dispute import (
    CLOSING_STATUSES,
    DISPUTE_STATUSES,
    STATUS_OPEN,
    Dispute,
)
from carebridge.models.profile import PARTY_ROLES
from carebridge.models.transaction import Transaction
from carebridge.services.pagination import paginate

logger = logging.getLogger(__name__)


class DisputeService:
    async def _get_or_404(self, db: AsyncSession, dispute_id: uuid.UUID) -> Dispute:
        dispute = await db.get(Dispute, dispute_id)
        if dispute is None:
            raise NotFoundError(resource="dispute", resource_id=str(dispute_id))
        return dispute

    async def create_dispute(
        self,
        db: AsyncSession,
        transaction_id: Optional[uuid.UUID],
        complainant_id: Optional[uuid.UUID],
        complainant_role: Optional[str],
        defendant_id: Optional[uuid.UUID],
        defendant_role: Optional[str],
        reason: Optional[str],
        evidences: Optional[List[str]] = None,
    ) -> Dispute:
        """
        Opens a dispute against a transaction.

        Raises:
            ValidationError: a required field is missing or a role is invalid
            NotFoundError: the transaction does not exist
        """
        for field, value in (
            ("transaction_id", transaction_id),
            ("complainant_id", complainant_id),
            ("defendant_id", defendant_id),
            ("reason", reason.strip() if reason else reason),
        ):
            if not value:
                raise ValidationError(message=f"{field} is required", field=field)

        for field, role in (("complainant_role", complainant_role), ("defendant_role", defendant_role)):
            if role not in PARTY_ROLES:
                raise ValidationError(
                    message=f"{field} must be one of: {', '.join(PARTY_ROLES)}",
                    field=field,
                )

        # Parties are not checked against the transaction; any profile may complain
        if await db.get(Transaction, transaction_id) is None:
            raise NotFoundError(resource="transaction", resource_id=str(transaction_id))

        dispute = Dispute(
            transaction_id=transaction_id,
            complainant_id=complainant_id,
            complainant_role=complainant_role,
            defendant_id=defendant_id,
            defendant_role=defendant_role,
            reason=reason.strip(),
            evidences=list(evidences or []),
            status=STATUS_OPEN,
        )
        db.add(dispute)
        await db.flush()
        logger.info(
            "Dispute %s opened on transaction %s by %s %s",
            dispute.id, transaction_id, complainant_role, complainant_id,
        )
        return dispute

    async def get_dispute(self, db: AsyncSession, dispute_id: uuid.UUID) -> Dispute:
        return await self._get_or_404(db, dispute_id)

    async def update_dispute_status(
        self,
        db: AsyncSession,
        dispute_id: uuid.UUID,
        status: Optional[str],
        resolution: Optional[str] = None,
    ) -> Dispute:
        """Sets the review status; resolved_at is stamped only for closing statuses."""
        if status not in DISPUTE_STATUSES:
            raise ValidationError(
                message=f"Invalid dispute status. Must be one of: {', '.join(DISPUTE_STATUSES)}",
                field="status",
            )
        dispute = await self._get_or_404(db, dispute_id)
        dispute.status = status
        if resolution is not None:
            dispute.resolution = resolution
        # Reopening a closed dispute clears the stamp
        dispute.resolved_at = datetime.now(timezone.utc) if status in CLOSING_STATUSES else None
        await db.flush()
        logger.info("Dispute %s status set to %s", dispute_id, status)
        return dispute

    async def list_disputes(
        self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        complainant_id: Optional[uuid.UUID] = None,
        defendant_id: Optional[uuid.UUID] = None,
        party_id: Optional[uuid.UUID] = None,
    ) -> Tuple[List[Dispute], int]:
        try:
            query = select(Dispute)
            if status:
                query = query.where(Dispute.status == status)
            if complainant_id:
                query = query.where(Dispute.complainant_id == complainant_id)
            if defendant_id:
                query = query.where(Dispute.defendant_id == defendant_id)
            if party_id:
                query = query.where(
                    or_(Dispute.complainant_id == party_id, Dispute.defendant_id == party_id)
                )
            return await paginate(db, query.order_by(desc(Dispute.created_at)), page, limit)
        except CareBridgeError:
            raise
        except Exception as e:
            logger.error("Database error listing disputes: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve disputes. Please try again.",
                context={"error_type": type(e).__name__},
            )


dispute_service = DisputeService()
