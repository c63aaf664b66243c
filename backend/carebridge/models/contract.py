"""
CareBridge Backend — Contract SQLAlchemy Model
================================================

What:  The formal agreement tied 1:1 to a Matching (UNIQUE matching_id).
How:   Payment details, terms and the audit history are JSON columns. JSON
       values are always reassigned, never mutated in place, so SQLAlchemy
       sees every change.

Lifecycle:
    pending ──fill──▶ pending_signature ──both parties sign──▶ active
    any ──violation / admin──▶ violated | terminated

Every status change and every signature event appends exactly one
`history_logs` entry through `record_history`.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from carebridge.database import Base

STATUS_PENDING = "pending"
STATUS_PENDING_SIGNATURE = "pending_signature"
STATUS_ACTIVE = "active"
STATUS_VIOLATED = "violated"
STATUS_TERMINATED = "terminated"

# Values an administrator may set directly
ADMIN_STATUSES = (STATUS_PENDING, STATUS_ACTIVE, STATUS_VIOLATED, STATUS_TERMINATED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Contract(Base):
    __tablename__ = "contracts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    matching_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True)
    elderly_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    nurse_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    # Ledger proof, set once both parties have signed
    contract_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    status: Mapped[str] = mapped_column(String(30), nullable=False, default=STATUS_PENDING)

    signed_by_elderly: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    signed_by_nurse: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    elderly_signed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    nurse_signed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    effective_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expiry_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    last_modified_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    # [{"action": str, "modified_by": str, "timestamp": iso8601}, ...]
    history_logs: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    # Serialized PaymentDetails (see carebridge.schemas.contract)
    payment_details: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    terms: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    __table_args__ = (
        Index("idx_contracts_status", "status"),
    )

    def record_history(self, action: str, modified_by: Optional[str]) -> None:
        now = _utcnow()
        entry = {
            "action": action,
            "modified_by": modified_by or "system",
            "timestamp": now.isoformat(),
        }
        self.history_logs = [*(self.history_logs or []), entry]
        self.last_modified_at = now

    def transition(self, status: str, modified_by: Optional[str], action: Optional[str] = None) -> bool:
        """
        Moves to `status` and logs it. Returns False when already there.

        `action` overrides the default `status:<value>` history label.
        """
        if self.status == status:
            return False
        self.status = status
        self.record_history(action or f"status:{status}", modified_by)
        return True

    def mark_signed(self, role: str, modified_by: Optional[str]) -> None:
        now = _utcnow()
        if role == "elderly":
            self.elderly_signed = True
            self.signed_by_elderly = now
        else:
            self.nurse_signed = True
            self.signed_by_nurse = now
        self.record_history(f"{role}_signed", modified_by)

    def __repr__(self) -> str:
        return f"<Contract(id={self.id}, matching_id={self.matching_id}, status='{self.status}')>"
