"""
CareBridge Backend — Dispute SQLAlchemy Model
===============================================

What:  A conflict one party opens against the other over a transaction.
When:  Created by either party; status advanced by administrators only.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, DateTime, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from carebridge.database import Base

STATUS_OPEN = "open"
STATUS_UNDER_REVIEW = "under_review"
STATUS_RESOLVED = "resolved"
STATUS_REJECTED = "rejected"
DISPUTE_STATUSES = (STATUS_OPEN, STATUS_UNDER_REVIEW, STATUS_RESOLVED, STATUS_REJECTED)
CLOSING_STATUSES = (STATUS_RESOLVED, STATUS_REJECTED)


class Dispute(Base):
    __tablename__ = "disputes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    complainant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    complainant_role: Mapped[str] = mapped_column(String(20), nullable=False)
    defendant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    defendant_role: Mapped[str] = mapped_column(String(20), nullable=False)

    reason: Mapped[str] = mapped_column(Text, nullable=False)
    evidences: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=STATUS_OPEN)
    resolution: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_disputes_created_at", created_at.desc()),
    )

    def __repr__(self) -> str:
        return f"<Dispute(id={self.id}, transaction_id={self.transaction_id}, status='{self.status}')>"
