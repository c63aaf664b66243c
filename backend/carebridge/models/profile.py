"""
CareBridge Backend — Profile SQLAlchemy Model
===============================================

What:  Read model of the `profiles` table owned by the identity service.
Why:   Matchings, contracts, transactions and disputes reference profile ids,
       while callers authenticate with account ids. This table is the
       profile id ↔ account id ↔ role ↔ email/ledger address mapping.
Who:   Read by ProfileResolver; `is_available` is written only by NurseAvailability.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from carebridge.database import Base

ROLE_ELDERLY = "elderly"
ROLE_NURSE = "nurse"
ROLE_ADMIN = "admin"
PARTY_ROLES = (ROLE_ELDERLY, ROLE_NURSE)


class Profile(Base):
    """A care party: one elderly client or one nurse."""

    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Identity-service account that owns this profile
    account_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    role: Mapped[str] = mapped_column(String(20), nullable=False)
    full_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(255), nullable=False)

    # EVM wallet; the key is a Fernet token and never leaves ProfileResolver in clear
    ledger_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    ledger_key_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Nurses only: whether the nurse can accept a new matching
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, role='{self.role}', account_id='{self.account_id}')>"
