"""
CareBridge Backend — Matching SQLAlchemy Model
================================================

What:  One proposed or active care engagement between an elderly client and a nurse.
How:   The contract-signature sub-state is stored as flat columns and exposed
       through the `contract_status` property; booking windows and the violation
       report are JSON columns.

State machine (derived, see `state`):
    created → partially_signed → fully_signed → matched
    matched/fully_signed --reset--> (is_matched=False)
    any --violation--> violated

Invariants:
    - is_signed == (elderly_signature and nurse_signature)
    - is_matched only becomes True once is_signed is True, and withdrawing
      a signature clears it
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from carebridge.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Matching(Base):
    __tablename__ = "matchings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Profile ids, not account ids
    nurse_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    elderly_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    service_level: Mapped[str] = mapped_column(String(20), nullable=False)

    # [{"start_time": iso8601, "end_time": iso8601}, ...]
    booking_time: Mapped[List[Dict[str, str]]] = mapped_column(JSON, nullable=False, default=list)

    # ── Contract signature sub-state ──────────────────────────────────────
    elderly_signature: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    nurse_signature: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    contract_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    is_signed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # {"reported_by": str, "reason": str, "timestamp": iso8601}
    violation_report: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    is_matched: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    matched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reset_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("idx_matchings_created_at", created_at.desc()),
    )

    def set_signature(self, role: str, signed: bool) -> None:
        """
        Sets one party's flag and recomputes the fully-signed flag.

        Withdrawing a signature from a matched pair also unmatches it.
        """
        if role == "elderly":
            self.elderly_signature = signed
        else:
            self.nurse_signature = signed
        self.is_signed = bool(self.elderly_signature and self.nurse_signature)
        if not self.is_signed:
            self.is_matched = False

    def has_signed(self, role: str) -> bool:
        return self.elderly_signature if role == "elderly" else self.nurse_signature

    @property
    def contract_status(self) -> Dict[str, Any]:
        return {
            "elderly_signature": self.elderly_signature,
            "nurse_signature": self.nurse_signature,
            "contract_hash": self.contract_hash,
            "is_signed": self.is_signed,
        }

    @property
    def state(self) -> str:
        if self.violation_report:
            return "violated"
        if self.is_matched:
            return "matched"
        if self.is_signed:
            return "fully_signed"
        if self.elderly_signature or self.nurse_signature:
            return "partially_signed"
        return "created"

    def __repr__(self) -> str:
        return f"<Matching(id={self.id}, state='{self.state}')>"
