"""
CareBridge Backend — Transaction SQLAlchemy Model
===================================================

What:  Financial record derived from exactly one Contract.
How:   Money columns are NUMERIC(18, 2) mapped to Decimal, so
       amount == platform_fee + nurse_receive_amount holds exactly.
       The UNIQUE constraint on contract_id backs the existence check
       performed before derivation.

Lifecycle:
    pending ──payment ok──▶ completed ──refund──▶ cancelled
    pending ──payment failed──▶ failed
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from carebridge.database import Base

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"
TRANSACTION_STATUSES = (STATUS_PENDING, STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED)

CURRENCY_FIAT = "VND"
CURRENCY_TOKEN = "PlatformToken"
CURRENCIES = (CURRENCY_FIAT, CURRENCY_TOKEN)

METHOD_BANK_TRANSFER = "bank_transfer"
METHOD_LEDGER_TRANSFER = "ledger_transfer"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    elderly_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    nurse_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(20), nullable=False, default=CURRENCY_FIAT)
    service_type: Mapped[str] = mapped_column(String(20), nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    nurse_receive_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=STATUS_PENDING)
    payment_method: Mapped[str] = mapped_column(
        String(30), nullable=False, default=METHOD_BANK_TRANSFER
    )

    contract_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, unique=True)
    withdraw_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    # Ledger receipt hash for token payments and refunds
    ledger_tx_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("idx_transactions_created_at", created_at.desc()),
        CheckConstraint(
            "amount = platform_fee + nurse_receive_amount",
            name="ck_transactions_split",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction(id={self.id}, amount={self.amount} {self.currency}, "
            f"status='{self.status}')>"
        )
