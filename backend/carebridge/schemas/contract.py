"""
CareBridge Backend — Contract Schemas and Payment Details Value Types
=======================================================================

What:  API contract for contracts, plus the PaymentDetails value type stored
       in `contracts.payment_details`.
How:   PaymentDetailsPatch carries optional fields and an explicit merge:
       existing ∪ supplied, supplied wins, absent (None) never overwrites.
       Decimals are stored as JSON strings to keep money exact.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class PaymentDetails(BaseModel):
    transaction_id: Optional[uuid.UUID] = None
    service_level: Optional[Literal["basic", "standard", "premium"]] = None
    price_per_hour: Optional[Decimal] = Field(default=None, ge=0)
    total_hours_booked: Optional[Decimal] = Field(default=None, ge=0)
    deposit_amount: Optional[Decimal] = Field(default=None, ge=0)
    remaining_payment: Optional[Decimal] = None
    nurse_share_percentage: Optional[Decimal] = Field(default=None, ge=0, le=100)
    platform_share_percentage: Optional[Decimal] = Field(default=None, ge=0, le=100)
    nurse_total_earnings: Optional[Decimal] = None
    platform_total_earnings: Optional[Decimal] = None
    currency: Optional[Literal["VND", "PlatformToken"]] = None

    @classmethod
    def from_stored(cls, stored: Optional[Dict[str, Any]]) -> "PaymentDetails":
        return cls.model_validate(stored or {})

    def to_stored(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class PaymentDetailsPatch(PaymentDetails):
    """Partial update of a contract's payment details."""

    def merge(self, existing: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        merged = PaymentDetails.from_stored(existing).to_stored()
        merged.update(self.to_stored())
        # Re-validate so the stored record is always a well-formed PaymentDetails
        return PaymentDetails.from_stored(merged).to_stored()


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class ContractFillRequest(BaseModel):
    terms: Optional[List[str]] = Field(default=None, description="Free-text contract terms")
    payment_details: Optional[PaymentDetailsPatch] = None
    effective_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None


class ContractStatusUpdate(BaseModel):
    status: str = Field(description="pending, active, violated or terminated")


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class HistoryEntry(BaseModel):
    action: str
    modified_by: str
    timestamp: datetime


class ContractResponse(BaseModel):
    id: uuid.UUID
    matching_id: uuid.UUID
    elderly_id: uuid.UUID
    nurse_id: uuid.UUID
    contract_hash: Optional[str] = None
    status: str
    signed_by_elderly: Optional[datetime] = None
    signed_by_nurse: Optional[datetime] = None
    elderly_signed: bool
    nurse_signed: bool
    effective_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    created_by: Optional[str] = None
    last_modified_at: datetime
    created_at: datetime
    history_logs: List[HistoryEntry]
    payment_details: PaymentDetails
    terms: List[str]

    model_config = {"from_attributes": True}


class ContractListResponse(BaseModel):
    items: List[ContractResponse]
    total_count: int
    page: int
    limit: int
