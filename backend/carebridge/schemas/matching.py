"""
CareBridge Backend — Matching Request/Response Schemas
========================================================

Request bodies keep booking windows loosely typed: window shape and ordering
are business rules checked by MatchingService, which reports them as 400
validation errors rather than framework 422s.
"""

import uuid
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class MatchingCreateRequest(BaseModel):
    nurse_id: Optional[uuid.UUID] = Field(default=None, description="Nurse profile id")
    service_level: Optional[str] = Field(default=None, description="basic, standard or premium")
    booking_time: Any = Field(
        default=None,
        description="List of {start_time, end_time} ISO 8601 windows",
    )


class BookingUpdateRequest(BaseModel):
    booking_time: Any = Field(default=None, description="Replacement list of booking windows")


class SignatureRequest(BaseModel):
    """Legacy direct-signature body; the caller's role selects the flag."""
    signature: Any = Field(default=None, description="Truthy to sign, falsy to withdraw")
    contract_hash: Optional[str] = Field(default=None, description="Settlement reference")


class OtpConfirmRequest(BaseModel):
    otp: Optional[str] = Field(default=None, description="Code received by email")


class ViolationRequest(BaseModel):
    reason: Optional[str] = Field(default=None, description="What went wrong")


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class BookingWindow(BaseModel):
    start_time: datetime
    end_time: datetime


class ContractStatus(BaseModel):
    elderly_signature: bool
    nurse_signature: bool
    contract_hash: Optional[str] = None
    is_signed: bool


class ViolationReport(BaseModel):
    reported_by: str
    reason: str
    timestamp: datetime


class MatchingResponse(BaseModel):
    id: uuid.UUID
    nurse_id: uuid.UUID
    elderly_id: uuid.UUID
    service_level: str
    booking_time: List[BookingWindow]
    contract_status: ContractStatus
    violation_report: Optional[ViolationReport] = None
    is_matched: bool
    matched_at: Optional[datetime] = None
    reset_at: Optional[datetime] = None
    state: str = Field(description="created, partially_signed, fully_signed, matched or violated")
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class MatchingListResponse(BaseModel):
    items: List[MatchingResponse]
    total_count: int
    page: int
    limit: int
