"""
CareBridge Backend — Dispute Request/Response Schemas
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class DisputeCreateRequest(BaseModel):
    transaction_id: Optional[uuid.UUID] = None
    defendant_id: Optional[uuid.UUID] = Field(default=None, description="Profile id of the other party")
    reason: Optional[str] = None
    evidences: List[str] = Field(default_factory=list, description="Links or references to evidence")


class DisputeStatusUpdate(BaseModel):
    status: str = Field(description="open, under_review, resolved or rejected")
    resolution: Optional[str] = None


class DisputeResponse(BaseModel):
    id: uuid.UUID
    transaction_id: uuid.UUID
    complainant_id: uuid.UUID
    complainant_role: str
    defendant_id: uuid.UUID
    defendant_role: str
    reason: str
    evidences: List[str]
    status: str
    resolution: Optional[str] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DisputeListResponse(BaseModel):
    items: List[DisputeResponse]
    total_count: int
    page: int
    limit: int
