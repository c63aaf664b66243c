"""
CareBridge Backend — Transaction Request/Response Schemas
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class TransactionStatusUpdate(BaseModel):
    status: str = Field(description="pending, completed, failed or cancelled")


class RefundRequest(BaseModel):
    reason: Optional[str] = Field(default=None, description="Stored as the transaction note")


class TransactionResponse(BaseModel):
    id: uuid.UUID
    elderly_id: uuid.UUID
    nurse_id: uuid.UUID
    amount: Decimal
    currency: str
    service_type: str
    platform_fee: Decimal
    nurse_receive_amount: Decimal
    status: str
    payment_method: str
    contract_id: Optional[uuid.UUID] = None
    withdraw_request_id: Optional[uuid.UUID] = None
    ledger_tx_hash: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TransactionListResponse(BaseModel):
    items: List[TransactionResponse]
    total_count: int
    page: int
    limit: int
