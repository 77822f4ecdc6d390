import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field


class PaymentCreate(BaseModel):
    source_type: Literal["SALES_ORDER", "PURCHASE_INVOICE"]
    source_id: uuid.UUID
    amount: Decimal = Field(..., gt=0, max_digits=18, decimal_places=2)
    payment_date: Optional[date] = None
    method: str = Field("BANK_TRANSFER", max_length=30)
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class PaymentVoid(BaseModel):
    reason: str = Field(..., min_length=1)


class PaymentResponse(BaseModel):
    id: uuid.UUID
    number: str
    party_id: uuid.UUID
    obligation_id: uuid.UUID
    source_type: str
    source_id: uuid.UUID
    amount: Decimal
    payment_date: date
    method: str
    reference: Optional[str] = None
    status: str
    voided_at: Optional[datetime] = None
    void_reason: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}
