import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class PartyCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = None
    tax_id: Optional[str] = Field(None, max_length=50)
    credit_limit: Decimal = Field(Decimal("0"), ge=0, max_digits=18, decimal_places=2)
    payment_term_days: int = Field(30, ge=0, le=3650)


class PartyUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = None
    tax_id: Optional[str] = Field(None, max_length=50)
    credit_limit: Optional[Decimal] = Field(None, ge=0, max_digits=18, decimal_places=2)
    payment_term_days: Optional[int] = Field(None, ge=0, le=3650)


class PartyResponse(BaseModel):
    id: uuid.UUID
    party_type: str
    code: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    tax_id: Optional[str] = None
    credit_limit: Decimal
    current_outstanding: Decimal
    overdue_amount: Decimal
    payment_term_days: int
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class PartyBalanceResponse(BaseModel):
    party_id: str
    party_type: str
    code: str
    name: str
    credit_limit: Decimal
    outstanding: Decimal
    overdue: Decimal
    available_credit: Decimal

    model_config = {"from_attributes": True}


class CreditCheckRequest(BaseModel):
    amount: Decimal = Field(Decimal("0"), ge=0, max_digits=18, decimal_places=2)


class CreditCheckResponse(BaseModel):
    within_limit: bool
    credit_limit: Decimal
    outstanding: Decimal
    overdue: Decimal
    pending_amount: Decimal
    projected_outstanding: Decimal
    available_credit: Decimal
    utilization_pct: Decimal
    message: Optional[str] = None

    model_config = {"from_attributes": True}
