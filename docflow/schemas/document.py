import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from docflow.models.enums import DocumentType


class DocumentLineCreate(BaseModel):
    product_id: uuid.UUID
    unit_id: Optional[uuid.UUID] = None
    batch_id: Optional[uuid.UUID] = None
    description: Optional[str] = Field(None, max_length=255)
    quantity: Decimal = Field(..., gt=0, max_digits=18, decimal_places=3)
    unit_price: Decimal = Field(Decimal("0"), ge=0, max_digits=18, decimal_places=2)
    discount_amount: Decimal = Field(Decimal("0"), ge=0, max_digits=18, decimal_places=2)
    tax_amount: Decimal = Field(Decimal("0"), ge=0, max_digits=18, decimal_places=2)


class DocumentTotalsInput(BaseModel):
    discount_amount: Decimal = Field(Decimal("0"), ge=0, max_digits=18, decimal_places=2)
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    shipping_cost: Decimal = Field(Decimal("0"), ge=0, max_digits=18, decimal_places=2)
    notes: Optional[str] = None


class TransitionRequest(BaseModel):
    target_state: str = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)


class ReasonPayload(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class DocumentLineResponse(BaseModel):
    id: uuid.UUID
    line_number: int
    product_id: uuid.UUID
    unit_id: Optional[uuid.UUID] = None
    batch_id: Optional[uuid.UUID] = None
    description: Optional[str] = None
    quantity: Decimal
    unit_price: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    line_total: Decimal
    delivered_qty: Optional[Decimal] = None
    received_qty: Optional[Decimal] = None
    invoiced_qty: Optional[Decimal] = None
    sales_order_line_id: Optional[uuid.UUID] = None
    purchase_order_line_id: Optional[uuid.UUID] = None

    model_config = {"from_attributes": True}


class DocumentResponse(BaseModel):
    id: uuid.UUID
    document_type: DocumentType
    number: str
    status: str
    tenant_id: uuid.UUID
    company_id: uuid.UUID
    subtotal: Decimal
    discount_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    shipping_cost: Decimal
    total_amount: Decimal
    notes: Optional[str] = None

    customer_id: Optional[uuid.UUID] = None
    supplier_id: Optional[uuid.UUID] = None
    sales_order_id: Optional[uuid.UUID] = None
    purchase_order_id: Optional[uuid.UUID] = None
    goods_receipt_id: Optional[uuid.UUID] = None

    order_date: Optional[date] = None
    delivery_date: Optional[date] = None
    receipt_date: Optional[date] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None

    invoice_status: Optional[str] = None
    receipt_status: Optional[str] = None
    payment_status: Optional[str] = None
    paid_amount: Optional[Decimal] = None
    remaining_amount: Optional[Decimal] = None

    created_by: Optional[uuid.UUID] = None
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    lines: List[DocumentLineResponse] = []

    model_config = {"from_attributes": True}


class LineQuantityStatusResponse(BaseModel):
    line_id: str
    product_id: str
    ordered_qty: Decimal
    received_qty: Decimal
    invoiced_qty: Decimal
    remaining_invoiceable: Decimal
    max_receivable: Optional[Decimal] = None
    receipt_tolerance: str = "DEFAULT"

    model_config = {"from_attributes": True}


class QuantityStatusResponse(BaseModel):
    purchase_order_id: str
    number: str
    invoice_status: str
    receipt_status: str
    control_policy: str
    tolerance_pct: Decimal
    lines: List[LineQuantityStatusResponse] = []

    model_config = {"from_attributes": True}
