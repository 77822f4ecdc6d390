import uuid
from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import Field

from docflow.schemas.document import DocumentLineCreate, DocumentTotalsInput


class PurchaseInvoiceLineCreate(DocumentLineCreate):
    purchase_order_line_id: Optional[uuid.UUID] = None
    goods_receipt_line_id: Optional[uuid.UUID] = None


class PurchaseInvoiceCreate(DocumentTotalsInput):
    supplier_id: uuid.UUID
    purchase_order_id: Optional[uuid.UUID] = None
    goods_receipt_id: Optional[uuid.UUID] = None
    supplier_invoice_number: Optional[str] = Field(None, max_length=100)
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    handling_cost: Decimal = Field(Decimal("0"), ge=0, max_digits=18, decimal_places=2)
    other_cost: Decimal = Field(Decimal("0"), ge=0, max_digits=18, decimal_places=2)
    lines: List[PurchaseInvoiceLineCreate] = Field(..., min_length=1)


class PurchaseInvoiceUpdate(DocumentTotalsInput):
    supplier_invoice_number: Optional[str] = Field(None, max_length=100)
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    handling_cost: Decimal = Field(Decimal("0"), ge=0, max_digits=18, decimal_places=2)
    other_cost: Decimal = Field(Decimal("0"), ge=0, max_digits=18, decimal_places=2)
    lines: Optional[List[PurchaseInvoiceLineCreate]] = Field(None, min_length=1)
