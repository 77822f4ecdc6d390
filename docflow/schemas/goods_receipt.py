import uuid
from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class GoodsReceiptLineCreate(BaseModel):
    purchase_order_line_id: uuid.UUID
    quantity: Decimal = Field(..., gt=0, max_digits=18, decimal_places=3)
    batch_id: Optional[uuid.UUID] = None


class GoodsReceiptCreate(BaseModel):
    purchase_order_id: uuid.UUID
    receipt_date: Optional[date] = None
    supplier_delivery_note: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    lines: List[GoodsReceiptLineCreate] = Field(..., min_length=1)
