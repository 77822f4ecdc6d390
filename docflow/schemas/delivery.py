import uuid
from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class DeliveryLineCreate(BaseModel):
    sales_order_line_id: uuid.UUID
    quantity: Decimal = Field(..., gt=0, max_digits=18, decimal_places=3)
    batch_id: Optional[uuid.UUID] = None


class DeliveryCreate(BaseModel):
    sales_order_id: uuid.UUID
    delivery_date: Optional[date] = None
    notes: Optional[str] = None
    # Omitted lines deliver everything still undelivered on the order.
    lines: Optional[List[DeliveryLineCreate]] = Field(None, min_length=1)


class DeliveryConfirmPayload(BaseModel):
    received_by_name: Optional[str] = Field(None, max_length=255)
