import uuid
from datetime import date
from typing import List, Optional

from pydantic import Field

from docflow.schemas.document import DocumentLineCreate, DocumentTotalsInput


class SalesOrderCreate(DocumentTotalsInput):
    customer_id: uuid.UUID
    order_date: Optional[date] = None
    expected_delivery_date: Optional[date] = None
    delivery_address: Optional[str] = None
    lines: List[DocumentLineCreate] = Field(..., min_length=1)


class SalesOrderUpdate(DocumentTotalsInput):
    expected_delivery_date: Optional[date] = None
    delivery_address: Optional[str] = None
    lines: Optional[List[DocumentLineCreate]] = Field(None, min_length=1)
