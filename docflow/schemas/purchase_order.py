import uuid
from datetime import date
from typing import List, Optional

from pydantic import Field

from docflow.schemas.document import DocumentLineCreate, DocumentTotalsInput


class PurchaseOrderCreate(DocumentTotalsInput):
    supplier_id: uuid.UUID
    order_date: Optional[date] = None
    expected_date: Optional[date] = None
    lines: List[DocumentLineCreate] = Field(..., min_length=1)


class PurchaseOrderUpdate(DocumentTotalsInput):
    expected_date: Optional[date] = None
    lines: Optional[List[DocumentLineCreate]] = Field(None, min_length=1)
