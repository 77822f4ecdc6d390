import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from docflow.models.enums import ToleranceLevel


class DeliveryToleranceSet(BaseModel):
    level: ToleranceLevel = ToleranceLevel.COMPANY
    product_id: Optional[uuid.UUID] = None
    under_tolerance_pct: Decimal = Field(Decimal("0"), ge=0, le=100, max_digits=7, decimal_places=3)
    over_tolerance_pct: Decimal = Field(Decimal("0"), ge=0, max_digits=7, decimal_places=3)
    unlimited_over: bool = False
    is_active: bool = True
    notes: Optional[str] = None

    @model_validator(mode="after")
    def product_matches_level(self):
        if self.level == ToleranceLevel.PRODUCT and self.product_id is None:
            raise ValueError("product_id is required for PRODUCT tolerances")
        if self.level == ToleranceLevel.COMPANY and self.product_id is not None:
            raise ValueError("COMPANY tolerances do not take a product_id")
        return self


class DeliveryToleranceResponse(BaseModel):
    id: uuid.UUID
    level: str
    product_id: Optional[uuid.UUID] = None
    under_tolerance_pct: Decimal
    over_tolerance_pct: Decimal
    unlimited_over: bool
    is_active: bool
    notes: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class EffectiveToleranceResponse(BaseModel):
    product_id: Optional[str] = None
    under_pct: Decimal
    over_pct: Decimal
    unlimited_over: bool
    resolved_from: str
