"""Column sets shared by every business document and document line."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import ClassVar, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from docflow.database import CompanyScopedMixin, utcnow
from docflow.models.enums import DocumentType, sql_in
from docflow.money import ZERO, money, percent_of, qty, total

Money = Numeric(18, 2)
Quantity = Numeric(18, 3)
Rate = Numeric(7, 3)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class DocumentMixin(CompanyScopedMixin, TimestampMixin):
    document_type: ClassVar[DocumentType]
    status_enum: ClassVar[type]
    # Cost columns added on top of the taxed subtotal.
    extra_cost_fields: ClassVar[tuple[str, ...]] = ("shipping_cost",)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    number: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    subtotal: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Rate, default=ZERO, nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    shipping_cost: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text)

    @declared_attr.directive
    def __table_args__(cls):
        return (
            UniqueConstraint(
                "tenant_id", "company_id", "number", name=f"uq_{cls.__tablename__}_number"
            ),
            CheckConstraint(
                f"status IN ({sql_in(cls.status_enum)})",
                name=f"chk_{cls.__tablename__}_status",
            ),
        )

    def recalculate_totals(self) -> None:
        self.subtotal = money(total(line.line_total for line in self.lines))
        taxable = self.subtotal - money(self.discount_amount)
        self.tax_amount = percent_of(taxable, self.tax_rate)
        extras = total(getattr(self, name) for name in self.extra_cost_fields)
        self.total_amount = money(taxable + self.tax_amount + extras)

    def snapshot(self) -> dict:
        """Flat JSON-safe view of the header, used for audit before/after states."""
        return {
            "number": self.number,
            "status": self.status,
            "subtotal": str(self.subtotal),
            "discount_amount": str(self.discount_amount),
            "tax_amount": str(self.tax_amount),
            "total_amount": str(self.total_amount),
            "line_count": len(self.lines),
        }


def compute_line_total(quantity, unit_price, discount_amount, tax_amount) -> Decimal:
    return money(
        qty(quantity) * money(unit_price) - money(discount_amount) + money(tax_amount)
    )


class DocumentLineMixin(CompanyScopedMixin):
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    unit_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    batch_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    description: Mapped[Optional[str]] = mapped_column(String(255))
    quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)

    def __init__(self, **kwargs):
        kwargs.pop("line_total", None)
        super().__init__(**kwargs)
        self.recalculate_line_total()

    def set_pricing(self, **changes) -> None:
        """Change quantity/price fields; the line total follows."""
        for key in ("quantity", "unit_price", "discount_amount", "tax_amount"):
            if key in changes:
                setattr(self, key, changes[key])
        self.recalculate_line_total()

    def recalculate_line_total(self) -> None:
        self.line_total = compute_line_total(
            self.quantity, self.unit_price, self.discount_amount, self.tax_amount
        )


@event.listens_for(DocumentLineMixin, "before_insert", propagate=True)
@event.listens_for(DocumentLineMixin, "before_update", propagate=True)
def _refresh_line_total(mapper, connection, target):
    target.recalculate_line_total()
