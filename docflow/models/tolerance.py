import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from docflow.database import Base, CompanyScopedMixin
from docflow.models.base import Rate, TimestampMixin
from docflow.models.enums import ToleranceLevel, sql_in
from docflow.money import ZERO


class DeliveryTolerance(CompanyScopedMixin, TimestampMixin, Base):
    """How far a receipt or delivery may fall short of, or run over, the ordered quantity.

    One COMPANY row sets the company default; PRODUCT rows override it for a
    single product. Percentages apply to the ordered quantity of a line.
    """

    __tablename__ = "delivery_tolerances"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    level: Mapped[str] = mapped_column(String(20), nullable=False)
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    under_tolerance_pct: Mapped[Decimal] = mapped_column(Rate, default=ZERO, nullable=False)
    over_tolerance_pct: Mapped[Decimal] = mapped_column(Rate, default=ZERO, nullable=False)
    unlimited_over: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_delivery_tolerances_scope", "tenant_id", "company_id", "level", "product_id"),
        CheckConstraint(f"level IN ({sql_in(ToleranceLevel)})", name="chk_delivery_tolerances_level"),
        CheckConstraint(
            "(level = 'PRODUCT') = (product_id IS NOT NULL)", name="chk_delivery_tolerances_product"
        ),
        CheckConstraint(
            "under_tolerance_pct >= 0 AND under_tolerance_pct <= 100",
            name="chk_delivery_tolerances_under",
        ),
        CheckConstraint("over_tolerance_pct >= 0", name="chk_delivery_tolerances_over"),
    )

    def snapshot(self) -> dict:
        return {
            "level": self.level,
            "product_id": str(self.product_id) if self.product_id else None,
            "under_tolerance_pct": str(self.under_tolerance_pct),
            "over_tolerance_pct": str(self.over_tolerance_pct),
            "unlimited_over": self.unlimited_over,
            "is_active": self.is_active,
        }
