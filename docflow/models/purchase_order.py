import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship, synonym

from docflow.database import Base
from docflow.models.base import DocumentLineMixin, DocumentMixin, Quantity
from docflow.models.enums import CoverageStatus, DocumentType, PurchaseOrderStatus
from docflow.money import ZERO


class PurchaseOrder(DocumentMixin, Base):
    __tablename__ = "purchase_orders"
    document_type = DocumentType.PURCHASE_ORDER
    status_enum = PurchaseOrderStatus

    supplier_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("parties.id"), nullable=False, index=True
    )
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_date: Mapped[Optional[date]] = mapped_column(Date)
    invoice_status: Mapped[str] = mapped_column(
        String(20), default=CoverageStatus.NONE.value, nullable=False
    )
    receipt_status: Mapped[str] = mapped_column(
        String(20), default=CoverageStatus.NONE.value, nullable=False
    )

    lines: Mapped[list["PurchaseOrderLine"]] = relationship(
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.line_number",
        lazy="selectin",
    )

    def snapshot(self) -> dict:
        state = super().snapshot()
        state["invoice_status"] = self.invoice_status
        state["receipt_status"] = self.receipt_status
        return state


class PurchaseOrderLine(DocumentLineMixin, Base):
    __tablename__ = "purchase_order_lines"

    purchase_order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    received_qty: Mapped[Decimal] = mapped_column(Quantity, default=ZERO, nullable=False)
    invoiced_qty: Mapped[Decimal] = mapped_column(Quantity, default=ZERO, nullable=False)

    ordered_qty = synonym("quantity")

    purchase_order: Mapped[PurchaseOrder] = relationship(back_populates="lines")
