import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from docflow.database import Base
from docflow.models.base import DocumentLineMixin, DocumentMixin, Money
from docflow.models.enums import (
    DocumentType,
    InvoicePaymentStatus,
    PurchaseInvoiceStatus,
    sql_in,
)
from docflow.money import ZERO


class PurchaseInvoice(DocumentMixin, Base):
    __tablename__ = "purchase_invoices"
    document_type = DocumentType.PURCHASE_INVOICE
    status_enum = PurchaseInvoiceStatus
    extra_cost_fields = ("shipping_cost", "handling_cost", "other_cost")

    supplier_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("parties.id"), nullable=False, index=True
    )
    purchase_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("purchase_orders.id"), index=True
    )
    goods_receipt_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("goods_receipts.id")
    )
    supplier_invoice_number: Mapped[Optional[str]] = mapped_column(String(100))
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_term_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    handling_cost: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    other_cost: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    remaining_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    payment_status: Mapped[str] = mapped_column(
        String(20), default=InvoicePaymentStatus.UNPAID.value, nullable=False
    )

    submitted_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    rejected_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)

    lines: Mapped[list["PurchaseInvoiceLine"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="PurchaseInvoiceLine.line_number",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "company_id", "number", name="uq_purchase_invoices_number"
        ),
        CheckConstraint(
            f"status IN ({sql_in(PurchaseInvoiceStatus)})",
            name="chk_purchase_invoices_status",
        ),
        CheckConstraint(
            f"payment_status IN ({sql_in(InvoicePaymentStatus)})",
            name="chk_purchase_invoices_payment_status",
        ),
        CheckConstraint("due_date >= invoice_date", name="chk_purchase_invoices_due_date"),
    )

    def recalculate_totals(self) -> None:
        super().recalculate_totals()
        self.remaining_amount = self.total_amount - (self.paid_amount or ZERO)

    def snapshot(self) -> dict:
        state = super().snapshot()
        state["payment_status"] = self.payment_status
        state["paid_amount"] = str(self.paid_amount)
        state["due_date"] = self.due_date.isoformat() if self.due_date else None
        return state


class PurchaseInvoiceLine(DocumentLineMixin, Base):
    __tablename__ = "purchase_invoice_lines"

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("purchase_invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    purchase_order_line_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("purchase_order_lines.id")
    )
    goods_receipt_line_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("goods_receipt_lines.id")
    )

    invoice: Mapped[PurchaseInvoice] = relationship(back_populates="lines")
