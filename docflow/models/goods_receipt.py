import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from docflow.database import Base
from docflow.models.base import DocumentLineMixin, DocumentMixin
from docflow.models.enums import DocumentType, GoodsReceiptStatus


class GoodsReceipt(DocumentMixin, Base):
    __tablename__ = "goods_receipts"
    document_type = DocumentType.GOODS_RECEIPT
    status_enum = GoodsReceiptStatus

    purchase_order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("purchase_orders.id"), nullable=False, index=True
    )
    supplier_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("parties.id"), nullable=False, index=True
    )
    receipt_date: Mapped[date] = mapped_column(Date, nullable=False)
    supplier_delivery_note: Mapped[Optional[str]] = mapped_column(String(100))
    accepted_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    lines: Mapped[list["GoodsReceiptLine"]] = relationship(
        back_populates="goods_receipt",
        cascade="all, delete-orphan",
        order_by="GoodsReceiptLine.line_number",
        lazy="selectin",
    )


class GoodsReceiptLine(DocumentLineMixin, Base):
    __tablename__ = "goods_receipt_lines"

    goods_receipt_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("goods_receipts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    purchase_order_line_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("purchase_order_lines.id"), nullable=False
    )

    goods_receipt: Mapped[GoodsReceipt] = relationship(back_populates="lines")
