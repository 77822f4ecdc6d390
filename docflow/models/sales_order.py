import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from docflow.database import Base
from docflow.models.base import DocumentLineMixin, DocumentMixin, Quantity
from docflow.models.enums import DocumentType, SalesOrderStatus
from docflow.money import ZERO


class SalesOrder(DocumentMixin, Base):
    __tablename__ = "sales_orders"
    document_type = DocumentType.SALES_ORDER
    status_enum = SalesOrderStatus

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("parties.id"), nullable=False, index=True
    )
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_delivery_date: Mapped[Optional[date]] = mapped_column(Date)
    delivery_address: Mapped[Optional[str]] = mapped_column(Text)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    lines: Mapped[list["SalesOrderLine"]] = relationship(
        back_populates="sales_order",
        cascade="all, delete-orphan",
        order_by="SalesOrderLine.line_number",
        lazy="selectin",
    )


class SalesOrderLine(DocumentLineMixin, Base):
    __tablename__ = "sales_order_lines"

    sales_order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sales_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    delivered_qty: Mapped[Decimal] = mapped_column(Quantity, default=ZERO, nullable=False)

    sales_order: Mapped[SalesOrder] = relationship(back_populates="lines")
