import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from docflow.database import Base
from docflow.models.base import DocumentLineMixin, DocumentMixin
from docflow.models.enums import DeliveryStatus, DocumentType


class Delivery(DocumentMixin, Base):
    __tablename__ = "deliveries"
    document_type = DocumentType.DELIVERY
    status_enum = DeliveryStatus

    sales_order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sales_orders.id"), nullable=False, index=True
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("parties.id"), nullable=False, index=True
    )
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False)
    departed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    arrived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    received_by_name: Mapped[Optional[str]] = mapped_column(String(255))
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    lines: Mapped[list["DeliveryLine"]] = relationship(
        back_populates="delivery",
        cascade="all, delete-orphan",
        order_by="DeliveryLine.line_number",
        lazy="selectin",
    )


class DeliveryLine(DocumentLineMixin, Base):
    __tablename__ = "delivery_lines"

    delivery_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("deliveries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sales_order_line_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sales_order_lines.id"), nullable=False
    )

    delivery: Mapped[Delivery] = relationship(back_populates="lines")
