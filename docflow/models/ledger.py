import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from docflow.database import Base, CompanyScopedMixin
from docflow.models.base import Money, TimestampMixin
from docflow.models.enums import ObligationStatus, PaymentStatus, sql_in
from docflow.money import ZERO


class PartyObligation(CompanyScopedMixin, TimestampMixin, Base):
    """An amount a party owes (receivable) or is owed (payable) for one source document."""

    __tablename__ = "party_obligations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    party_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("parties.id"), nullable=False, index=True
    )
    source_type: Mapped[str] = mapped_column(String(30), nullable=False)
    source_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    source_number: Mapped[Optional[str]] = mapped_column(String(50))
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    settled_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=ObligationStatus.OPEN.value, nullable=False
    )
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_obligations_amount"),
        CheckConstraint(
            "settled_amount >= 0 AND settled_amount <= amount",
            name="chk_obligations_settled",
        ),
        CheckConstraint(f"status IN ({sql_in(ObligationStatus)})", name="chk_obligations_status"),
        Index("idx_obligations_source", "source_type", "source_id"),
    )

    @property
    def unsettled(self) -> Decimal:
        return self.amount - self.settled_amount


class Payment(CompanyScopedMixin, TimestampMixin, Base):
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    number: Mapped[str] = mapped_column(String(50), nullable=False)
    party_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("parties.id"), nullable=False, index=True
    )
    obligation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("party_obligations.id"), nullable=False, index=True
    )
    source_type: Mapped[str] = mapped_column(String(30), nullable=False)
    source_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    method: Mapped[str] = mapped_column(String(30), default="BANK_TRANSFER", nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(100))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(
        String(20), default=PaymentStatus.RECORDED.value, nullable=False
    )
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    voided_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    voided_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    void_reason: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("tenant_id", "company_id", "number", name="uq_payments_number"),
        CheckConstraint("amount > 0", name="chk_payments_amount"),
        CheckConstraint(f"status IN ({sql_in(PaymentStatus)})", name="chk_payments_status"),
    )
