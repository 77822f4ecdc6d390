import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from docflow.database import Base, CompanyScopedMixin
from docflow.models.base import Money, TimestampMixin
from docflow.models.enums import PartyType, sql_in
from docflow.money import ZERO


class Party(CompanyScopedMixin, TimestampMixin, Base):
    """Customer or supplier. Balance columns are owned by the balance ledger."""

    __tablename__ = "parties"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    party_type: Mapped[str] = mapped_column(String(20), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    address: Mapped[Optional[str]] = mapped_column(Text)
    tax_id: Mapped[Optional[str]] = mapped_column(String(50))

    credit_limit: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    current_outstanding: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    overdue_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    payment_term_days: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "company_id", "party_type", "code", name="uq_parties_code"),
        CheckConstraint(f"party_type IN ({sql_in(PartyType)})", name="chk_parties_type"),
        CheckConstraint("credit_limit >= 0", name="chk_parties_credit_limit"),
        CheckConstraint("current_outstanding >= 0", name="chk_parties_outstanding"),
        CheckConstraint("overdue_amount >= 0", name="chk_parties_overdue"),
    )
