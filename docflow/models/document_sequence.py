import uuid

from sqlalchemy import Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from docflow.database import Base, CompanyScopedMixin
from docflow.models.base import TimestampMixin


class DocumentSequence(CompanyScopedMixin, TimestampMixin, Base):
    """Last number handed out per (document type, period). Rows are locked while allocating."""

    __tablename__ = "document_sequences"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    document_type: Mapped[str] = mapped_column(String(30), nullable=False)
    # "2026-03" for monthly, "2026" for yearly, "ALL" when the format never resets
    period: Mapped[str] = mapped_column(String(10), nullable=False)
    last_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "company_id", "document_type", "period", name="uq_document_sequences_period"
        ),
    )
