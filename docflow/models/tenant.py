import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from docflow.database import Base, TenantScopedMixin, utcnow
from docflow.models.base import JSONType, Rate, TimestampMixin
from docflow.models.enums import CreditPolicy, DocumentType, InvoiceControlPolicy
from docflow.money import ZERO

DEFAULT_NUMBER_FORMAT = "{PREFIX}/{YEAR}/{MONTH}/{NUMBER}"

DEFAULT_PREFIXES = {
    DocumentType.SALES_ORDER: "SO",
    DocumentType.PURCHASE_ORDER: "PO",
    DocumentType.PURCHASE_INVOICE: "INV",
    DocumentType.DELIVERY: "DEL",
    DocumentType.GOODS_RECEIPT: "GRN",
    DocumentType.PAYMENT: "PAY",
}


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="ACTIVE", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Company(TenantScopedMixin, TimestampMixin, Base):
    """A legal entity inside a tenant; holds the document workflow settings."""

    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # {"SALES_ORDER": {"prefix": "SO", "format": "{PREFIX}/{YEAR}/{NUMBER}"}, ...}
    numbering: Mapped[Optional[dict]] = mapped_column(JSONType, default=dict)
    invoice_control_policy: Mapped[str] = mapped_column(
        String(20), default=InvoiceControlPolicy.ORDERED.value, nullable=False
    )
    invoice_tolerance_pct: Mapped[Decimal] = mapped_column(Rate, default=ZERO, nullable=False)
    credit_policy: Mapped[str] = mapped_column(
        String(20), default=CreditPolicy.ADVISORY.value, nullable=False
    )
    default_tax_rate: Mapped[Optional[Decimal]] = mapped_column(Rate)

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_companies_code"),
    )

    def number_settings(self, document_type: DocumentType) -> tuple[str, str]:
        """(prefix, format) for a document type, falling back to the defaults."""
        configured = (self.numbering or {}).get(document_type.value) or {}
        prefix = configured.get("prefix") or DEFAULT_PREFIXES[document_type]
        number_format = configured.get("format") or DEFAULT_NUMBER_FORMAT
        return prefix, number_format
