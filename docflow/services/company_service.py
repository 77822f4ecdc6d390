"""Tenant companies and their workflow settings."""

from typing import Optional

from sqlalchemy import select
import structlog

from docflow.errors import ConflictError, NotFoundError, ValidationError
from docflow.gateway import TenantGateway
from docflow.models.enums import CreditPolicy, DocumentType, InvoiceControlPolicy
from docflow.models.tenant import Company

logger = structlog.get_logger()


async def load_company(gw: TenantGateway) -> Company:
    company = await gw.first(select(Company).where(Company.id == gw.ctx.require_company()))
    if company is None or not company.is_active:
        raise NotFoundError("Company", gw.ctx.company_id)
    return company


def _check_settings(
    numbering: Optional[dict],
    invoice_control_policy: Optional[str],
    credit_policy: Optional[str],
) -> None:
    fields = {}
    for key, entry in (numbering or {}).items():
        if key not in DocumentType.__members__:
            fields[f"numbering.{key}"] = "unknown document type"
            continue
        number_format = (entry or {}).get("format", "{NUMBER}")
        if "{NUMBER}" not in number_format:
            fields[f"numbering.{key}.format"] = "format must contain {NUMBER}"
        elif "{MONTH}" in number_format and "{YEAR}" not in number_format:
            # Monthly sequences restart every month of every year.
            fields[f"numbering.{key}.format"] = "format with {MONTH} must also contain {YEAR}"
    if invoice_control_policy and invoice_control_policy not in InvoiceControlPolicy.__members__:
        fields["invoice_control_policy"] = "must be ORDERED or RECEIVED"
    if credit_policy and credit_policy not in CreditPolicy.__members__:
        fields["credit_policy"] = "must be ADVISORY, ENFORCE or DISABLED"
    if fields:
        raise ValidationError("Invalid company settings", fields)


async def create_company(gw: TenantGateway, code: str, name: str, **company_settings) -> Company:
    """Create a company under the gateway's tenant. Used by onboarding and tests."""
    _check_settings(
        company_settings.get("numbering"),
        company_settings.get("invoice_control_policy"),
        company_settings.get("credit_policy"),
    )
    existing = await gw.first(select(Company).where(Company.code == code))
    if existing is not None:
        raise ConflictError(f"Company with code '{code}' already exists")

    company = Company(code=code, name=name, **company_settings)
    gw.add(company)
    await gw.flush()
    logger.info("company_created", company_id=str(company.id), code=code)
    return company
