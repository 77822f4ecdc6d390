"""
Document number generator.

Numbers are rendered from the company's format for the document type, e.g.
``{PREFIX}/{YEAR}/{MONTH}/{NUMBER}`` -> ``SO/2026/03/0007``. The counter
resets monthly when the format contains {MONTH}, yearly when it only contains
{YEAR}, and never otherwise.

Allocation runs in the caller's transaction against a row-locked counter, so a
rolled-back document gives its number back and concurrent allocations queue
on the lock.
"""

from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
import structlog

from docflow.errors import ConflictError
from docflow.gateway import TenantGateway
from docflow.models.document_sequence import DocumentSequence
from docflow.models.enums import DocumentType
from docflow.models.tenant import Company
from docflow.services.company_service import load_company

logger = structlog.get_logger()

_UPSERT_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


def sequence_period(number_format: str, on_date: date) -> str:
    if "{MONTH}" in number_format:
        return f"{on_date.year:04d}-{on_date.month:02d}"
    if "{YEAR}" in number_format:
        return f"{on_date.year:04d}"
    return "ALL"


def render_number(number_format: str, prefix: str, on_date: date, value: int) -> str:
    return (
        number_format.replace("{PREFIX}", prefix)
        .replace("{YEAR}", f"{on_date.year:04d}")
        .replace("{MONTH}", f"{on_date.month:02d}")
        .replace("{NUMBER}", f"{value:04d}")
    )


async def _ensure_sequence_row(gw: TenantGateway, document_type: DocumentType, period: str) -> None:
    dialect = gw.session.bind.dialect.name
    insert = _UPSERT_INSERTS.get(dialect)
    if insert is None:
        raise ConflictError(f"Number sequences are not supported on {dialect}")
    stmt = (
        insert(DocumentSequence)
        .values(
            tenant_id=gw.ctx.tenant_id,
            company_id=gw.ctx.require_company(),
            document_type=document_type.value,
            period=period,
            last_value=0,
        )
        .on_conflict_do_nothing(
            index_elements=["tenant_id", "company_id", "document_type", "period"]
        )
    )
    await gw.execute(stmt)


async def next_value(gw: TenantGateway, document_type: DocumentType, period: str) -> int:
    """Increment and return the counter for (document type, period)."""
    stmt = (
        select(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type.value,
            DocumentSequence.period == period,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    sequence = await gw.first(stmt)
    if sequence is None:
        await _ensure_sequence_row(gw, document_type, period)
        sequence = await gw.first(stmt)
        if sequence is None:
            raise ConflictError("Could not allocate a document number")

    sequence.last_value += 1
    await gw.flush()
    return sequence.last_value


async def generate_number(
    gw: TenantGateway,
    document_type: DocumentType,
    on_date: Optional[date] = None,
    company: Optional[Company] = None,
) -> str:
    on_date = on_date or date.today()
    company = company or await load_company(gw)
    prefix, number_format = company.number_settings(document_type)
    period = sequence_period(number_format, on_date)

    value = await next_value(gw, document_type, period)
    number = render_number(number_format, prefix, on_date, value)
    logger.info(
        "document_number_allocated",
        document_type=document_type.value,
        period=period,
        number=number,
    )
    return number
