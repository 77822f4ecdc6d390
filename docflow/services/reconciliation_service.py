"""
Periodic balance maintenance, run per company by the internal job endpoints.

``refresh_overdue_balances`` recomputes each party's overdue amount for the
given day and flags approved invoices past their due date as OVERDUE.
``reconcile_balances`` recomputes every party's unsettled obligations and
reports parties whose ``current_outstanding`` has drifted from them.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from docflow.gateway import TenantGateway
from docflow.models.enums import InvoicePaymentStatus, PurchaseInvoiceStatus
from docflow.models.party import Party
from docflow.models.purchase_invoice import PurchaseInvoice
from docflow.models.tenant import Company, Tenant
from docflow.money import money
from docflow.services import balance_ledger
from docflow.services.purchase_invoice_service import payment_status_for
from docflow.tenancy import TenantContext

logger = structlog.get_logger()


@dataclass
class BalanceMismatch:
    party_id: str
    code: str
    recorded: Decimal
    computed: Decimal

    @property
    def difference(self) -> Decimal:
        return self.recorded - self.computed


@dataclass
class ReconciliationReport:
    checked: int = 0
    repaired: int = 0
    mismatches: list[BalanceMismatch] = field(default_factory=list)


async def refresh_overdue_balances(gw: TenantGateway, as_of: Optional[date] = None) -> dict:
    as_of = as_of or date.today()

    parties = await gw.scalars(
        select(Party).where(Party.is_active.is_(True)).with_for_update()
    )
    changed_parties = 0
    for party in parties:
        previous = money(party.overdue_amount)
        if await balance_ledger.refresh_overdue(gw, party, as_of) != previous:
            changed_parties += 1

    invoices = await gw.scalars(
        select(PurchaseInvoice)
        .where(
            PurchaseInvoice.status == PurchaseInvoiceStatus.APPROVED.value,
            PurchaseInvoice.payment_status != InvoicePaymentStatus.OVERDUE.value,
            PurchaseInvoice.due_date < as_of,
        )
        .with_for_update()
    )
    for invoice in invoices:
        invoice.payment_status = payment_status_for(invoice, as_of).value
    await gw.flush()

    logger.info(
        "overdue_refresh_complete",
        company_id=str(gw.ctx.company_id),
        parties_checked=len(parties),
        parties_changed=changed_parties,
        invoices_overdue=len(invoices),
    )
    return {
        "parties_checked": len(parties),
        "parties_changed": changed_parties,
        "invoices_overdue": len(invoices),
    }


async def reconcile_balances(gw: TenantGateway, repair: bool = False) -> ReconciliationReport:
    report = ReconciliationReport()
    parties = await gw.scalars(select(Party).order_by(Party.code).with_for_update())
    for party in parties:
        report.checked += 1
        computed = await balance_ledger.unsettled_total(gw, party.id)
        recorded = money(party.current_outstanding)
        if computed == recorded:
            continue

        mismatch = BalanceMismatch(
            party_id=str(party.id), code=party.code, recorded=recorded, computed=computed
        )
        report.mismatches.append(mismatch)
        logger.warning(
            "party_balance_mismatch",
            party_id=mismatch.party_id,
            code=party.code,
            recorded=str(recorded),
            computed=str(computed),
        )
        if repair:
            party.current_outstanding = computed
            await balance_ledger.refresh_overdue(gw, party)
            report.repaired += 1

    await gw.flush()
    logger.info(
        "balance_reconciliation_complete",
        company_id=str(gw.ctx.company_id),
        checked=report.checked,
        mismatches=len(report.mismatches),
        repaired=report.repaired,
    )
    return report


async def company_contexts(session: AsyncSession) -> list[TenantContext]:
    """Every active company of every active tenant, as a context to run jobs under."""
    tenants = (
        await session.execute(select(Tenant.id).where(Tenant.status == "ACTIVE"))
    ).scalars().all()
    contexts = []
    for tenant_id in tenants:
        gw = TenantGateway(session, TenantContext(tenant_id=tenant_id))
        company_ids = await gw.scalars(
            select(Company.id).where(Company.is_active.is_(True)).order_by(Company.code)
        )
        contexts.extend(gw.ctx.for_company(company_id) for company_id in company_ids)
    return contexts
