"""
Balance maintenance jobs: overdue refresh and outstanding reconciliation,
run per company the way the internal job endpoints run them.
"""

import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest

from docflow.models.enums import DocumentType
from docflow.services import reconciliation_service
from docflow.services.party_service import get_party

SO = DocumentType.SALES_ORDER
PO = DocumentType.PURCHASE_ORDER
PI = DocumentType.PURCHASE_INVOICE

FAR_FUTURE = date.today() + timedelta(days=3650)


async def _approved_order(docs, ctx, customer, unit_price="250.00"):
    so = await docs.create(ctx, SO, {
        "customer_id": str(customer.id),
        "tax_rate": "0",
        "lines": [{"product_id": str(uuid.uuid4()), "quantity": "4", "unit_price": unit_price}],
    })
    return await docs.move(ctx, SO, so.id, "PENDING", "APPROVED")


async def _approved_invoice(docs, ctx, supplier):
    po = await docs.create(ctx, PO, {
        "supplier_id": str(supplier.id),
        "tax_rate": "0",
        "lines": [{"product_id": str(uuid.uuid4()), "quantity": "10", "unit_price": "30.00"}],
    })
    po = await docs.move(ctx, PO, po.id, "CONFIRMED")
    line = po.lines[0]
    invoice = await docs.create(ctx, PI, {
        "supplier_id": str(supplier.id),
        "purchase_order_id": str(po.id),
        "tax_rate": "0",
        "lines": [{
            "product_id": str(line.product_id),
            "purchase_order_line_id": str(line.id),
            "quantity": "10",
            "unit_price": "30.00",
        }],
    })
    return await docs.move(ctx, PI, invoice.id, "SUBMITTED", "APPROVED")


async def _corrupt_outstanding(gw, party, amount):
    row = await get_party(gw, party.party_type, party.id, lock=True)
    row.current_outstanding = Decimal(amount)


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_consistent_balances_report_nothing(ctx, parties, docs, call):
    await _approved_order(docs, ctx, parties.customer)

    report = await call(ctx, reconciliation_service.reconcile_balances)

    assert report.checked == 2
    assert report.mismatches == []
    assert report.repaired == 0


@pytest.mark.asyncio
async def test_drift_is_reported_without_repair(ctx, parties, docs, call, party_of):
    await _approved_order(docs, ctx, parties.customer)
    await call(ctx, _corrupt_outstanding, parties.customer, "999.00")

    report = await call(ctx, reconciliation_service.reconcile_balances)

    assert len(report.mismatches) == 1
    mismatch = report.mismatches[0]
    assert mismatch.code == "CUST-001"
    assert mismatch.recorded == Decimal("999.00")
    assert mismatch.computed == Decimal("1000.00")
    assert mismatch.difference == Decimal("-1.00")
    assert (await party_of(ctx, parties.customer)).current_outstanding == Decimal("999.00")


@pytest.mark.asyncio
async def test_repair_restores_outstanding(ctx, parties, docs, call, party_of):
    await _approved_order(docs, ctx, parties.customer)
    await call(ctx, _corrupt_outstanding, parties.customer, "0.00")

    report = await call(ctx, reconciliation_service.reconcile_balances, repair=True)
    assert report.repaired == 1

    assert (await party_of(ctx, parties.customer)).current_outstanding == Decimal("1000.00")
    again = await call(ctx, reconciliation_service.reconcile_balances)
    assert again.mismatches == []


# ---------------------------------------------------------------------------
# Overdue refresh
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_nothing_is_overdue_today(ctx, parties, docs, call, party_of):
    await _approved_invoice(docs, ctx, parties.supplier)

    summary = await call(ctx, reconciliation_service.refresh_overdue_balances)

    assert summary["invoices_overdue"] == 0
    assert (await party_of(ctx, parties.supplier)).overdue_amount == Decimal("0.00")


@pytest.mark.asyncio
async def test_past_due_invoices_become_overdue(ctx, parties, docs, call, party_of):
    invoice = await _approved_invoice(docs, ctx, parties.supplier)
    await _approved_order(docs, ctx, parties.customer)

    summary = await call(ctx, reconciliation_service.refresh_overdue_balances, FAR_FUTURE)

    assert summary["parties_checked"] == 2
    assert summary["parties_changed"] == 2
    assert summary["invoices_overdue"] == 1
    assert (await docs.get(ctx, PI, invoice.id)).payment_status == "OVERDUE"
    assert (await party_of(ctx, parties.supplier)).overdue_amount == Decimal("300.00")
    assert (await party_of(ctx, parties.customer)).overdue_amount == Decimal("1000.00")


# ---------------------------------------------------------------------------
# Job contexts
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_company_contexts_cover_every_tenant(ctx, other_ctx, run):
    contexts = await run(reconciliation_service.company_contexts)

    pairs = {(c.tenant_id, c.company_id) for c in contexts}
    assert pairs == {
        (ctx.tenant_id, ctx.company_id),
        (other_ctx.tenant_id, other_ctx.company_id),
    }
