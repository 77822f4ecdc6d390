"""
Delivery tolerances against an in-memory database: rule maintenance and
resolution, and how over/under tolerances bound goods receipts and
deliveries.
"""

import uuid
from decimal import Decimal

import pytest

from docflow.errors import InvariantViolationError, NotFoundError, ValidationError
from docflow.models.enums import DocumentType
from docflow.services import quantity_ledger, tolerance_service

PO = DocumentType.PURCHASE_ORDER
GRN = DocumentType.GOODS_RECEIPT
SO = DocumentType.SALES_ORDER
DL = DocumentType.DELIVERY


@pytest.fixture
def set_tolerance(call):
    async def _set(ctx, **payload):
        return await call(ctx, tolerance_service.set_tolerance, payload)

    return _set


async def _confirmed_po(docs, ctx, supplier, quantity="100", product_id=None):
    po = await docs.create(ctx, PO, {
        "supplier_id": str(supplier.id),
        "tax_rate": "0",
        "lines": [{
            "product_id": str(product_id or uuid.uuid4()),
            "quantity": quantity,
            "unit_price": "10.00",
        }],
    })
    return await docs.move(ctx, PO, po.id, "CONFIRMED")


async def _receive(docs, ctx, po, quantity):
    receipt = await docs.create(ctx, GRN, {
        "purchase_order_id": str(po.id),
        "lines": [{"purchase_order_line_id": str(po.lines[0].id), "quantity": quantity}],
    })
    return await docs.move(ctx, GRN, receipt.id, "ACCEPTED")


async def _approved_so(docs, ctx, customer, quantity, product_id=None):
    so = await docs.create(ctx, SO, {
        "customer_id": str(customer.id),
        "tax_rate": "0",
        "lines": [{
            "product_id": str(product_id or uuid.uuid4()),
            "quantity": quantity,
            "unit_price": "10.00",
        }],
    })
    return await docs.move(ctx, SO, so.id, "PENDING", "APPROVED")


def _deliver(so, quantity):
    return {
        "sales_order_id": str(so.id),
        "lines": [{"sales_order_line_id": str(so.lines[0].id), "quantity": quantity}],
    }


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_without_rules_nothing_is_tolerated(ctx, call):
    rule = await call(ctx, tolerance_service.get_effective_tolerance, uuid.uuid4())
    assert rule.resolved_from == "DEFAULT"
    assert rule.over_pct == Decimal("0")
    assert rule.under_pct == Decimal("0")


@pytest.mark.asyncio
async def test_product_rule_wins_over_company_rule(ctx, call, set_tolerance):
    product = uuid.uuid4()
    await set_tolerance(ctx, level="COMPANY", over_tolerance_pct="5", under_tolerance_pct="2")
    await set_tolerance(ctx, level="PRODUCT", product_id=str(product), over_tolerance_pct="25")

    specific = await call(ctx, tolerance_service.get_effective_tolerance, product)
    assert specific.resolved_from == "PRODUCT"
    assert specific.over_pct == Decimal("25")
    assert specific.under_pct == Decimal("0")

    fallback = await call(ctx, tolerance_service.get_effective_tolerance, uuid.uuid4())
    assert fallback.resolved_from == "COMPANY"
    assert fallback.over_pct == Decimal("5")


@pytest.mark.asyncio
async def test_setting_a_rule_replaces_the_active_one(ctx, call, set_tolerance):
    first = await set_tolerance(ctx, level="COMPANY", over_tolerance_pct="5")
    second = await set_tolerance(ctx, level="COMPANY", over_tolerance_pct="8", unlimited_over=True)

    assert second.id == first.id
    rules = await call(ctx, tolerance_service.list_tolerances)
    assert len(rules) == 1
    assert rules[0].over_tolerance_pct == Decimal("8")
    assert rules[0].unlimited_over is True


@pytest.mark.asyncio
async def test_inactive_and_deleted_rules_are_ignored(ctx, call, set_tolerance):
    product = uuid.uuid4()
    await set_tolerance(ctx, level="PRODUCT", product_id=str(product), over_tolerance_pct="10", is_active=False)
    assert (await call(ctx, tolerance_service.get_effective_tolerance, product)).resolved_from == "DEFAULT"

    company_rule = await set_tolerance(ctx, level="COMPANY", over_tolerance_pct="3")
    await call(ctx, tolerance_service.delete_tolerance, company_rule.id)
    assert (await call(ctx, tolerance_service.get_effective_tolerance, product)).resolved_from == "DEFAULT"
    assert len(await call(ctx, tolerance_service.list_tolerances, True)) == 1


@pytest.mark.parametrize(
    "payload",
    [
        {"level": "PRODUCT", "over_tolerance_pct": "5"},
        {"level": "COMPANY", "product_id": "c0000000-0000-0000-0000-000000000001"},
        {"level": "COMPANY", "under_tolerance_pct": "120"},
        {"level": "COMPANY", "over_tolerance_pct": "-1"},
        {"level": "CATALOG"},
    ],
)
@pytest.mark.asyncio
async def test_malformed_rules_are_rejected(ctx, set_tolerance, payload):
    with pytest.raises(ValidationError):
        await set_tolerance(ctx, **payload)


@pytest.mark.asyncio
async def test_rules_do_not_leak_across_tenants(ctx, other_ctx, call, set_tolerance):
    await set_tolerance(ctx, level="COMPANY", over_tolerance_pct="50")

    assert (await call(other_ctx, tolerance_service.get_effective_tolerance)).resolved_from == "DEFAULT"
    assert await call(other_ctx, tolerance_service.list_tolerances) == []


@pytest.mark.asyncio
async def test_other_tenant_cannot_delete_rule(ctx, other_ctx, call, set_tolerance):
    rule = await set_tolerance(ctx, level="COMPANY", over_tolerance_pct="5")

    with pytest.raises(NotFoundError):
        await call(other_ctx, tolerance_service.delete_tolerance, rule.id)


# ---------------------------------------------------------------------------
# Goods receipts
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_over_tolerance_admits_extra_receipt(ctx, parties, docs, set_tolerance):
    await set_tolerance(ctx, level="COMPANY", over_tolerance_pct="5")
    po = await _confirmed_po(docs, ctx, parties.supplier, quantity="100")

    await _receive(docs, ctx, po, "104")
    with pytest.raises(InvariantViolationError) as exc_info:
        await _receive(docs, ctx, po, "2")

    assert exc_info.value.details["max_quantity"] == "105.000"
    line = (await docs.get(ctx, PO, po.id)).lines[0]
    assert line.received_qty == Decimal("104")


@pytest.mark.asyncio
async def test_under_tolerance_counts_short_receipt_as_full(ctx, parties, docs, set_tolerance):
    await set_tolerance(ctx, level="COMPANY", under_tolerance_pct="5")
    po = await _confirmed_po(docs, ctx, parties.supplier, quantity="100")

    await _receive(docs, ctx, po, "94")
    assert (await docs.get(ctx, PO, po.id)).receipt_status == "PARTIAL"

    await _receive(docs, ctx, po, "1")
    assert (await docs.get(ctx, PO, po.id)).receipt_status == "FULL"


@pytest.mark.asyncio
async def test_unlimited_product_rule_lifts_ceiling(ctx, parties, docs, set_tolerance):
    product = uuid.uuid4()
    await set_tolerance(ctx, level="PRODUCT", product_id=str(product), unlimited_over=True)
    po = await _confirmed_po(docs, ctx, parties.supplier, quantity="10", product_id=product)

    await _receive(docs, ctx, po, "40")

    line = (await docs.get(ctx, PO, po.id)).lines[0]
    assert line.received_qty == Decimal("40")


@pytest.mark.asyncio
async def test_quantity_status_shows_receipt_ceiling(ctx, parties, docs, run, set_tolerance):
    await set_tolerance(ctx, level="COMPANY", over_tolerance_pct="10")
    po = await _confirmed_po(docs, ctx, parties.supplier, quantity="20")

    status = await run(quantity_ledger.get_effective_quantity_status, ctx, po.id)

    assert status.lines[0].max_receivable == Decimal("22.000")
    assert status.lines[0].receipt_tolerance == "COMPANY"


# ---------------------------------------------------------------------------
# Deliveries
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_over_tolerance_bounds_deliveries(ctx, parties, docs, set_tolerance):
    await set_tolerance(ctx, level="COMPANY", over_tolerance_pct="10")
    so = await _approved_so(docs, ctx, parties.customer, "10")

    await docs.create(ctx, DL, _deliver(so, "11"))
    with pytest.raises(InvariantViolationError):
        await docs.create(ctx, DL, _deliver(so, "0.5"))

    assert (await docs.get(ctx, SO, so.id)).lines[0].delivered_qty == Decimal("11")


@pytest.mark.asyncio
async def test_unlimited_over_delivery(ctx, parties, docs, set_tolerance):
    await set_tolerance(ctx, level="COMPANY", unlimited_over=True)
    so = await _approved_so(docs, ctx, parties.customer, "3")

    await docs.create(ctx, DL, _deliver(so, "5"))

    assert (await docs.get(ctx, SO, so.id)).lines[0].delivered_qty == Decimal("5")


@pytest.mark.asyncio
async def test_line_within_under_tolerance_is_not_planned_again(ctx, parties, docs, set_tolerance):
    await set_tolerance(ctx, level="COMPANY", under_tolerance_pct="5")
    so = await _approved_so(docs, ctx, parties.customer, "100")

    await docs.create(ctx, DL, _deliver(so, "96"))

    with pytest.raises(ValidationError):
        await docs.create(ctx, DL, {"sales_order_id": str(so.id)})


@pytest.mark.asyncio
async def test_line_short_of_under_tolerance_gets_the_rest(ctx, parties, docs, set_tolerance):
    await set_tolerance(ctx, level="COMPANY", under_tolerance_pct="5")
    so = await _approved_so(docs, ctx, parties.customer, "100")

    await docs.create(ctx, DL, _deliver(so, "90"))
    rest = await docs.create(ctx, DL, {"sales_order_id": str(so.id)})

    assert rest.lines[0].quantity == Decimal("10")
