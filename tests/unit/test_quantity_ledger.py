"""
Unit tests for docflow/services/quantity_ledger.py

Tests the quantity bounds without a database:
  - max_invoiceable under ORDERED and RECEIVED, with and without tolerance
  - coverage status (NONE / PARTIAL / FULL)
  - aggregation of invoice lines per purchase order line
  - apply/reverse_invoice against a mocked gateway
  - receipt and delivery ceilings under delivery tolerances
"""

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from docflow.errors import InvariantViolationError, ValidationError
from docflow.models.enums import CoverageStatus, InvoiceControlPolicy
from docflow.models.purchase_order import PurchaseOrder, PurchaseOrderLine
from docflow.models.sales_order import SalesOrder, SalesOrderLine
from docflow.services import quantity_ledger
from docflow.services.quantity_ledger import (
    InvoiceQuantityPolicy,
    aggregate_quantities,
    compute_coverage,
    max_invoiceable,
)
from docflow.services.tolerance_service import NO_TOLERANCE, ToleranceRule, ToleranceRules

ORDERED = InvoiceQuantityPolicy(InvoiceControlPolicy.ORDERED)
RECEIVED = InvoiceQuantityPolicy(InvoiceControlPolicy.RECEIVED)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_po_line(ordered="100", received="0", invoiced="0", line_number=1) -> PurchaseOrderLine:
    return PurchaseOrderLine(
        id=uuid.uuid4(),
        line_number=line_number,
        product_id=uuid.uuid4(),
        quantity=Decimal(ordered),
        unit_price=Decimal("10.00"),
        discount_amount=Decimal("0"),
        tax_amount=Decimal("0"),
        received_qty=Decimal(received),
        invoiced_qty=Decimal(invoiced),
    )


def _make_po(*lines) -> PurchaseOrder:
    po = PurchaseOrder(
        id=uuid.uuid4(),
        number="PO/2026/01/0001",
        status="CONFIRMED",
        invoice_status=CoverageStatus.NONE.value,
        receipt_status=CoverageStatus.NONE.value,
    )
    po.lines = list(lines)
    return po


def _gateway_returning(lines):
    """Gateway whose row-locking read returns ``lines``."""
    gw = AsyncMock()
    gw.scalars = AsyncMock(return_value=list(lines))
    return gw


# ---------------------------------------------------------------------------
# max_invoiceable
# ---------------------------------------------------------------------------


def test_ordered_policy_bounds_by_ordered_quantity():
    line = _make_po_line(ordered="100", received="0", invoiced="30")
    assert max_invoiceable(line, ORDERED) == Decimal("70.000")


def test_received_policy_bounds_by_received_quantity():
    line = _make_po_line(ordered="100", received="80", invoiced="0")
    assert max_invoiceable(line, RECEIVED) == Decimal("80.000")


def test_received_policy_with_nothing_received():
    line = _make_po_line(ordered="100", received="0", invoiced="0")
    assert max_invoiceable(line, RECEIVED) == Decimal("0.000")


def test_tolerance_scales_the_base():
    line = _make_po_line(ordered="100", received="80", invoiced="0")
    policy = InvoiceQuantityPolicy(InvoiceControlPolicy.RECEIVED, Decimal("5"))
    assert max_invoiceable(line, policy) == Decimal("84.000")


def test_tolerance_ceiling_rounds_down():
    line = _make_po_line(ordered="0.333")
    policy = InvoiceQuantityPolicy(InvoiceControlPolicy.ORDERED, Decimal("0.5"))
    # 0.334665 would round half-up to 0.335 and admit more than the tolerance allows.
    assert max_invoiceable(line, policy) == Decimal("0.334")


def test_over_invoiced_line_has_nothing_left():
    line = _make_po_line(ordered="10", received="10", invoiced="12")
    assert max_invoiceable(line, ORDERED) == Decimal("0.000")


# ---------------------------------------------------------------------------
# Coverage and aggregation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "pairs,expected",
    [
        ([("100", "0"), ("50", "0")], CoverageStatus.NONE),
        ([("100", "40"), ("50", "0")], CoverageStatus.PARTIAL),
        ([("100", "100"), ("50", "50")], CoverageStatus.FULL),
        # Totals decide, not individual lines.
        ([("100", "150"), ("50", "0")], CoverageStatus.FULL),
    ],
)
def test_compute_coverage(pairs, expected):
    assert compute_coverage(pairs) == expected


def test_aggregate_quantities_sums_per_line_and_skips_unlinked():
    a, b = uuid.uuid4(), uuid.uuid4()
    totals = aggregate_quantities([(a, "2"), (b, "1.5"), (a, "3"), (None, "9")])
    assert totals == {a: Decimal("5.000"), b: Decimal("1.500")}


def test_policy_from_company_settings():
    company = type("CompanyStub", (), {"invoice_control_policy": "RECEIVED", "invoice_tolerance_pct": Decimal("2.5")})
    policy = InvoiceQuantityPolicy.for_company(company)
    assert policy.control_policy == InvoiceControlPolicy.RECEIVED
    assert policy.tolerance_pct == Decimal("2.5")


# ---------------------------------------------------------------------------
# apply / reverse against a mocked gateway
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_apply_invoice_moves_counters_and_status():
    line = _make_po_line(ordered="100", received="80")
    po = _make_po(line)
    gw = _gateway_returning([line])

    await quantity_ledger.apply_invoice(gw, po, {line.id: Decimal("80")}, RECEIVED)

    assert line.invoiced_qty == Decimal("80.000")
    assert po.invoice_status == CoverageStatus.PARTIAL.value
    # Invoices never touch the receipt side.
    assert po.receipt_status == CoverageStatus.NONE.value
    gw.flush.assert_awaited()


@pytest.mark.asyncio
async def test_apply_invoice_over_bound_changes_nothing():
    line = _make_po_line(ordered="100", received="80")
    po = _make_po(line)
    gw = _gateway_returning([line])

    with pytest.raises(InvariantViolationError) as exc_info:
        await quantity_ledger.apply_invoice(gw, po, {line.id: Decimal("90")}, RECEIVED)

    assert exc_info.value.details["max_invoiceable"] == "80.000"
    assert line.invoiced_qty == Decimal("0")
    gw.flush.assert_not_awaited()


@pytest.mark.asyncio
async def test_apply_invoice_rejects_foreign_lines():
    line = _make_po_line()
    po = _make_po(line)
    gw = _gateway_returning([line])

    with pytest.raises(ValidationError):
        await quantity_ledger.apply_invoice(gw, po, {uuid.uuid4(): Decimal("1")}, ORDERED)


@pytest.mark.asyncio
async def test_reverse_invoice_restores_counters():
    line = _make_po_line(ordered="100", received="100", invoiced="100")
    po = _make_po(line)
    gw = _gateway_returning([line])

    await quantity_ledger.reverse_invoice(gw, po, {line.id: Decimal("40")})

    assert line.invoiced_qty == Decimal("60.000")
    assert po.invoice_status == CoverageStatus.PARTIAL.value


@pytest.mark.asyncio
async def test_reverse_beyond_counter_floors_at_zero():
    line = _make_po_line(invoiced="5")
    po = _make_po(line)
    gw = _gateway_returning([line])

    with patch.object(quantity_ledger, "logger") as log:
        await quantity_ledger.reverse_invoice(gw, po, {line.id: Decimal("8")})

    assert line.invoiced_qty == Decimal("0.000")
    log.warning.assert_called_once()
    assert log.warning.call_args[0][0] == "quantity_reversal_floored"


# ---------------------------------------------------------------------------
# Delivery tolerances
# ---------------------------------------------------------------------------


def _rules(**company):
    return ToleranceRules(company=ToleranceRule(resolved_from="COMPANY", **company))


def _make_so_line(ordered="10", delivered="0", product_id=None) -> SalesOrderLine:
    return SalesOrderLine(
        id=uuid.uuid4(),
        line_number=1,
        product_id=product_id or uuid.uuid4(),
        quantity=Decimal(ordered),
        unit_price=Decimal("10.00"),
        discount_amount=Decimal("0"),
        tax_amount=Decimal("0"),
        delivered_qty=Decimal(delivered),
    )


def _make_so(*lines) -> SalesOrder:
    so = SalesOrder(id=uuid.uuid4(), number="SO/2026/01/0001", status="APPROVED")
    so.lines = list(lines)
    return so


@pytest.mark.parametrize(
    "rule,ordered,ceiling,complete_at",
    [
        (ToleranceRule(), "100", Decimal("100.000"), Decimal("100.000")),
        (ToleranceRule(under_pct=Decimal("5"), over_pct=Decimal("10")), "100", Decimal("110.000"), Decimal("95.000")),
        # Ceilings round down, completion thresholds round up.
        (ToleranceRule(under_pct=Decimal("0.5"), over_pct=Decimal("0.5")), "0.333", Decimal("0.334"), Decimal("0.332")),
        (ToleranceRule(under_pct=Decimal("2"), unlimited_over=True), "50", None, Decimal("49.000")),
    ],
)
def test_tolerance_rule_bounds(rule, ordered, ceiling, complete_at):
    assert rule.max_quantity(Decimal(ordered)) == ceiling
    assert rule.complete_at(Decimal(ordered)) == complete_at


def test_product_rule_overrides_company_rule():
    product = uuid.uuid4()
    override = ToleranceRule(over_pct=Decimal("20"), resolved_from="PRODUCT")
    rules = ToleranceRules(company=ToleranceRule(over_pct=Decimal("5")), products={product: override})

    assert rules.for_product(product) is override
    assert rules.for_product(uuid.uuid4()).over_pct == Decimal("5")
    assert NO_TOLERANCE.for_product(product).resolved_from == "DEFAULT"


@pytest.mark.asyncio
async def test_apply_receipt_respects_over_tolerance():
    line = _make_po_line(ordered="100")
    po = _make_po(line)
    rules = _rules(over_pct=Decimal("2"))

    await quantity_ledger.apply_receipt(_gateway_returning([line]), po, {line.id: Decimal("102")}, rules)
    assert line.received_qty == Decimal("102.000")
    assert po.receipt_status == CoverageStatus.FULL.value

    with pytest.raises(InvariantViolationError) as exc_info:
        await quantity_ledger.apply_receipt(_gateway_returning([line]), po, {line.id: Decimal("1")}, rules)
    assert exc_info.value.details["max_quantity"] == "102.000"
    assert exc_info.value.details["tolerance"] == "COMPANY"
    assert line.received_qty == Decimal("102.000")


@pytest.mark.asyncio
async def test_apply_receipt_without_tolerance_stops_at_ordered():
    line = _make_po_line(ordered="10")
    po = _make_po(line)

    with pytest.raises(InvariantViolationError):
        await quantity_ledger.apply_receipt(
            _gateway_returning([line]), po, {line.id: Decimal("10.001")}, NO_TOLERANCE
        )
    assert line.received_qty == Decimal("0")


@pytest.mark.asyncio
async def test_under_tolerance_completes_the_receipt():
    short = _make_po_line(ordered="100")
    po = _make_po(short)

    await quantity_ledger.apply_receipt(
        _gateway_returning([short]), po, {short.id: Decimal("95")}, _rules(under_pct=Decimal("5"))
    )
    assert po.receipt_status == CoverageStatus.FULL.value

    other = _make_po_line(ordered="100")
    po = _make_po(other)
    await quantity_ledger.apply_receipt(_gateway_returning([other]), po, {other.id: Decimal("95")}, NO_TOLERANCE)
    assert po.receipt_status == CoverageStatus.PARTIAL.value


@pytest.mark.asyncio
async def test_unlimited_over_tolerance_has_no_ceiling():
    line = _make_po_line(ordered="10")
    po = _make_po(line)

    await quantity_ledger.apply_receipt(
        _gateway_returning([line]), po, {line.id: Decimal("250")}, _rules(unlimited_over=True)
    )
    assert line.received_qty == Decimal("250.000")
    assert po.receipt_status == CoverageStatus.FULL.value


@pytest.mark.asyncio
async def test_product_override_applies_per_line():
    strict = _make_po_line(ordered="10", line_number=1)
    loose = _make_po_line(ordered="10", line_number=2)
    rules = ToleranceRules(products={loose.product_id: ToleranceRule(over_pct=Decimal("50"))})
    po = _make_po(strict, loose)

    await quantity_ledger.apply_receipt(_gateway_returning([strict, loose]), po, {loose.id: Decimal("15")}, rules)
    assert loose.received_qty == Decimal("15.000")

    with pytest.raises(InvariantViolationError):
        await quantity_ledger.apply_receipt(
            _gateway_returning([strict, loose]), po, {strict.id: Decimal("11")}, rules
        )


@pytest.mark.asyncio
async def test_reverse_receipt_under_received_policy_protects_invoiced():
    line = _make_po_line(ordered="100", received="80", invoiced="80")
    po = _make_po(line)

    with pytest.raises(InvariantViolationError):
        await quantity_ledger.reverse_receipt(
            _gateway_returning([line]), po, {line.id: Decimal("80")}, InvoiceControlPolicy.RECEIVED, NO_TOLERANCE
        )
    assert line.received_qty == Decimal("80")

    await quantity_ledger.reverse_receipt(
        _gateway_returning([line]), po, {line.id: Decimal("80")}, InvoiceControlPolicy.ORDERED, NO_TOLERANCE
    )
    assert line.received_qty == Decimal("0.000")
    assert po.receipt_status == CoverageStatus.NONE.value


@pytest.mark.asyncio
async def test_apply_delivery_respects_over_tolerance():
    line = _make_so_line(ordered="10")
    so = _make_so(line)

    await quantity_ledger.apply_delivery(
        _gateway_returning([line]), so, {line.id: Decimal("11")}, _rules(over_pct=Decimal("10"))
    )
    assert line.delivered_qty == Decimal("11.000")

    with pytest.raises(InvariantViolationError) as exc_info:
        await quantity_ledger.apply_delivery(
            _gateway_returning([line]), so, {line.id: Decimal("0.5")}, _rules(over_pct=Decimal("10"))
        )
    assert exc_info.value.details["sales_order_line_id"] == str(line.id)
    assert exc_info.value.details["max_quantity"] == "11.000"


@pytest.mark.asyncio
async def test_apply_delivery_without_tolerance_stops_at_ordered():
    line = _make_so_line(ordered="10", delivered="4")
    so = _make_so(line)

    with pytest.raises(InvariantViolationError):
        await quantity_ledger.apply_delivery(_gateway_returning([line]), so, {line.id: Decimal("7")}, NO_TOLERANCE)
    assert line.delivered_qty == Decimal("4")


@pytest.mark.asyncio
async def test_apply_delivery_unlimited_over():
    line = _make_so_line(ordered="10")
    so = _make_so(line)

    await quantity_ledger.apply_delivery(
        _gateway_returning([line]), so, {line.id: Decimal("40")}, _rules(unlimited_over=True)
    )
    assert line.delivered_qty == Decimal("40.000")


def test_delivery_complete_within_under_tolerance():
    line = _make_so_line(ordered="100", delivered="97")
    assert quantity_ledger.delivery_complete(line, _rules(under_pct=Decimal("3")))
    assert not quantity_ledger.delivery_complete(line, NO_TOLERANCE)
