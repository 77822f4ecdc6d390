"""
Cross-document quantity ledger.

Purchase order lines carry three counters: ordered (the line quantity),
received and invoiced. Goods receipts move ``received_qty`` and purchase
invoices move ``invoiced_qty``; sales order lines carry ``delivered_qty``
moved by deliveries. Every movement goes through a named apply/reverse pair
that works on row-locked lines, so a reversal subtracts exactly what the
matching apply added.

Bounds:
  - invoiced:  invoiced + qty <= max_invoiceable(line) where the base is
               (ordered - invoiced) under ORDERED and (received - invoiced)
               under RECEIVED, scaled by (1 + tolerance/100)
  - received:  received + qty <= ordered * (1 + over/100)
  - delivered: delivered + qty <= ordered * (1 + over/100)

``over`` comes from the line's delivery tolerance and is ignored when the
tolerance allows unlimited over-delivery. A line whose received quantity
reaches ordered * (1 - under/100) counts as fully received. Ceilings round
down to the quantity precision.
"""

import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from docflow.errors import InvariantViolationError, ValidationError
from docflow.gateway import TenantGateway
from docflow.models.enums import CoverageStatus, InvoiceControlPolicy
from docflow.models.purchase_order import PurchaseOrder, PurchaseOrderLine
from docflow.models.sales_order import SalesOrder, SalesOrderLine
from docflow.money import HUNDRED, ZERO, qty, to_decimal
from docflow.services.company_service import load_company
from docflow.services.tolerance_service import ToleranceRules, resolve_tolerances
from docflow.tenancy import TenantContext

logger = structlog.get_logger()


@dataclass(frozen=True)
class InvoiceQuantityPolicy:
    control_policy: InvoiceControlPolicy = InvoiceControlPolicy.ORDERED
    tolerance_pct: Decimal = ZERO

    @classmethod
    def for_company(cls, company) -> "InvoiceQuantityPolicy":
        return cls(
            control_policy=InvoiceControlPolicy(company.invoice_control_policy),
            tolerance_pct=to_decimal(company.invoice_tolerance_pct),
        )


@dataclass
class LineQuantityStatus:
    line_id: str
    product_id: str
    ordered_qty: Decimal
    received_qty: Decimal
    invoiced_qty: Decimal
    remaining_invoiceable: Decimal
    max_receivable: Optional[Decimal] = None
    receipt_tolerance: str = "DEFAULT"


@dataclass
class QuantityStatus:
    purchase_order_id: str
    number: str
    invoice_status: str
    receipt_status: str
    control_policy: str
    tolerance_pct: Decimal
    lines: list[LineQuantityStatus] = field(default_factory=list)


def _scale(base: Decimal, tolerance_pct) -> Decimal:
    return qty(base * (HUNDRED + to_decimal(tolerance_pct)) / HUNDRED, ROUND_DOWN)


def max_invoiceable(line: PurchaseOrderLine, policy: InvoiceQuantityPolicy) -> Decimal:
    """Quantity still invoiceable on ``line`` under ``policy``."""
    if policy.control_policy == InvoiceControlPolicy.RECEIVED:
        base = to_decimal(line.received_qty) - to_decimal(line.invoiced_qty)
    else:
        base = to_decimal(line.quantity) - to_decimal(line.invoiced_qty)
    return _scale(max(base, ZERO), policy.tolerance_pct)


def aggregate_quantities(items: Iterable[tuple]) -> dict[uuid.UUID, Decimal]:
    """Sum (line_id, quantity) pairs per line, skipping lines without a link."""
    totals: dict[uuid.UUID, Decimal] = defaultdict(lambda: ZERO)
    for line_id, quantity in items:
        if line_id is None:
            continue
        totals[line_id] += qty(quantity)
    return dict(totals)


def compute_coverage(pairs: Iterable[tuple]) -> CoverageStatus:
    """NONE when nothing is covered, FULL when Σcovered >= Σordered, else PARTIAL."""
    ordered = ZERO
    covered = ZERO
    for ordered_qty, covered_qty in pairs:
        ordered += to_decimal(ordered_qty)
        covered += to_decimal(covered_qty)
    if covered <= ZERO:
        return CoverageStatus.NONE
    if covered >= ordered:
        return CoverageStatus.FULL
    return CoverageStatus.PARTIAL


def refresh_invoice_status(po: PurchaseOrder, lines: Iterable[PurchaseOrderLine]) -> None:
    po.invoice_status = compute_coverage((line.quantity, line.invoiced_qty) for line in lines).value


def refresh_receipt_status(
    po: PurchaseOrder, lines: Iterable[PurchaseOrderLine], rules: ToleranceRules
) -> None:
    po.receipt_status = compute_coverage(
        (rules.for_product(line.product_id).complete_at(line.quantity), line.received_qty)
        for line in lines
    ).value


async def lock_order_lines(
    gw: TenantGateway, purchase_order_id: uuid.UUID
) -> dict[uuid.UUID, PurchaseOrderLine]:
    stmt = (
        select(PurchaseOrderLine)
        .where(PurchaseOrderLine.purchase_order_id == purchase_order_id)
        .order_by(PurchaseOrderLine.line_number, PurchaseOrderLine.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {line.id: line for line in await gw.scalars(stmt)}


def _require_lines(
    lines: dict[uuid.UUID, PurchaseOrderLine], deltas: dict[uuid.UUID, Decimal], po_number: str
) -> None:
    unknown = [str(line_id) for line_id in deltas if line_id not in lines]
    if unknown:
        raise ValidationError(
            f"Lines do not belong to purchase order {po_number}",
            {"purchase_order_line_id": ", ".join(unknown)},
        )


# ---------------------------------------------------------------------------
# Invoiced quantities
# ---------------------------------------------------------------------------


async def validate_invoice_quantities(
    gw: TenantGateway,
    po: PurchaseOrder,
    deltas: dict[uuid.UUID, Decimal],
    policy: InvoiceQuantityPolicy,
) -> dict[uuid.UUID, PurchaseOrderLine]:
    """Lock the PO lines and check every delta against its bound. Returns the locked lines."""
    lines = await lock_order_lines(gw, po.id)
    _require_lines(lines, deltas, po.number)

    for line_id, quantity in deltas.items():
        if quantity <= ZERO:
            raise ValidationError("Invoiced quantity must be positive", {"quantity": str(quantity)})
        line = lines[line_id]
        allowed = max_invoiceable(line, policy)
        if quantity > allowed:
            logger.warning(
                "invoice_quantity_exceeded",
                purchase_order_id=str(po.id),
                line_id=str(line_id),
                requested=str(quantity),
                allowed=str(allowed),
                policy=policy.control_policy.value,
            )
            raise InvariantViolationError(
                f"Invoiced quantity {quantity} exceeds the {allowed} still invoiceable "
                f"on line {line.line_number} of {po.number}",
                {
                    "purchase_order_line_id": str(line_id),
                    "requested": str(quantity),
                    "max_invoiceable": str(allowed),
                    "policy": policy.control_policy.value,
                },
            )
    return lines


async def apply_invoice(
    gw: TenantGateway,
    po: PurchaseOrder,
    deltas: dict[uuid.UUID, Decimal],
    policy: InvoiceQuantityPolicy,
) -> None:
    lines = await validate_invoice_quantities(gw, po, deltas, policy)
    for line_id, quantity in deltas.items():
        lines[line_id].invoiced_qty = qty(to_decimal(lines[line_id].invoiced_qty) + quantity)
    refresh_invoice_status(po, lines.values())
    await gw.flush()
    logger.info(
        "invoice_quantities_applied",
        purchase_order_id=str(po.id),
        lines=len(deltas),
        invoice_status=po.invoice_status,
    )


async def reverse_invoice(
    gw: TenantGateway, po: PurchaseOrder, deltas: dict[uuid.UUID, Decimal]
) -> None:
    lines = await lock_order_lines(gw, po.id)
    for line_id, quantity in deltas.items():
        line = lines.get(line_id)
        if line is None:
            continue
        _subtract(line, "invoiced_qty", quantity, po)
    refresh_invoice_status(po, lines.values())
    await gw.flush()
    logger.info(
        "invoice_quantities_reversed",
        purchase_order_id=str(po.id),
        lines=len(deltas),
        invoice_status=po.invoice_status,
    )


# ---------------------------------------------------------------------------
# Received quantities
# ---------------------------------------------------------------------------


async def _rules_for(gw: TenantGateway, lines, rules: Optional[ToleranceRules]) -> ToleranceRules:
    if rules is not None:
        return rules
    return await resolve_tolerances(gw, (line.product_id for line in lines))


def _raise_counter(line, counter: str, quantity: Decimal, rules: ToleranceRules, document, line_key: str):
    """Add ``quantity`` to ``line.<counter>`` unless it would pass the over-tolerance ceiling."""
    rule = rules.for_product(line.product_id)
    ceiling = rule.max_quantity(line.quantity)
    new_value = qty(to_decimal(getattr(line, counter)) + quantity)
    if ceiling is not None and new_value > ceiling:
        logger.warning(
            "quantity_tolerance_exceeded",
            document_id=str(document.id),
            line_id=str(line.id),
            counter=counter,
            requested=str(quantity),
            ceiling=str(ceiling),
            tolerance=rule.resolved_from,
        )
        raise InvariantViolationError(
            f"Adding {quantity} to line {line.line_number} of {document.number} exceeds the ordered "
            f"quantity {qty(line.quantity)} plus its {rule.over_pct}% over-delivery tolerance",
            {
                line_key: str(line.id),
                counter: str(getattr(line, counter)),
                "requested": str(quantity),
                "ordered_qty": str(line.quantity),
                "max_quantity": str(ceiling),
                "over_tolerance_pct": str(rule.over_pct),
                "tolerance": rule.resolved_from,
            },
        )
    setattr(line, counter, new_value)


async def apply_receipt(
    gw: TenantGateway,
    po: PurchaseOrder,
    deltas: dict[uuid.UUID, Decimal],
    rules: Optional[ToleranceRules] = None,
) -> None:
    lines = await lock_order_lines(gw, po.id)
    _require_lines(lines, deltas, po.number)
    rules = await _rules_for(gw, lines.values(), rules)

    for line_id, quantity in deltas.items():
        _raise_counter(lines[line_id], "received_qty", quantity, rules, po, "purchase_order_line_id")

    refresh_receipt_status(po, lines.values(), rules)
    await gw.flush()
    logger.info(
        "receipt_quantities_applied",
        purchase_order_id=str(po.id),
        lines=len(deltas),
        receipt_status=po.receipt_status,
    )


async def reverse_receipt(
    gw: TenantGateway,
    po: PurchaseOrder,
    deltas: dict[uuid.UUID, Decimal],
    control_policy: InvoiceControlPolicy = InvoiceControlPolicy.ORDERED,
    rules: Optional[ToleranceRules] = None,
) -> None:
    """Take received quantities back. Under RECEIVED, refuses to go below what is invoiced."""
    lines = await lock_order_lines(gw, po.id)
    for line_id, quantity in deltas.items():
        line = lines.get(line_id)
        if line is None:
            continue
        remaining = to_decimal(line.received_qty) - quantity
        if control_policy == InvoiceControlPolicy.RECEIVED and remaining < to_decimal(line.invoiced_qty):
            raise InvariantViolationError(
                f"Line {line.line_number} of {po.number} is already invoiced beyond "
                f"what would remain received",
                {
                    "purchase_order_line_id": str(line_id),
                    "invoiced_qty": str(line.invoiced_qty),
                    "received_after": str(max(remaining, ZERO)),
                },
            )
        _subtract(line, "received_qty", quantity, po)

    refresh_receipt_status(po, lines.values(), await _rules_for(gw, lines.values(), rules))
    await gw.flush()
    logger.info(
        "receipt_quantities_reversed",
        purchase_order_id=str(po.id),
        lines=len(deltas),
        receipt_status=po.receipt_status,
    )


def _subtract(line, attribute: str, quantity: Decimal, document) -> None:
    current = to_decimal(getattr(line, attribute))
    if quantity > current:
        logger.warning(
            "quantity_reversal_floored",
            document_id=str(document.id),
            line_id=str(line.id),
            counter=attribute,
            current=str(current),
            reversed=str(quantity),
        )
    setattr(line, attribute, qty(max(current - quantity, ZERO)))


# ---------------------------------------------------------------------------
# Delivered quantities
# ---------------------------------------------------------------------------


async def lock_sales_order_lines(
    gw: TenantGateway, sales_order_id: uuid.UUID
) -> dict[uuid.UUID, SalesOrderLine]:
    stmt = (
        select(SalesOrderLine)
        .where(SalesOrderLine.sales_order_id == sales_order_id)
        .order_by(SalesOrderLine.line_number, SalesOrderLine.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {line.id: line for line in await gw.scalars(stmt)}


def delivery_complete(line: SalesOrderLine, rules: ToleranceRules) -> bool:
    """True once a line is delivered to within its under-delivery tolerance."""
    return to_decimal(line.delivered_qty) >= rules.for_product(line.product_id).complete_at(line.quantity)


async def apply_delivery(
    gw: TenantGateway,
    so: SalesOrder,
    deltas: dict[uuid.UUID, Decimal],
    rules: Optional[ToleranceRules] = None,
) -> None:
    lines = await lock_sales_order_lines(gw, so.id)
    unknown = [str(line_id) for line_id in deltas if line_id not in lines]
    if unknown:
        raise ValidationError(
            f"Lines do not belong to sales order {so.number}",
            {"sales_order_line_id": ", ".join(unknown)},
        )
    rules = await _rules_for(gw, lines.values(), rules)

    for line_id, quantity in deltas.items():
        _raise_counter(lines[line_id], "delivered_qty", quantity, rules, so, "sales_order_line_id")

    await gw.flush()
    logger.info(
        "delivery_quantities_applied",
        sales_order_id=str(so.id),
        lines=len(deltas),
        complete=all(delivery_complete(line, rules) for line in lines.values()),
    )


async def reverse_delivery(
    gw: TenantGateway, so: SalesOrder, deltas: dict[uuid.UUID, Decimal]
) -> None:
    lines = await lock_sales_order_lines(gw, so.id)
    for line_id, quantity in deltas.items():
        line = lines.get(line_id)
        if line is not None:
            _subtract(line, "delivered_qty", quantity, so)
    await gw.flush()
    logger.info("delivery_quantities_reversed", sales_order_id=str(so.id), lines=len(deltas))


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------


async def get_effective_quantity_status(
    session: AsyncSession,
    ctx: TenantContext,
    purchase_order_id,
    policy: Optional[InvoiceQuantityPolicy] = None,
) -> QuantityStatus:
    """Per-line counters with the invoiceable remainder and the receipt ceiling."""
    gw = TenantGateway(session, ctx)
    po = await gw.get(PurchaseOrder, purchase_order_id, label="Purchase order")
    if policy is None:
        policy = InvoiceQuantityPolicy.for_company(await load_company(gw))
    rules = await resolve_tolerances(gw, (line.product_id for line in po.lines))

    lines = []
    for line in po.lines:
        rule = rules.for_product(line.product_id)
        lines.append(
            LineQuantityStatus(
                line_id=str(line.id),
                product_id=str(line.product_id),
                ordered_qty=to_decimal(line.quantity),
                received_qty=to_decimal(line.received_qty),
                invoiced_qty=to_decimal(line.invoiced_qty),
                remaining_invoiceable=max_invoiceable(line, policy),
                max_receivable=rule.max_quantity(line.quantity),
                receipt_tolerance=rule.resolved_from,
            )
        )
    return QuantityStatus(
        purchase_order_id=str(po.id),
        number=po.number,
        invoice_status=po.invoice_status,
        receipt_status=po.receipt_status,
        control_policy=policy.control_policy.value,
        tolerance_pct=policy.tolerance_pct,
        lines=lines,
    )
