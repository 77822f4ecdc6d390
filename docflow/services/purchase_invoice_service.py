"""
Purchase invoices.

Invoice lines that reference purchase order lines consume invoiceable
quantity as soon as the invoice exists (DRAFT included), so two drafts cannot
both claim the same goods. Editing a draft swaps its old quantities for the
new ones; deleting, rejecting or cancelling gives them back. Approval opens
the supplier payable; a payment that settles it moves the invoice to PAID.
"""

from datetime import date, timedelta
from typing import Optional

import structlog

from docflow.database import utcnow
from docflow.errors import InvariantViolationError, ValidationError
from docflow.gateway import TenantGateway
from docflow.models.enums import (
    DocumentType,
    GoodsReceiptStatus,
    InvoicePaymentStatus,
    PartyType,
    PurchaseInvoiceStatus,
    PurchaseOrderStatus,
)
from docflow.models.goods_receipt import GoodsReceipt
from docflow.models.purchase_invoice import PurchaseInvoice, PurchaseInvoiceLine
from docflow.models.purchase_order import PurchaseOrder
from docflow.money import ZERO, money, to_decimal
from docflow.schemas.purchase_invoice import PurchaseInvoiceCreate, PurchaseInvoiceUpdate
from docflow.services import balance_ledger, quantity_ledger
from docflow.services.company_service import load_company
from docflow.services.document_support import (
    apply_header_changes,
    audit_document,
    build_lines,
    check_totals,
    load_party,
    parse_payload,
    resolve_tax_rate,
    stamp_cancellation,
)
from docflow.services.numbering_service import generate_number
from docflow.services.state_machine import assert_editable, run_transition

logger = structlog.get_logger()

DOC = DocumentType.PURCHASE_INVOICE
INVOICEABLE_PO_STATUSES = (PurchaseOrderStatus.CONFIRMED.value, PurchaseOrderStatus.COMPLETED.value)


def invoice_deltas(invoice: PurchaseInvoice) -> dict:
    return quantity_ledger.aggregate_quantities(
        (line.purchase_order_line_id, line.quantity) for line in invoice.lines
    )


def payment_status_for(invoice: PurchaseInvoice, as_of: Optional[date] = None) -> InvoicePaymentStatus:
    as_of = as_of or date.today()
    paid = money(invoice.paid_amount)
    if paid >= money(invoice.total_amount) and invoice.total_amount > ZERO:
        return InvoicePaymentStatus.PAID
    if invoice.due_date and invoice.due_date < as_of and invoice.status == PurchaseInvoiceStatus.APPROVED.value:
        return InvoicePaymentStatus.OVERDUE
    if paid > ZERO:
        return InvoicePaymentStatus.PARTIAL
    return InvoicePaymentStatus.UNPAID


def _resolve_dates(invoice_date: date, due_date: Optional[date], term_days: int) -> tuple[date, int]:
    due_date = due_date or invoice_date + timedelta(days=term_days)
    if due_date < invoice_date:
        raise ValidationError(
            "Due date cannot be before the invoice date",
            {"due_date": due_date.isoformat(), "invoice_date": invoice_date.isoformat()},
        )
    return due_date, (due_date - invoice_date).days


async def _load_purchase_order(gw: TenantGateway, invoice_supplier_id, purchase_order_id) -> PurchaseOrder:
    po = await gw.get(PurchaseOrder, purchase_order_id, lock=True, label="Purchase order")
    if po.supplier_id != invoice_supplier_id:
        raise ValidationError(
            f"Purchase order {po.number} belongs to another supplier",
            {"purchase_order_id": str(po.id)},
        )
    if po.status not in INVOICEABLE_PO_STATUSES:
        raise ValidationError(
            f"Purchase order {po.number} is {po.status} and cannot be invoiced",
            {"purchase_order_id": str(po.id)},
        )
    return po


async def _check_goods_receipt(gw: TenantGateway, goods_receipt_id, po: Optional[PurchaseOrder]) -> None:
    receipt = await gw.get(GoodsReceipt, goods_receipt_id, label="Goods receipt")
    if po is None or receipt.purchase_order_id != po.id:
        raise ValidationError(
            f"Goods receipt {receipt.number} is not for the invoiced purchase order",
            {"goods_receipt_id": str(receipt.id)},
        )
    if receipt.status != GoodsReceiptStatus.ACCEPTED.value:
        raise ValidationError(
            f"Goods receipt {receipt.number} is {receipt.status}",
            {"goods_receipt_id": str(receipt.id)},
        )


def _require_order_for_linked_lines(invoice: PurchaseInvoice) -> None:
    if invoice.purchase_order_id is None and any(
        line.purchase_order_line_id for line in invoice.lines
    ):
        raise ValidationError(
            "Lines reference purchase order lines but the invoice has no purchase order",
            {"purchase_order_id": "required"},
        )


async def create_purchase_invoice(gw: TenantGateway, payload) -> PurchaseInvoice:
    data: PurchaseInvoiceCreate = parse_payload(PurchaseInvoiceCreate, payload)
    company = await load_company(gw)
    supplier = await load_party(gw, data.supplier_id, PartyType.SUPPLIER)

    invoice_date = data.invoice_date or date.today()
    due_date, term_days = _resolve_dates(invoice_date, data.due_date, supplier.payment_term_days)

    po = None
    if data.purchase_order_id:
        po = await _load_purchase_order(gw, supplier.id, data.purchase_order_id)
    if data.goods_receipt_id:
        await _check_goods_receipt(gw, data.goods_receipt_id, po)

    invoice = PurchaseInvoice(
        status=PurchaseInvoiceStatus.DRAFT.value,
        supplier_id=supplier.id,
        purchase_order_id=po.id if po else None,
        goods_receipt_id=data.goods_receipt_id,
        supplier_invoice_number=data.supplier_invoice_number,
        invoice_date=invoice_date,
        due_date=due_date,
        payment_term_days=term_days,
        discount_amount=data.discount_amount,
        tax_rate=resolve_tax_rate(data.tax_rate, company),
        shipping_cost=data.shipping_cost,
        handling_cost=data.handling_cost,
        other_cost=data.other_cost,
        paid_amount=ZERO,
        payment_status=InvoicePaymentStatus.UNPAID.value,
        notes=data.notes,
        created_by=gw.ctx.user_id,
    )
    invoice.lines = build_lines(PurchaseInvoiceLine, data.lines)
    _require_order_for_linked_lines(invoice)
    invoice.recalculate_totals()
    check_totals(invoice)

    deltas = invoice_deltas(invoice)
    if po is not None and deltas:
        await quantity_ledger.apply_invoice(
            gw, po, deltas, quantity_ledger.InvoiceQuantityPolicy.for_company(company)
        )

    invoice.number = await generate_number(gw, DOC, invoice_date, company)
    gw.add(invoice)
    await gw.flush()

    audit_document(gw, "PURCHASE_INVOICE_CREATED", invoice)
    logger.info(
        "purchase_invoice_created",
        invoice_id=str(invoice.id),
        number=invoice.number,
        supplier_id=str(supplier.id),
        purchase_order_id=str(po.id) if po else None,
        total=str(invoice.total_amount),
    )
    return invoice


async def get_purchase_invoice(gw: TenantGateway, invoice_id, lock: bool = False) -> PurchaseInvoice:
    return await gw.get(PurchaseInvoice, invoice_id, lock=lock, label="Purchase invoice")


async def _release_quantities(gw: TenantGateway, invoice: PurchaseInvoice) -> None:
    deltas = invoice_deltas(invoice)
    if invoice.purchase_order_id is None or not deltas:
        return
    po = await gw.get(PurchaseOrder, invoice.purchase_order_id, lock=True, label="Purchase order")
    await quantity_ledger.reverse_invoice(gw, po, deltas)


async def update_purchase_invoice(gw: TenantGateway, invoice_id, payload) -> PurchaseInvoice:
    data: PurchaseInvoiceUpdate = parse_payload(PurchaseInvoiceUpdate, payload)
    invoice = await get_purchase_invoice(gw, invoice_id, lock=True)
    assert_editable(DOC, invoice, "EDIT")
    before = invoice.snapshot()
    company = await load_company(gw)

    changes = data.model_dump(exclude_unset=True, exclude={"lines"})
    apply_header_changes(invoice, changes, nullable=("supplier_invoice_number", "notes"))
    invoice.due_date, invoice.payment_term_days = _resolve_dates(
        invoice.invoice_date, invoice.due_date, invoice.payment_term_days
    )

    if data.lines is not None:
        await _release_quantities(gw, invoice)
        invoice.lines = build_lines(PurchaseInvoiceLine, data.lines)
        gw.add(invoice)
        _require_order_for_linked_lines(invoice)
        deltas = invoice_deltas(invoice)
        if invoice.purchase_order_id is not None and deltas:
            po = await gw.get(PurchaseOrder, invoice.purchase_order_id, lock=True, label="Purchase order")
            await quantity_ledger.apply_invoice(
                gw, po, deltas, quantity_ledger.InvoiceQuantityPolicy.for_company(company)
            )

    invoice.recalculate_totals()
    check_totals(invoice)
    await gw.flush()

    audit_document(gw, "PURCHASE_INVOICE_UPDATED", invoice, before)
    logger.info("purchase_invoice_updated", invoice_id=str(invoice.id), total=str(invoice.total_amount))
    return invoice


async def delete_purchase_invoice(gw: TenantGateway, invoice_id) -> None:
    invoice = await get_purchase_invoice(gw, invoice_id, lock=True)
    assert_editable(DOC, invoice, "DELETE")
    before = invoice.snapshot()
    await _release_quantities(gw, invoice)
    await gw.delete(invoice)
    await gw.flush()
    audit_document(gw, "PURCHASE_INVOICE_DELETED", invoice, before)
    logger.info("purchase_invoice_deleted", invoice_id=str(invoice.id), number=invoice.number)


async def _on_submit(gw: TenantGateway, invoice: PurchaseInvoice, payload: dict) -> None:
    invoice.submitted_by = gw.ctx.user_id
    invoice.submitted_at = utcnow()


async def _on_approve(gw: TenantGateway, invoice: PurchaseInvoice, payload: dict) -> None:
    supplier = await load_party(gw, invoice.supplier_id, PartyType.SUPPLIER, lock=True)
    await balance_ledger.open_obligation(
        gw,
        supplier,
        source_type=DOC.value,
        source_id=invoice.id,
        source_number=invoice.number,
        amount=invoice.total_amount,
        due_date=invoice.due_date,
    )
    invoice.approved_by = gw.ctx.user_id
    invoice.approved_at = utcnow()
    invoice.remaining_amount = money(invoice.total_amount) - money(invoice.paid_amount)


async def _on_reject(gw: TenantGateway, invoice: PurchaseInvoice, payload: dict) -> None:
    await _release_quantities(gw, invoice)
    invoice.rejected_by = gw.ctx.user_id
    invoice.rejected_at = utcnow()
    invoice.rejection_reason = payload.get("reason")


async def _on_paid(gw: TenantGateway, invoice: PurchaseInvoice, payload: dict) -> None:
    if money(invoice.remaining_amount) > ZERO:
        raise InvariantViolationError(
            f"Invoice {invoice.number} still has {invoice.remaining_amount} unpaid",
            {"remaining_amount": str(invoice.remaining_amount)},
        )
    invoice.payment_status = InvoicePaymentStatus.PAID.value


async def _on_cancel(gw: TenantGateway, invoice: PurchaseInvoice, payload: dict) -> None:
    if to_decimal(invoice.paid_amount) > ZERO:
        raise InvariantViolationError(
            f"Invoice {invoice.number} has recorded payments; void them before cancelling",
            {"paid_amount": str(invoice.paid_amount)},
        )
    await balance_ledger.reverse_obligation(gw, DOC.value, invoice.id)
    await _release_quantities(gw, invoice)
    stamp_cancellation(gw, invoice, payload)


TRANSITION_HOOKS = {
    PurchaseInvoiceStatus.SUBMITTED: _on_submit,
    PurchaseInvoiceStatus.APPROVED: _on_approve,
    PurchaseInvoiceStatus.REJECTED: _on_reject,
    PurchaseInvoiceStatus.PAID: _on_paid,
    PurchaseInvoiceStatus.CANCELLED: _on_cancel,
}


async def transition_purchase_invoice(
    gw: TenantGateway, invoice_id, target_state, payload: Optional[dict] = None
) -> PurchaseInvoice:
    invoice = await get_purchase_invoice(gw, invoice_id, lock=True)
    return await transition_loaded_invoice(gw, invoice, target_state, payload)


async def transition_loaded_invoice(
    gw: TenantGateway, invoice: PurchaseInvoice, target_state, payload: Optional[dict] = None
) -> PurchaseInvoice:
    before = invoice.snapshot()
    await run_transition(gw, invoice, target_state, payload, TRANSITION_HOOKS)
    audit_document(gw, f"PURCHASE_INVOICE_{invoice.status}", invoice, before)
    return invoice
