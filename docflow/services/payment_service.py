"""
Payments against sales orders (customer receipts) and purchase invoices
(supplier payments).

A payment settles part of the obligation its source document opened and can
never exceed what is still unsettled. A payment that clears an approved
invoice moves the invoice to PAID. Voiding gives the amount back to the
obligation; it is refused once the invoice it paid has been closed as PAID.
"""

from datetime import date
from typing import Optional

from sqlalchemy import select
import structlog

from docflow.database import utcnow
from docflow.errors import InvalidTransitionError, InvariantViolationError
from docflow.gateway import TenantGateway
from docflow.models.enums import (
    DocumentType,
    PaymentStatus,
    PurchaseInvoiceStatus,
    SalesOrderStatus,
)
from docflow.models.ledger import Payment
from docflow.models.purchase_invoice import PurchaseInvoice
from docflow.models.sales_order import SalesOrder
from docflow.money import ZERO, money, to_decimal
from docflow.schemas.payment import PaymentCreate, PaymentVoid
from docflow.services import balance_ledger
from docflow.services.audit_service import stage_audit
from docflow.services.document_support import parse_payload
from docflow.services.numbering_service import generate_number
from docflow.services.purchase_invoice_service import payment_status_for, transition_loaded_invoice
from docflow.tenancy import parse_uuid

logger = structlog.get_logger()

PAYABLE_SALES_ORDER_STATUSES = {
    SalesOrderStatus.APPROVED.value,
    SalesOrderStatus.PROCESSING.value,
    SalesOrderStatus.SHIPPED.value,
    SalesOrderStatus.DELIVERED.value,
    SalesOrderStatus.COMPLETED.value,
}


def _payment_state(payment: Payment) -> dict:
    return {
        "number": payment.number,
        "status": payment.status,
        "amount": str(payment.amount),
        "source_type": payment.source_type,
        "source_id": str(payment.source_id),
    }


async def _load_source(gw: TenantGateway, source_type: str, source_id):
    if source_type == DocumentType.SALES_ORDER.value:
        so = await gw.get(SalesOrder, source_id, lock=True, label="Sales order")
        if so.status not in PAYABLE_SALES_ORDER_STATUSES:
            raise InvariantViolationError(
                f"Sales order {so.number} is {so.status} and cannot take payments",
                {"sales_order_id": str(so.id)},
            )
        return so

    invoice = await gw.get(PurchaseInvoice, source_id, lock=True, label="Purchase invoice")
    if invoice.status != PurchaseInvoiceStatus.APPROVED.value:
        raise InvariantViolationError(
            f"Invoice {invoice.number} is {invoice.status}; only approved invoices can be paid",
            {"invoice_id": str(invoice.id)},
        )
    return invoice


def _apply_to_invoice(invoice: PurchaseInvoice, amount) -> None:
    invoice.paid_amount = money(to_decimal(invoice.paid_amount) + amount)
    invoice.remaining_amount = money(to_decimal(invoice.total_amount) - invoice.paid_amount)
    invoice.payment_status = payment_status_for(invoice).value


async def record_payment(gw: TenantGateway, payload) -> Payment:
    data: PaymentCreate = parse_payload(PaymentCreate, payload)
    source = await _load_source(gw, data.source_type, data.source_id)

    obligation = await balance_ledger.find_obligation(gw, data.source_type, source.id)
    if obligation is None:
        raise InvariantViolationError(
            f"{source.number} has no open balance to pay",
            {"source_id": str(source.id)},
        )
    await balance_ledger.apply_payment(gw, obligation, data.amount)

    payment_date = data.payment_date or date.today()
    payment = Payment(
        number=await generate_number(gw, DocumentType.PAYMENT, payment_date),
        party_id=obligation.party_id,
        obligation_id=obligation.id,
        source_type=data.source_type,
        source_id=source.id,
        amount=money(data.amount),
        payment_date=payment_date,
        method=data.method,
        reference=data.reference,
        notes=data.notes,
        status=PaymentStatus.RECORDED.value,
        created_by=gw.ctx.user_id,
    )
    gw.add(payment)

    if isinstance(source, PurchaseInvoice):
        _apply_to_invoice(source, payment.amount)
        if source.remaining_amount <= ZERO:
            await transition_loaded_invoice(gw, source, PurchaseInvoiceStatus.PAID)

    await gw.flush()
    stage_audit(
        gw.session, gw.ctx, "PAYMENT_RECORDED", DocumentType.PAYMENT.value, payment.id,
        after_state=_payment_state(payment),
    )
    logger.info(
        "payment_recorded",
        payment_id=str(payment.id),
        number=payment.number,
        source_type=payment.source_type,
        source_id=str(payment.source_id),
        amount=str(payment.amount),
    )
    return payment


async def get_payment(gw: TenantGateway, payment_id, lock: bool = False) -> Payment:
    return await gw.get(Payment, payment_id, lock=lock, label="Payment")


async def list_payments(gw: TenantGateway, source_type: Optional[str] = None, source_id=None) -> list:
    stmt = select(Payment).order_by(Payment.payment_date.desc(), Payment.number.desc())
    if source_type:
        stmt = stmt.where(Payment.source_type == source_type)
    if source_id:
        stmt = stmt.where(Payment.source_id == parse_uuid(source_id))
    return await gw.scalars(stmt)


async def void_payment(gw: TenantGateway, payment_id, payload) -> Payment:
    data: PaymentVoid = parse_payload(PaymentVoid, payload)
    payment = await get_payment(gw, payment_id, lock=True)
    if payment.status == PaymentStatus.VOID.value:
        raise InvalidTransitionError(DocumentType.PAYMENT.value, payment.status, PaymentStatus.VOID.value)
    before = _payment_state(payment)

    invoice = None
    if payment.source_type == DocumentType.PURCHASE_INVOICE.value:
        invoice = await gw.get(PurchaseInvoice, payment.source_id, lock=True, label="Purchase invoice")
        if invoice.status == PurchaseInvoiceStatus.PAID.value:
            raise InvalidTransitionError(
                DocumentType.PURCHASE_INVOICE.value, invoice.status, PurchaseInvoiceStatus.APPROVED.value
            )

    obligation = await balance_ledger.find_obligation(gw, payment.source_type, payment.source_id)
    if obligation is None:
        raise InvariantViolationError(
            f"Payment {payment.number} has no obligation to return to",
            {"payment_id": str(payment.id)},
        )
    await balance_ledger.reverse_payment(gw, obligation, payment.amount)
    if invoice is not None:
        _apply_to_invoice(invoice, -to_decimal(payment.amount))

    payment.status = PaymentStatus.VOID.value
    payment.voided_by = gw.ctx.user_id
    payment.voided_at = utcnow()
    payment.void_reason = data.reason
    await gw.flush()

    stage_audit(
        gw.session, gw.ctx, "PAYMENT_VOIDED", DocumentType.PAYMENT.value, payment.id,
        before_state=before, after_state=_payment_state(payment),
    )
    logger.info("payment_voided", payment_id=str(payment.id), amount=str(payment.amount))
    return payment
