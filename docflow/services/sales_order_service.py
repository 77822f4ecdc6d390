"""
Sales orders.

DRAFT orders are freely editable. Approval opens the customer receivable and
runs the credit check the company's credit policy asks for; cancellation
releases whatever part of that receivable is still unpaid.
"""

from datetime import date, timedelta
from typing import Optional

import structlog

from docflow.database import utcnow
from docflow.errors import InvariantViolationError
from docflow.gateway import TenantGateway
from docflow.models.enums import CreditPolicy, DocumentType, PartyType, SalesOrderStatus
from docflow.models.sales_order import SalesOrder, SalesOrderLine
from docflow.schemas.sales_order import SalesOrderCreate, SalesOrderUpdate
from docflow.services import balance_ledger
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

DOC = DocumentType.SALES_ORDER


async def create_sales_order(gw: TenantGateway, payload) -> SalesOrder:
    data: SalesOrderCreate = parse_payload(SalesOrderCreate, payload)
    company = await load_company(gw)
    customer = await load_party(gw, data.customer_id, PartyType.CUSTOMER)
    order_date = data.order_date or date.today()

    so = SalesOrder(
        number=await generate_number(gw, DOC, order_date, company),
        status=SalesOrderStatus.DRAFT.value,
        customer_id=customer.id,
        order_date=order_date,
        expected_delivery_date=data.expected_delivery_date,
        delivery_address=data.delivery_address,
        discount_amount=data.discount_amount,
        tax_rate=resolve_tax_rate(data.tax_rate, company),
        shipping_cost=data.shipping_cost,
        notes=data.notes,
        created_by=gw.ctx.user_id,
    )
    so.lines = build_lines(SalesOrderLine, data.lines)
    so.recalculate_totals()
    check_totals(so)

    gw.add(so)
    await gw.flush()
    audit_document(gw, "SALES_ORDER_CREATED", so)
    logger.info(
        "sales_order_created",
        sales_order_id=str(so.id),
        number=so.number,
        customer_id=str(customer.id),
        total=str(so.total_amount),
    )
    return so


async def get_sales_order(gw: TenantGateway, sales_order_id, lock: bool = False) -> SalesOrder:
    return await gw.get(SalesOrder, sales_order_id, lock=lock, label="Sales order")


async def update_sales_order(gw: TenantGateway, sales_order_id, payload) -> SalesOrder:
    data: SalesOrderUpdate = parse_payload(SalesOrderUpdate, payload)
    so = await get_sales_order(gw, sales_order_id, lock=True)
    assert_editable(DOC, so, "EDIT")
    before = so.snapshot()

    changes = data.model_dump(exclude_unset=True, exclude={"lines"})
    apply_header_changes(so, changes, nullable=("expected_delivery_date", "delivery_address", "notes"))
    if data.lines is not None:
        so.lines = build_lines(SalesOrderLine, data.lines)
        gw.add(so)
    so.recalculate_totals()
    check_totals(so)

    await gw.flush()
    audit_document(gw, "SALES_ORDER_UPDATED", so, before)
    logger.info("sales_order_updated", sales_order_id=str(so.id), total=str(so.total_amount))
    return so


async def delete_sales_order(gw: TenantGateway, sales_order_id) -> None:
    so = await get_sales_order(gw, sales_order_id, lock=True)
    assert_editable(DOC, so, "DELETE")
    before = so.snapshot()
    await gw.delete(so)
    await gw.flush()
    audit_document(gw, "SALES_ORDER_DELETED", so, before)
    logger.info("sales_order_deleted", sales_order_id=str(so.id), number=so.number)


async def _on_submit(gw: TenantGateway, so: SalesOrder, payload: dict) -> None:
    so.submitted_at = utcnow()


async def _on_approve(gw: TenantGateway, so: SalesOrder, payload: dict) -> None:
    company = await load_company(gw)
    customer = await load_party(gw, so.customer_id, PartyType.CUSTOMER, lock=True)

    policy = CreditPolicy(company.credit_policy)
    if policy != CreditPolicy.DISABLED:
        credit = balance_ledger.check_credit(customer, so.total_amount)
        if not credit.within_limit:
            logger.warning(
                "credit_limit_exceeded",
                sales_order_id=str(so.id),
                customer_id=str(customer.id),
                credit_limit=str(credit.credit_limit),
                projected=str(credit.projected_outstanding),
                policy=policy.value,
            )
            if policy == CreditPolicy.ENFORCE:
                raise InvariantViolationError(
                    credit.message,
                    {
                        "customer_id": str(customer.id),
                        "credit_limit": str(credit.credit_limit),
                        "projected_outstanding": str(credit.projected_outstanding),
                    },
                )

    approved_on = date.today()
    await balance_ledger.open_obligation(
        gw,
        customer,
        source_type=DOC.value,
        source_id=so.id,
        source_number=so.number,
        amount=so.total_amount,
        due_date=approved_on + timedelta(days=customer.payment_term_days or 0),
    )
    so.approved_by = gw.ctx.user_id
    so.approved_at = utcnow()


async def _on_cancel(gw: TenantGateway, so: SalesOrder, payload: dict) -> None:
    await balance_ledger.reverse_obligation(gw, DOC.value, so.id)
    stamp_cancellation(gw, so, payload)


TRANSITION_HOOKS = {
    SalesOrderStatus.PENDING: _on_submit,
    SalesOrderStatus.APPROVED: _on_approve,
    SalesOrderStatus.CANCELLED: _on_cancel,
}


async def transition_sales_order(
    gw: TenantGateway, sales_order_id, target_state, payload: Optional[dict] = None
) -> SalesOrder:
    so = await get_sales_order(gw, sales_order_id, lock=True)
    before = so.snapshot()
    await run_transition(gw, so, target_state, payload, TRANSITION_HOOKS)
    audit_document(gw, f"SALES_ORDER_{so.status}", so, before)
    return so
