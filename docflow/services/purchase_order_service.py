"""Purchase orders: the ordered side of the quantity ledger."""

from datetime import date
from typing import Optional

import structlog

from docflow.database import utcnow
from docflow.errors import InvariantViolationError
from docflow.gateway import TenantGateway
from docflow.models.enums import DocumentType, PartyType, PurchaseOrderStatus
from docflow.models.purchase_order import PurchaseOrder, PurchaseOrderLine
from docflow.money import ZERO, to_decimal
from docflow.schemas.purchase_order import PurchaseOrderCreate, PurchaseOrderUpdate
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

DOC = DocumentType.PURCHASE_ORDER


async def create_purchase_order(gw: TenantGateway, payload) -> PurchaseOrder:
    data: PurchaseOrderCreate = parse_payload(PurchaseOrderCreate, payload)
    company = await load_company(gw)
    supplier = await load_party(gw, data.supplier_id, PartyType.SUPPLIER)
    order_date = data.order_date or date.today()

    po = PurchaseOrder(
        number=await generate_number(gw, DOC, order_date, company),
        status=PurchaseOrderStatus.DRAFT.value,
        supplier_id=supplier.id,
        order_date=order_date,
        expected_date=data.expected_date,
        discount_amount=data.discount_amount,
        tax_rate=resolve_tax_rate(data.tax_rate, company),
        shipping_cost=data.shipping_cost,
        notes=data.notes,
        created_by=gw.ctx.user_id,
    )
    po.lines = build_lines(PurchaseOrderLine, data.lines)
    po.recalculate_totals()
    check_totals(po)

    gw.add(po)
    await gw.flush()
    audit_document(gw, "PURCHASE_ORDER_CREATED", po)
    logger.info(
        "purchase_order_created",
        purchase_order_id=str(po.id),
        number=po.number,
        supplier_id=str(supplier.id),
        total=str(po.total_amount),
    )
    return po


async def get_purchase_order(gw: TenantGateway, purchase_order_id, lock: bool = False) -> PurchaseOrder:
    return await gw.get(PurchaseOrder, purchase_order_id, lock=lock, label="Purchase order")


async def update_purchase_order(gw: TenantGateway, purchase_order_id, payload) -> PurchaseOrder:
    data: PurchaseOrderUpdate = parse_payload(PurchaseOrderUpdate, payload)
    po = await get_purchase_order(gw, purchase_order_id, lock=True)
    assert_editable(DOC, po, "EDIT")
    before = po.snapshot()

    changes = data.model_dump(exclude_unset=True, exclude={"lines"})
    apply_header_changes(po, changes, nullable=("expected_date", "notes"))
    if data.lines is not None:
        po.lines = build_lines(PurchaseOrderLine, data.lines)
        gw.add(po)
    po.recalculate_totals()
    check_totals(po)

    await gw.flush()
    audit_document(gw, "PURCHASE_ORDER_UPDATED", po, before)
    logger.info("purchase_order_updated", purchase_order_id=str(po.id), total=str(po.total_amount))
    return po


async def delete_purchase_order(gw: TenantGateway, purchase_order_id) -> None:
    po = await get_purchase_order(gw, purchase_order_id, lock=True)
    assert_editable(DOC, po, "DELETE")
    before = po.snapshot()
    await gw.delete(po)
    await gw.flush()
    audit_document(gw, "PURCHASE_ORDER_DELETED", po, before)
    logger.info("purchase_order_deleted", purchase_order_id=str(po.id), number=po.number)


async def _on_confirm(gw: TenantGateway, po: PurchaseOrder, payload: dict) -> None:
    po.approved_by = gw.ctx.user_id
    po.approved_at = utcnow()


async def _on_cancel(gw: TenantGateway, po: PurchaseOrder, payload: dict) -> None:
    touched = [
        line for line in po.lines
        if to_decimal(line.received_qty) > ZERO or to_decimal(line.invoiced_qty) > ZERO
    ]
    if touched:
        raise InvariantViolationError(
            f"Purchase order {po.number} already has received or invoiced quantities",
            {"lines": [str(line.id) for line in touched]},
        )
    stamp_cancellation(gw, po, payload)


TRANSITION_HOOKS = {
    PurchaseOrderStatus.CONFIRMED: _on_confirm,
    PurchaseOrderStatus.CANCELLED: _on_cancel,
}


async def transition_purchase_order(
    gw: TenantGateway, purchase_order_id, target_state, payload: Optional[dict] = None
) -> PurchaseOrder:
    po = await get_purchase_order(gw, purchase_order_id, lock=True)
    before = po.snapshot()
    await run_transition(gw, po, target_state, payload, TRANSITION_HOOKS)
    audit_document(gw, f"PURCHASE_ORDER_{po.status}", po, before)
    return po
