"""Deliveries against approved sales orders. Delivered quantities move with the delivery
and are bounded by the delivery tolerance of each line."""

from datetime import date
from typing import Optional

import structlog

from docflow.database import utcnow
from docflow.errors import ValidationError
from docflow.gateway import TenantGateway
from docflow.models.delivery import Delivery, DeliveryLine
from docflow.models.enums import DeliveryStatus, DocumentType, SalesOrderStatus
from docflow.models.sales_order import SalesOrder
from docflow.money import ZERO, qty, to_decimal
from docflow.schemas.delivery import DeliveryConfirmPayload, DeliveryCreate
from docflow.services import quantity_ledger
from docflow.services.company_service import load_company
from docflow.services.document_support import (
    audit_document,
    parse_payload,
    stamp_cancellation,
)
from docflow.services.numbering_service import generate_number
from docflow.services.state_machine import assert_editable, run_transition
from docflow.services.tolerance_service import ToleranceRules, resolve_tolerances

logger = structlog.get_logger()

DOC = DocumentType.DELIVERY


def _delivery_deltas(delivery: Delivery) -> dict:
    return quantity_ledger.aggregate_quantities(
        (line.sales_order_line_id, line.quantity) for line in delivery.lines
    )


def _plan_lines(so: SalesOrder, data: DeliveryCreate, rules: ToleranceRules) -> list[DeliveryLine]:
    so_lines = {line.id: line for line in so.lines}
    plan: list[tuple] = []
    if data.lines:
        for item in data.lines:
            so_line = so_lines.get(item.sales_order_line_id)
            if so_line is None:
                raise ValidationError(
                    f"Line does not belong to sales order {so.number}",
                    {"sales_order_line_id": str(item.sales_order_line_id)},
                )
            plan.append((so_line, item.quantity, item.batch_id))
    else:
        for so_line in so.lines:
            if quantity_ledger.delivery_complete(so_line, rules):
                continue
            remaining = to_decimal(so_line.quantity) - to_decimal(so_line.delivered_qty)
            if remaining > ZERO:
                plan.append((so_line, remaining, so_line.batch_id))

    if not plan:
        raise ValidationError(f"Nothing left to deliver on sales order {so.number}")

    return [
        DeliveryLine(
            line_number=number,
            sales_order_line_id=so_line.id,
            product_id=so_line.product_id,
            unit_id=so_line.unit_id,
            batch_id=batch_id,
            description=so_line.description,
            quantity=qty(quantity),
            unit_price=so_line.unit_price,
        )
        for number, (so_line, quantity, batch_id) in enumerate(plan, start=1)
    ]


async def create_delivery(gw: TenantGateway, payload) -> Delivery:
    data: DeliveryCreate = parse_payload(DeliveryCreate, payload)
    company = await load_company(gw)
    so = await gw.get(SalesOrder, data.sales_order_id, lock=True, label="Sales order")
    if so.status != SalesOrderStatus.APPROVED.value:
        raise ValidationError(
            f"Deliveries can only be created for approved sales orders ({so.number} is {so.status})",
            {"sales_order_id": str(so.id)},
        )

    delivery_date = data.delivery_date or date.today()
    delivery = Delivery(
        number=await generate_number(gw, DOC, delivery_date, company),
        status=DeliveryStatus.PREPARED.value,
        sales_order_id=so.id,
        customer_id=so.customer_id,
        delivery_date=delivery_date,
        tax_rate=so.tax_rate,
        notes=data.notes,
        created_by=gw.ctx.user_id,
    )
    rules = await resolve_tolerances(gw, (line.product_id for line in so.lines))
    delivery.lines = _plan_lines(so, data, rules)
    delivery.recalculate_totals()

    await quantity_ledger.apply_delivery(gw, so, _delivery_deltas(delivery), rules)
    gw.add(delivery)
    await gw.flush()

    audit_document(gw, "DELIVERY_CREATED", delivery)
    logger.info(
        "delivery_created",
        delivery_id=str(delivery.id),
        number=delivery.number,
        sales_order_id=str(so.id),
        lines=len(delivery.lines),
    )
    return delivery


async def get_delivery(gw: TenantGateway, delivery_id, lock: bool = False) -> Delivery:
    return await gw.get(Delivery, delivery_id, lock=lock, label="Delivery")


async def _release_quantities(gw: TenantGateway, delivery: Delivery) -> None:
    so = await gw.get(SalesOrder, delivery.sales_order_id, lock=True, label="Sales order")
    await quantity_ledger.reverse_delivery(gw, so, _delivery_deltas(delivery))


async def delete_delivery(gw: TenantGateway, delivery_id) -> None:
    delivery = await get_delivery(gw, delivery_id, lock=True)
    assert_editable(DOC, delivery, "DELETE")
    before = delivery.snapshot()
    await _release_quantities(gw, delivery)
    await gw.delete(delivery)
    await gw.flush()
    audit_document(gw, "DELIVERY_DELETED", delivery, before)
    logger.info("delivery_deleted", delivery_id=str(delivery.id), number=delivery.number)


async def _on_depart(gw: TenantGateway, delivery: Delivery, payload: dict) -> None:
    delivery.departed_at = utcnow()


async def _on_arrive(gw: TenantGateway, delivery: Delivery, payload: dict) -> None:
    delivery.arrived_at = utcnow()


async def _on_confirm(gw: TenantGateway, delivery: Delivery, payload: dict) -> None:
    data = parse_payload(DeliveryConfirmPayload, payload)
    delivery.confirmed_at = utcnow()
    delivery.received_by_name = data.received_by_name


async def _on_cancel(gw: TenantGateway, delivery: Delivery, payload: dict) -> None:
    await _release_quantities(gw, delivery)
    stamp_cancellation(gw, delivery, payload)


TRANSITION_HOOKS = {
    DeliveryStatus.IN_TRANSIT: _on_depart,
    DeliveryStatus.DELIVERED: _on_arrive,
    DeliveryStatus.CONFIRMED: _on_confirm,
    DeliveryStatus.CANCELLED: _on_cancel,
}


async def transition_delivery(
    gw: TenantGateway, delivery_id, target_state, payload: Optional[dict] = None
) -> Delivery:
    delivery = await get_delivery(gw, delivery_id, lock=True)
    before = delivery.snapshot()
    await run_transition(gw, delivery, target_state, payload, TRANSITION_HOOKS)
    audit_document(gw, f"DELIVERY_{delivery.status}", delivery, before)
    return delivery
