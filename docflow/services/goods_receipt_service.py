"""Goods receipts. Accepting one moves received quantities on the purchase order."""

from datetime import date
from typing import Optional

import structlog

from docflow.database import utcnow
from docflow.errors import ValidationError
from docflow.gateway import TenantGateway
from docflow.models.enums import (
    DocumentType,
    GoodsReceiptStatus,
    InvoiceControlPolicy,
    PurchaseOrderStatus,
)
from docflow.models.goods_receipt import GoodsReceipt, GoodsReceiptLine
from docflow.models.purchase_order import PurchaseOrder
from docflow.schemas.goods_receipt import GoodsReceiptCreate
from docflow.services import quantity_ledger
from docflow.services.company_service import load_company
from docflow.services.document_support import (
    audit_document,
    parse_payload,
    stamp_cancellation,
)
from docflow.services.numbering_service import generate_number
from docflow.services.state_machine import assert_editable, run_transition

logger = structlog.get_logger()

DOC = DocumentType.GOODS_RECEIPT


def _receipt_deltas(receipt: GoodsReceipt) -> dict:
    return quantity_ledger.aggregate_quantities(
        (line.purchase_order_line_id, line.quantity) for line in receipt.lines
    )


async def create_goods_receipt(gw: TenantGateway, payload) -> GoodsReceipt:
    data: GoodsReceiptCreate = parse_payload(GoodsReceiptCreate, payload)
    company = await load_company(gw)
    po = await gw.get(PurchaseOrder, data.purchase_order_id, label="Purchase order")
    if po.status != PurchaseOrderStatus.CONFIRMED.value:
        raise ValidationError(
            f"Goods can only be received against confirmed purchase orders ({po.number} is {po.status})",
            {"purchase_order_id": str(po.id)},
        )

    po_lines = {line.id: line for line in po.lines}
    lines = []
    for number, item in enumerate(data.lines, start=1):
        po_line = po_lines.get(item.purchase_order_line_id)
        if po_line is None:
            raise ValidationError(
                f"Line does not belong to purchase order {po.number}",
                {"purchase_order_line_id": str(item.purchase_order_line_id)},
            )
        lines.append(
            GoodsReceiptLine(
                line_number=number,
                purchase_order_line_id=po_line.id,
                product_id=po_line.product_id,
                unit_id=po_line.unit_id,
                batch_id=item.batch_id,
                description=po_line.description,
                quantity=item.quantity,
                unit_price=po_line.unit_price,
            )
        )

    receipt_date = data.receipt_date or date.today()
    receipt = GoodsReceipt(
        number=await generate_number(gw, DOC, receipt_date, company),
        status=GoodsReceiptStatus.DRAFT.value,
        purchase_order_id=po.id,
        supplier_id=po.supplier_id,
        receipt_date=receipt_date,
        supplier_delivery_note=data.supplier_delivery_note,
        notes=data.notes,
        created_by=gw.ctx.user_id,
    )
    receipt.lines = lines
    receipt.recalculate_totals()

    gw.add(receipt)
    await gw.flush()
    audit_document(gw, "GOODS_RECEIPT_CREATED", receipt)
    logger.info(
        "goods_receipt_created",
        goods_receipt_id=str(receipt.id),
        number=receipt.number,
        purchase_order_id=str(po.id),
    )
    return receipt


async def get_goods_receipt(gw: TenantGateway, goods_receipt_id, lock: bool = False) -> GoodsReceipt:
    return await gw.get(GoodsReceipt, goods_receipt_id, lock=lock, label="Goods receipt")


async def delete_goods_receipt(gw: TenantGateway, goods_receipt_id) -> None:
    receipt = await get_goods_receipt(gw, goods_receipt_id, lock=True)
    assert_editable(DOC, receipt, "DELETE")
    before = receipt.snapshot()
    await gw.delete(receipt)
    await gw.flush()
    audit_document(gw, "GOODS_RECEIPT_DELETED", receipt, before)
    logger.info("goods_receipt_deleted", goods_receipt_id=str(receipt.id), number=receipt.number)


async def _on_accept(gw: TenantGateway, receipt: GoodsReceipt, payload: dict) -> None:
    await load_company(gw)
    po = await gw.get(PurchaseOrder, receipt.purchase_order_id, lock=True, label="Purchase order")
    if po.status != PurchaseOrderStatus.CONFIRMED.value:
        raise ValidationError(
            f"Purchase order {po.number} is {po.status} and cannot receive goods",
            {"purchase_order_id": str(po.id)},
        )
    await quantity_ledger.apply_receipt(gw, po, _receipt_deltas(receipt))
    receipt.accepted_by = gw.ctx.user_id
    receipt.accepted_at = utcnow()


async def _on_cancel(gw: TenantGateway, receipt: GoodsReceipt, payload: dict) -> None:
    if receipt.status == GoodsReceiptStatus.ACCEPTED.value:
        company = await load_company(gw)
        po = await gw.get(PurchaseOrder, receipt.purchase_order_id, lock=True, label="Purchase order")
        await quantity_ledger.reverse_receipt(
            gw,
            po,
            _receipt_deltas(receipt),
            InvoiceControlPolicy(company.invoice_control_policy),
        )
    stamp_cancellation(gw, receipt, payload)


TRANSITION_HOOKS = {
    GoodsReceiptStatus.ACCEPTED: _on_accept,
    GoodsReceiptStatus.CANCELLED: _on_cancel,
}


async def transition_goods_receipt(
    gw: TenantGateway, goods_receipt_id, target_state, payload: Optional[dict] = None
) -> GoodsReceipt:
    receipt = await get_goods_receipt(gw, goods_receipt_id, lock=True)
    before = receipt.snapshot()
    await run_transition(gw, receipt, target_state, payload, TRANSITION_HOOKS)
    audit_document(gw, f"GOODS_RECEIPT_{receipt.status}", receipt, before)
    return receipt
