"""
Entry points for document operations.

Each public function takes ``(session, ctx, ...)``, builds the tenant gateway
and dispatches on the document type to the per-document service. Callers own
the transaction; see ``docflow.database.run_in_transaction``.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from docflow.errors import ValidationError
from docflow.gateway import TenantGateway
from docflow.models.delivery import Delivery
from docflow.models.enums import DocumentType
from docflow.models.goods_receipt import GoodsReceipt
from docflow.models.purchase_invoice import PurchaseInvoice
from docflow.models.purchase_order import PurchaseOrder
from docflow.models.sales_order import SalesOrder
from docflow.services import (
    delivery_service,
    goods_receipt_service,
    purchase_invoice_service,
    purchase_order_service,
    sales_order_service,
)
from docflow.tenancy import TenantContext


@dataclass(frozen=True)
class DocumentHandlers:
    model: type
    create: Callable[..., Awaitable[Any]]
    get: Callable[..., Awaitable[Any]]
    transition: Callable[..., Awaitable[Any]]
    delete: Callable[..., Awaitable[None]]
    update: Optional[Callable[..., Awaitable[Any]]] = None


REGISTRY: dict[DocumentType, DocumentHandlers] = {
    DocumentType.SALES_ORDER: DocumentHandlers(
        model=SalesOrder,
        create=sales_order_service.create_sales_order,
        get=sales_order_service.get_sales_order,
        transition=sales_order_service.transition_sales_order,
        delete=sales_order_service.delete_sales_order,
        update=sales_order_service.update_sales_order,
    ),
    DocumentType.DELIVERY: DocumentHandlers(
        model=Delivery,
        create=delivery_service.create_delivery,
        get=delivery_service.get_delivery,
        transition=delivery_service.transition_delivery,
        delete=delivery_service.delete_delivery,
    ),
    DocumentType.PURCHASE_ORDER: DocumentHandlers(
        model=PurchaseOrder,
        create=purchase_order_service.create_purchase_order,
        get=purchase_order_service.get_purchase_order,
        transition=purchase_order_service.transition_purchase_order,
        delete=purchase_order_service.delete_purchase_order,
        update=purchase_order_service.update_purchase_order,
    ),
    DocumentType.GOODS_RECEIPT: DocumentHandlers(
        model=GoodsReceipt,
        create=goods_receipt_service.create_goods_receipt,
        get=goods_receipt_service.get_goods_receipt,
        transition=goods_receipt_service.transition_goods_receipt,
        delete=goods_receipt_service.delete_goods_receipt,
    ),
    DocumentType.PURCHASE_INVOICE: DocumentHandlers(
        model=PurchaseInvoice,
        create=purchase_invoice_service.create_purchase_invoice,
        get=purchase_invoice_service.get_purchase_invoice,
        transition=purchase_invoice_service.transition_purchase_invoice,
        delete=purchase_invoice_service.delete_purchase_invoice,
        update=purchase_invoice_service.update_purchase_invoice,
    ),
}


def handlers_for(document_type) -> DocumentHandlers:
    try:
        doc_type = DocumentType(getattr(document_type, "value", document_type))
        return REGISTRY[doc_type]
    except (ValueError, KeyError):
        raise ValidationError(
            "Unsupported document type", {"document_type": str(document_type)}
        )


async def create_document(session: AsyncSession, ctx: TenantContext, document_type, payload):
    handlers = handlers_for(document_type)
    return await handlers.create(TenantGateway(session, ctx), payload)


async def get_document(session: AsyncSession, ctx: TenantContext, document_type, document_id):
    handlers = handlers_for(document_type)
    return await handlers.get(TenantGateway(session, ctx), document_id)


async def update_document(
    session: AsyncSession, ctx: TenantContext, document_type, document_id, payload
):
    handlers = handlers_for(document_type)
    if handlers.update is None:
        raise ValidationError(
            f"{handlers.model.document_type.value} documents cannot be edited; delete and recreate the draft",
            {"document_type": handlers.model.document_type.value},
        )
    return await handlers.update(TenantGateway(session, ctx), document_id, payload)


async def delete_document(session: AsyncSession, ctx: TenantContext, document_type, document_id) -> None:
    handlers = handlers_for(document_type)
    await handlers.delete(TenantGateway(session, ctx), document_id)


async def transition_document(
    session: AsyncSession,
    ctx: TenantContext,
    document_type,
    document_id,
    target_state: str,
    payload: Optional[dict] = None,
):
    handlers = handlers_for(document_type)
    return await handlers.transition(
        TenantGateway(session, ctx), document_id, target_state, payload or {}
    )


async def list_documents(
    session: AsyncSession,
    ctx: TenantContext,
    document_type,
    page: int = 1,
    limit: int = 20,
    status: Optional[str] = None,
) -> tuple[list, int]:
    model = handlers_for(document_type).model
    gw = TenantGateway(session, ctx)

    filters = []
    if status:
        filters.append(model.status == status)
    total = await gw.scalar(select(func.count(model.id)).where(*filters))
    rows = await gw.scalars(
        select(model)
        .where(*filters)
        .order_by(model.created_at.desc(), model.number.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return rows, total or 0
