from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from docflow.database import TransactionRunner, get_transaction_runner
from docflow.errors import NotFoundError
from docflow.middleware.tenant import get_tenant_context
from docflow.models.enums import DocumentType
from docflow.schemas.common import Page
from docflow.schemas.document import DocumentResponse, TransitionRequest
from docflow.services import document_service
from docflow.tenancy import TenantContext

logger = structlog.get_logger()
router = APIRouter()

DOCUMENT_SLUGS = {
    "sales-orders": DocumentType.SALES_ORDER,
    "deliveries": DocumentType.DELIVERY,
    "purchase-orders": DocumentType.PURCHASE_ORDER,
    "goods-receipts": DocumentType.GOODS_RECEIPT,
    "purchase-invoices": DocumentType.PURCHASE_INVOICE,
}


def _document_type(doc_type: str) -> DocumentType:
    try:
        return DOCUMENT_SLUGS[doc_type]
    except KeyError:
        raise NotFoundError("Document type", doc_type)


def _to_response(document) -> DocumentResponse:
    return DocumentResponse.model_validate(document)


@router.get("/{doc_type}", response_model=Page[DocumentResponse])
async def list_documents(
    doc_type: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    doc_status: str = Query(None, alias="status"),
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    document_type = _document_type(doc_type)

    async def work(session: AsyncSession):
        rows, total = await document_service.list_documents(
            session, ctx, document_type, page=page, limit=limit, status=doc_status
        )
        return Page[DocumentResponse].build([_to_response(row) for row in rows], page, limit, total)

    return await run(work)


@router.post("/{doc_type}", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
async def create_document(
    doc_type: str,
    body: dict,
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    document_type = _document_type(doc_type)

    async def work(session: AsyncSession):
        document = await document_service.create_document(session, ctx, document_type, body)
        return _to_response(document)

    return await run(work)


@router.get("/{doc_type}/{document_id}", response_model=DocumentResponse)
async def get_document(
    doc_type: str,
    document_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    document_type = _document_type(doc_type)

    async def work(session: AsyncSession):
        document = await document_service.get_document(session, ctx, document_type, document_id)
        return _to_response(document)

    return await run(work)


@router.patch("/{doc_type}/{document_id}", response_model=DocumentResponse)
async def update_document(
    doc_type: str,
    document_id: str,
    body: dict,
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    document_type = _document_type(doc_type)

    async def work(session: AsyncSession):
        document = await document_service.update_document(
            session, ctx, document_type, document_id, body
        )
        return _to_response(document)

    return await run(work)


@router.delete("/{doc_type}/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    doc_type: str,
    document_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    document_type = _document_type(doc_type)
    await run(document_service.delete_document, ctx, document_type, document_id)


@router.post("/{doc_type}/{document_id}/transitions", response_model=DocumentResponse)
async def transition_document(
    doc_type: str,
    document_id: str,
    body: TransitionRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    document_type = _document_type(doc_type)

    async def work(session: AsyncSession):
        document = await document_service.transition_document(
            session, ctx, document_type, document_id, body.target_state, body.payload
        )
        return _to_response(document)

    result = await run(work)
    logger.info(
        "document_transition_requested",
        document_type=document_type.value,
        document_id=document_id,
        target_state=body.target_state,
    )
    return result
