from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from docflow.database import TransactionRunner, get_transaction_runner
from docflow.gateway import TenantGateway
from docflow.middleware.tenant import get_tenant_context
from docflow.schemas.payment import PaymentCreate, PaymentResponse, PaymentVoid
from docflow.services import payment_service
from docflow.tenancy import TenantContext

router = APIRouter()


@router.get("", response_model=list[PaymentResponse])
async def list_payments(
    source_type: str = Query(None),
    source_id: str = Query(None),
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    async def work(session: AsyncSession):
        rows = await payment_service.list_payments(TenantGateway(session, ctx), source_type, source_id)
        return [PaymentResponse.model_validate(row) for row in rows]

    return await run(work)


@router.post("", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def record_payment(
    body: PaymentCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    async def work(session: AsyncSession):
        payment = await payment_service.record_payment(TenantGateway(session, ctx), body)
        return PaymentResponse.model_validate(payment)

    return await run(work)


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    async def work(session: AsyncSession):
        payment = await payment_service.get_payment(TenantGateway(session, ctx), payment_id)
        return PaymentResponse.model_validate(payment)

    return await run(work)


@router.post("/{payment_id}/void", response_model=PaymentResponse)
async def void_payment(
    payment_id: str,
    body: PaymentVoid,
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    async def work(session: AsyncSession):
        payment = await payment_service.void_payment(TenantGateway(session, ctx), payment_id, body)
        return PaymentResponse.model_validate(payment)

    return await run(work)
