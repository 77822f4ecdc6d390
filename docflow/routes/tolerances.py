from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from docflow.database import TransactionRunner, get_transaction_runner
from docflow.gateway import TenantGateway
from docflow.middleware.tenant import get_tenant_context
from docflow.schemas.tolerance import (
    DeliveryToleranceResponse,
    DeliveryToleranceSet,
    EffectiveToleranceResponse,
)
from docflow.services import tolerance_service
from docflow.tenancy import TenantContext

router = APIRouter()


@router.get("", response_model=List[DeliveryToleranceResponse])
async def list_tolerances(
    include_inactive: bool = Query(False),
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    async def work(session: AsyncSession):
        rows = await tolerance_service.list_tolerances(TenantGateway(session, ctx), include_inactive)
        return [DeliveryToleranceResponse.model_validate(row) for row in rows]

    return await run(work)


@router.put("", response_model=DeliveryToleranceResponse)
async def set_tolerance(
    body: DeliveryToleranceSet,
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    async def work(session: AsyncSession):
        rule = await tolerance_service.set_tolerance(TenantGateway(session, ctx), body)
        return DeliveryToleranceResponse.model_validate(rule)

    return await run(work)


@router.get("/effective", response_model=EffectiveToleranceResponse)
async def effective_tolerance(
    product_id: Optional[str] = Query(None),
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    """The rule a line of ``product_id`` is held to."""

    async def work(session: AsyncSession):
        rule = await tolerance_service.get_effective_tolerance(TenantGateway(session, ctx), product_id)
        return EffectiveToleranceResponse(
            product_id=product_id,
            under_pct=rule.under_pct,
            over_pct=rule.over_pct,
            unlimited_over=rule.unlimited_over,
            resolved_from=rule.resolved_from,
        )

    return await run(work)


@router.delete("/{tolerance_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tolerance(
    tolerance_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    async def work(session: AsyncSession):
        await tolerance_service.delete_tolerance(TenantGateway(session, ctx), tolerance_id)

    await run(work)
