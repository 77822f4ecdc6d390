from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from docflow.database import TransactionRunner, get_transaction_runner
from docflow.errors import NotFoundError
from docflow.gateway import TenantGateway
from docflow.middleware.tenant import get_tenant_context
from docflow.models.enums import PartyType
from docflow.schemas.common import Page
from docflow.schemas.party import (
    CreditCheckRequest,
    CreditCheckResponse,
    PartyBalanceResponse,
    PartyCreate,
    PartyResponse,
    PartyUpdate,
)
from docflow.services import party_service
from docflow.services.balance_ledger import get_party_balance
from docflow.tenancy import TenantContext

router = APIRouter()

PARTY_SLUGS = {"customers": PartyType.CUSTOMER, "suppliers": PartyType.SUPPLIER}


def _party_type(party_slug: str) -> PartyType:
    try:
        return PARTY_SLUGS[party_slug]
    except KeyError:
        raise NotFoundError("Party type", party_slug)


@router.get("/{party_slug}", response_model=Page[PartyResponse])
async def list_parties(
    party_slug: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: str = Query(None),
    include_inactive: bool = Query(False),
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    party_type = _party_type(party_slug)

    async def work(session: AsyncSession):
        rows, total = await party_service.list_parties(
            TenantGateway(session, ctx),
            party_type,
            page=page,
            limit=limit,
            search=search,
            include_inactive=include_inactive,
        )
        items = [PartyResponse.model_validate(row) for row in rows]
        return Page[PartyResponse].build(items, page, limit, total)

    return await run(work)


@router.post("/{party_slug}", response_model=PartyResponse, status_code=status.HTTP_201_CREATED)
async def create_party(
    party_slug: str,
    body: PartyCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    party_type = _party_type(party_slug)

    async def work(session: AsyncSession):
        party = await party_service.create_party(TenantGateway(session, ctx), party_type, body)
        return PartyResponse.model_validate(party)

    return await run(work)


@router.get("/{party_slug}/{party_id}", response_model=PartyResponse)
async def get_party(
    party_slug: str,
    party_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    party_type = _party_type(party_slug)

    async def work(session: AsyncSession):
        party = await party_service.get_party(TenantGateway(session, ctx), party_type, party_id)
        return PartyResponse.model_validate(party)

    return await run(work)


@router.patch("/{party_slug}/{party_id}", response_model=PartyResponse)
async def update_party(
    party_slug: str,
    party_id: str,
    body: PartyUpdate,
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    party_type = _party_type(party_slug)

    async def work(session: AsyncSession):
        party = await party_service.update_party(
            TenantGateway(session, ctx), party_type, party_id, body
        )
        return PartyResponse.model_validate(party)

    return await run(work)


@router.delete("/{party_slug}/{party_id}", response_model=PartyResponse)
async def delete_party(
    party_slug: str,
    party_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    party_type = _party_type(party_slug)

    async def work(session: AsyncSession):
        party = await party_service.delete_party(TenantGateway(session, ctx), party_type, party_id)
        return PartyResponse.model_validate(party)

    return await run(work)


@router.get("/{party_slug}/{party_id}/balance", response_model=PartyBalanceResponse)
async def party_balance(
    party_slug: str,
    party_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    party_type = _party_type(party_slug)
    balance = await run(get_party_balance, ctx, party_type, party_id)
    return PartyBalanceResponse.model_validate(balance)


@router.post("/{party_slug}/{party_id}/credit-check", response_model=CreditCheckResponse)
async def credit_check(
    party_slug: str,
    party_id: str,
    body: CreditCheckRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    party_type = _party_type(party_slug)

    async def work(session: AsyncSession):
        return await party_service.check_party_credit(
            TenantGateway(session, ctx), party_type, party_id, body.amount
        )

    return CreditCheckResponse.model_validate(await run(work))
