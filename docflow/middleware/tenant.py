from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from docflow.database import TransactionRunner, get_transaction_runner
from docflow.errors import ForbiddenError
from docflow.gateway import TenantGateway
from docflow.middleware.auth import get_current_user
from docflow.services.company_service import load_company
from docflow.tenancy import TenantContext, parse_uuid

logger = structlog.get_logger()


async def _check_company(session: AsyncSession, ctx: TenantContext) -> None:
    await load_company(TenantGateway(session, ctx))


async def get_tenant_context(
    current_user: dict = Depends(get_current_user),
    x_company_id: Optional[str] = Header(None, alias="X-Company-ID"),
    run: TransactionRunner = Depends(get_transaction_runner),
) -> TenantContext:
    """FastAPI dependency: the caller's TenantContext, company taken from X-Company-ID.

    The company must be an active company of the token's tenant. A token that
    names a company only admits that company.
    """
    token_company = current_user.get("company_id")
    ctx = TenantContext.build(
        current_user["tenant_id"],
        x_company_id or token_company,
        current_user["user_id"],
    )
    if token_company and ctx.company_id != parse_uuid(token_company):
        logger.warning("company_header_mismatch", token_company=token_company, header_company=x_company_id)
        raise ForbiddenError("Token is not valid for the requested company")

    structlog.contextvars.bind_contextvars(
        tenant_id=str(ctx.tenant_id),
        company_id=str(ctx.company_id) if ctx.company_id else None,
    )
    if ctx.company_id is not None:
        await run(_check_company, ctx)
    return ctx
