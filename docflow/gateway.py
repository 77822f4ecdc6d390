"""
Tenant isolation gateway.

All service code reaches the database through a ``TenantGateway`` bound to one
session and one ``TenantContext``. Statements issued through it carry the
context as an execution option; the ``do_orm_execute`` listener in
``docflow.database`` turns that into tenant/company criteria and rejects
tenant-scoped statements that arrive without one. Rows from another tenant are
therefore indistinguishable from missing rows.
"""

from typing import Any, Optional, TypeVar

from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from docflow.database import (
    TENANT_CONTEXT_OPTION,
    CompanyScopedMixin,
    TenantScopedMixin,
    set_tenant_context,
)
from docflow.errors import NotFoundError, TenantContextRequiredError
from docflow.tenancy import TenantContext, parse_uuid

logger = structlog.get_logger()

M = TypeVar("M")


class TenantGateway:
    def __init__(self, session: AsyncSession, ctx: Optional[TenantContext]):
        if ctx is None or ctx.tenant_id is None:
            raise TenantContextRequiredError()
        self.session = session
        self.ctx = ctx

    def scoped(self, statement):
        return statement.execution_options(**{TENANT_CONTEXT_OPTION: self.ctx})

    async def execute(self, statement, params: Optional[dict] = None):
        await set_tenant_context(self.session, self.ctx.tenant_id)
        return await self.session.execute(self.scoped(statement), params)

    async def scalar(self, statement) -> Any:
        return (await self.execute(statement)).scalar()

    async def scalars(self, statement) -> list:
        return list((await self.execute(statement)).scalars().all())

    async def first(self, statement) -> Any:
        return (await self.execute(statement)).scalars().first()

    async def find(self, model: type[M], entity_id: Any, lock: bool = False) -> Optional[M]:
        """Load one row by id inside the tenant scope, or None."""
        pk = parse_uuid(entity_id)
        if pk is None:
            return None
        stmt = select(model).where(model.id == pk)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return await self.first(stmt)

    async def get(
        self,
        model: type[M],
        entity_id: Any,
        lock: bool = False,
        label: Optional[str] = None,
    ) -> M:
        """Like ``find`` but raises NotFoundError. Cross-tenant ids behave as missing."""
        obj = await self.find(model, entity_id, lock=lock)
        if obj is None:
            raise NotFoundError(label or model.__name__, entity_id)
        return obj

    def stamp(self, obj: Any) -> Any:
        if isinstance(obj, TenantScopedMixin):
            obj.tenant_id = self.ctx.tenant_id
        if isinstance(obj, CompanyScopedMixin):
            obj.company_id = self.ctx.require_company()
        return obj

    def add(self, *objs: Any) -> None:
        """Stamp and add objects together with everything they cascade to."""
        for obj in objs:
            state = inspect(obj)
            self.stamp(obj)
            for child, _mapper, _state, _dict in state.mapper.cascade_iterator("save-update", state):
                self.stamp(child)
            self.session.add(obj)

    async def delete(self, obj: Any) -> None:
        self._assert_owned(obj)
        await self.session.delete(obj)

    async def flush(self) -> None:
        await self.session.flush()

    def _assert_owned(self, obj: Any) -> None:
        if isinstance(obj, TenantScopedMixin) and obj.tenant_id != self.ctx.tenant_id:
            logger.error("cross_tenant_write_blocked", entity=type(obj).__name__)
            raise NotFoundError(type(obj).__name__, getattr(obj, "id", None))
        if isinstance(obj, CompanyScopedMixin) and obj.company_id != self.ctx.company_id:
            logger.error("cross_company_write_blocked", entity=type(obj).__name__)
            raise NotFoundError(type(obj).__name__, getattr(obj, "id", None))
