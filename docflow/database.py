import logging
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy import Uuid, event, inspect, text
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, with_loader_criteria
from sqlalchemy import Delete, Select, Update
from sqlalchemy.sql.expression import FromClause, Join, TableClause
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
import structlog

from docflow.config import settings
from docflow.errors import ConflictError, InvariantViolationError, TenantContextRequiredError

logger = structlog.get_logger()
_std_logger = logging.getLogger(__name__)

T = TypeVar("T")

TENANT_CONTEXT_OPTION = "tenant_context"
RLS_BOUND_KEY = "rls_tenant_id"

# Populated as mapped classes are declared.
TENANT_SCOPED_TABLES: set[str] = set()
COMPANY_SCOPED_TABLES: set[str] = set()

# Deadlock and serialization failure.
TRANSIENT_SQLSTATES = {"40001", "40P01"}


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    return datetime.utcnow()


class TenantScopedMixin:
    """Rows owned by a tenant. Every ORM read of these tables is filtered by tenant."""

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    def __init_subclass__(cls, **kwargs):
        tablename = cls.__dict__.get("__tablename__")
        if tablename:
            TENANT_SCOPED_TABLES.add(tablename)
        super().__init_subclass__(**kwargs)


class CompanyScopedMixin(TenantScopedMixin):
    """Rows owned by one company of a tenant."""

    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    def __init_subclass__(cls, **kwargs):
        tablename = cls.__dict__.get("__tablename__")
        if tablename:
            COMPANY_SCOPED_TABLES.add(tablename)
        super().__init_subclass__(**kwargs)


class TenantAwareSession(Session):
    """Sync session class behind every AsyncSession; carries the isolation listeners."""


def _from_tables(from_clause: Any) -> set[str]:
    if isinstance(from_clause, Join):
        return _from_tables(from_clause.left) | _from_tables(from_clause.right)
    if isinstance(from_clause, TableClause):
        return {from_clause.name}
    element = getattr(from_clause, "element", None)
    if isinstance(element, Select):
        return _statement_tables(element)
    if isinstance(element, FromClause):
        return _from_tables(element)
    return set()


def _statement_tables(statement: Any) -> set[str]:
    if isinstance(statement, (Update, Delete)):
        return _from_tables(statement.table)
    if isinstance(statement, Select):
        names: set[str] = set()
        for from_clause in statement.get_final_froms():
            names |= _from_tables(from_clause)
        return names
    return set()


def tenant_criteria(ctx, company_scoped: bool = True) -> list:
    tenant_id = ctx.tenant_id
    options = [
        with_loader_criteria(
            TenantScopedMixin,
            lambda cls: cls.tenant_id == tenant_id,
            include_aliases=True,
        )
    ]
    if company_scoped:
        company_id = ctx.company_id
        options.append(
            with_loader_criteria(
                CompanyScopedMixin,
                lambda cls: cls.company_id == company_id,
                include_aliases=True,
            )
        )
    return options


@event.listens_for(TenantAwareSession, "do_orm_execute")
def _scope_orm_execute(orm_execute_state):
    if orm_execute_state.is_column_load or orm_execute_state.is_relationship_load:
        return
    if not (
        orm_execute_state.is_select
        or orm_execute_state.is_update
        or orm_execute_state.is_delete
    ):
        return

    tables = _statement_tables(orm_execute_state.statement)
    if not tables & TENANT_SCOPED_TABLES:
        return

    ctx = orm_execute_state.execution_options.get(TENANT_CONTEXT_OPTION)
    if ctx is None:
        logger.error("unscoped_query_rejected", tables=sorted(tables))
        raise TenantContextRequiredError()

    company_scoped = bool(tables & COMPANY_SCOPED_TABLES)
    if company_scoped and ctx.company_id is None:
        raise TenantContextRequiredError("A company must be selected for this operation")

    orm_execute_state.statement = orm_execute_state.statement.options(
        *tenant_criteria(ctx, company_scoped)
    )


@event.listens_for(TenantAwareSession, "before_flush")
def _guard_tenant_columns(session, flush_context, instances):
    for obj in session.new:
        if isinstance(obj, TenantScopedMixin) and obj.tenant_id is None:
            raise TenantContextRequiredError(
                f"{type(obj).__name__} cannot be stored without a tenant"
            )
        if isinstance(obj, CompanyScopedMixin) and obj.company_id is None:
            raise TenantContextRequiredError(
                f"{type(obj).__name__} cannot be stored without a company"
            )

    for obj in session.dirty:
        if not isinstance(obj, TenantScopedMixin):
            continue
        state = inspect(obj)
        for key in ("tenant_id", "company_id"):
            if key in state.attrs and state.attrs[key].history.deleted:
                raise InvariantViolationError(
                    f"{key} of {type(obj).__name__} cannot be changed"
                )


@event.listens_for(TenantAwareSession, "after_commit")
@event.listens_for(TenantAwareSession, "after_rollback")
def _reset_rls_binding(session):
    session.info.pop(RLS_BOUND_KEY, None)


def _get_db_url() -> str:
    """Strip sslmode from URL since asyncpg uses connect_args for SSL."""
    url = settings.DATABASE_URL
    url = url.replace("?sslmode=require", "").replace("&sslmode=require", "")
    return url


engine: AsyncEngine = create_async_engine(
    _get_db_url(),
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_timeout=30,
    pool_recycle=settings.DB_POOL_RECYCLE,
    pool_pre_ping=True,
    echo=settings.DEBUG,
    connect_args={"ssl": "require"} if settings.DB_SSL_REQUIRED else {},
)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        sync_session_class=TenantAwareSession,
        expire_on_commit=False,
    )


AsyncSessionLocal = make_session_factory(engine)


async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def set_tenant_context(session: AsyncSession, tenant_id: uuid.UUID):
    """Bind ``app.current_tenant_id`` for the row-level-security policies.

    set_config(..., true) scopes the value to the current transaction. A no-op
    on databases other than PostgreSQL.
    """
    if session.bind is None or session.bind.dialect.name != "postgresql":
        return
    if session.info.get(RLS_BOUND_KEY) == tenant_id:
        return
    await session.execute(
        text("SELECT set_config('app.current_tenant_id', :tid, true)"),
        {"tid": str(uuid.UUID(str(tenant_id)))},
    )
    session.info[RLS_BOUND_KEY] = tenant_id


def _sqlstate(exc: BaseException) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return str(code)
    return None


def is_transient_error(exc: BaseException) -> bool:
    return isinstance(exc, DBAPIError) and _sqlstate(exc) in TRANSIENT_SQLSTATES


async def run_in_transaction(
    work: Callable[..., Awaitable[T]],
    *args: Any,
    session_factory: Optional[async_sessionmaker] = None,
    retries: Optional[int] = None,
    **kwargs: Any,
) -> T:
    """Run ``work(session, *args, **kwargs)`` in one transaction.

    Deadlocks and serialization failures are retried with a fresh session;
    unique-constraint violations surface as ConflictError.
    """
    factory = session_factory or AsyncSessionLocal
    attempts = settings.DB_TRANSIENT_RETRIES if retries is None else max(1, retries)

    async for attempt in AsyncRetrying(
        retry=retry_if_exception(is_transient_error),
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.05, max=1),
        before_sleep=before_sleep_log(_std_logger, logging.WARNING),
        reraise=True,
    ):
        with attempt:
            async with factory() as session:
                try:
                    async with session.begin():
                        return await work(session, *args, **kwargs)
                except IntegrityError as exc:
                    logger.warning("db_integrity_conflict", error=str(exc.orig))
                    raise ConflictError(
                        "The change conflicts with an existing record"
                    ) from exc


class TransactionRunner:
    """Callable handed to routes; runs service functions in their own transaction."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def __call__(self, work: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        return await run_in_transaction(
            work, *args, session_factory=self.session_factory, **kwargs
        )


def get_transaction_runner() -> TransactionRunner:
    return TransactionRunner(AsyncSessionLocal)


async def init_db():
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
        logger.info("db_connected")


async def close_db():
    await engine.dispose()
    logger.info("db_disconnected")
