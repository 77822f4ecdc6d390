import uuid
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

import docflow.models  # noqa: F401
from docflow.database import Base, TransactionRunner, make_session_factory
from docflow.gateway import TenantGateway
from docflow.models.tenant import Tenant
from docflow.services import audit_service, document_service
from docflow.services.company_service import create_company
from docflow.services.party_service import create_party, get_party
from docflow.tenancy import TenantContext

TENANT_A = uuid.UUID("a0000000-0000-0000-0000-000000000001")
TENANT_B = uuid.UUID("b0000000-0000-0000-0000-000000000002")
USER_A = uuid.UUID("a0000000-0000-0000-0000-00000000aaaa")
USER_B = uuid.UUID("b0000000-0000-0000-0000-00000000bbbb")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def run(session_factory):
    """Runs ``work(session, ...)`` in its own committed transaction."""
    return TransactionRunner(session_factory)


@pytest.fixture
def call(run):
    """Runs a gateway-level service function in its own transaction."""

    async def _call(ctx, fn, *args, **kwargs):
        async def work(session):
            return await fn(TenantGateway(session, ctx), *args, **kwargs)

        return await run(work)

    return _call


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

class MemoryAuditSink:
    def __init__(self):
        self.records = []

    async def __call__(self, record):
        self.records.append(record)


@pytest.fixture(autouse=True)
async def audit_records(monkeypatch):
    sink = MemoryAuditSink()
    recorder = audit_service.AuditRecorder(sink=sink, maxsize=100)
    monkeypatch.setattr(audit_service, "audit_recorder", recorder)
    yield sink.records
    await recorder.stop()


# ---------------------------------------------------------------------------
# Tenants, companies, parties
# ---------------------------------------------------------------------------

async def _seed_tenant(run, tenant_id, user_id, slug, **company_settings):
    async def add_tenant(session):
        session.add(Tenant(id=tenant_id, name=slug.title(), slug=slug))

    await run(add_tenant)

    async def add_company(session):
        gw = TenantGateway(session, TenantContext(tenant_id=tenant_id))
        return await create_company(gw, "MAIN", f"{slug.title()} Main", **company_settings)

    company = await run(add_company)
    return TenantContext(tenant_id=tenant_id, company_id=company.id, user_id=user_id)


@pytest.fixture
def seed_tenant(run):
    async def _seed(tenant_id=TENANT_A, user_id=USER_A, slug="acme", **company_settings):
        return await _seed_tenant(run, tenant_id, user_id, slug, **company_settings)

    return _seed


@pytest.fixture
async def ctx(seed_tenant):
    return await seed_tenant()


@pytest.fixture
async def other_ctx(seed_tenant):
    return await seed_tenant(TENANT_B, USER_B, "globex")


@pytest.fixture
def make_party(call):
    async def _make(ctx, party_type="CUSTOMER", code=None, **fields):
        payload = {
            "code": code or f"{party_type[:4]}-{uuid.uuid4().hex[:6]}",
            "name": fields.pop("name", f"{party_type.title()} Ltd"),
            **fields,
        }
        return await call(ctx, create_party, party_type, payload)

    return _make


@pytest.fixture
async def parties(ctx, make_party):
    customer = await make_party(ctx, "CUSTOMER", "CUST-001", credit_limit=Decimal("50000000"))
    supplier = await make_party(ctx, "SUPPLIER", "SUPP-001")
    return SimpleNamespace(customer=customer, supplier=supplier)


# ---------------------------------------------------------------------------
# Document workflow helpers
# ---------------------------------------------------------------------------

class DocumentClient:
    """Drives document_service the way the routes do: one transaction per call."""

    def __init__(self, run):
        self.run = run

    async def create(self, ctx, document_type, payload):
        return await self.run(document_service.create_document, ctx, document_type, payload)

    async def get(self, ctx, document_type, document_id):
        return await self.run(document_service.get_document, ctx, document_type, document_id)

    async def update(self, ctx, document_type, document_id, payload):
        return await self.run(document_service.update_document, ctx, document_type, document_id, payload)

    async def delete(self, ctx, document_type, document_id):
        await self.run(document_service.delete_document, ctx, document_type, document_id)

    async def move(self, ctx, document_type, document_id, *targets, payload=None):
        document = None
        for target in targets:
            document = await self.run(
                document_service.transition_document,
                ctx, document_type, document_id, target, payload,
            )
        return document


@pytest.fixture
def docs(run):
    return DocumentClient(run)


@pytest.fixture
def party_of(call):
    """Reloads a party to read its balance columns."""

    async def _load(ctx, party):
        return await call(ctx, get_party, party.party_type, party.id)

    return _load
