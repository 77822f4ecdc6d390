"""
HTTP surface, exercised through the ASGI app with an in-memory database.

Covers:
- document create / get / list / transition / delete through the generic routes
- error envelopes (404, 409, 422)
- party balance and credit check, payments, purchase order quantity status
- bearer token authentication with X-Company-ID
- internal job endpoints guarded by X-Internal-Secret
"""

import uuid
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from docflow.config import settings
from docflow.database import get_db, get_transaction_runner
from docflow.main import app
from docflow.middleware.tenant import get_tenant_context
from docflow.services import auth_service


@pytest.fixture
async def client(ctx, run):
    app.dependency_overrides[get_tenant_context] = lambda: ctx
    app.dependency_overrides[get_transaction_runner] = lambda: run
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def anonymous_client(run):
    """Client that goes through real token verification."""
    app.dependency_overrides[get_transaction_runner] = lambda: run
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def _order_body(customer, quantity="2", unit_price="150.00"):
    return {
        "customer_id": str(customer.id),
        "tax_rate": "0",
        "lines": [{"product_id": str(uuid.uuid4()), "quantity": quantity, "unit_price": unit_price}],
    }


async def _transition(client, slug, document_id, target, **payload):
    return await client.post(
        f"/api/v1/documents/{slug}/{document_id}/transitions",
        json={"target_state": target, "payload": payload},
    )


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_and_read_sales_order(client, parties):
    resp = await client.post("/api/v1/documents/sales-orders", json=_order_body(parties.customer))
    assert resp.status_code == 201
    created = resp.json()
    assert created["status"] == "DRAFT"
    assert created["number"].startswith("SO/")
    assert Decimal(created["total_amount"]) == Decimal("300.00")
    assert len(created["lines"]) == 1

    resp = await client.get(f"/api/v1/documents/sales-orders/{created['id']}")
    assert resp.status_code == 200
    assert resp.json()["id"] == created["id"]


@pytest.mark.asyncio
async def test_list_documents_paginates_and_filters(client, parties):
    for _ in range(3):
        await client.post("/api/v1/documents/sales-orders", json=_order_body(parties.customer))

    resp = await client.get("/api/v1/documents/sales-orders", params={"limit": 2})
    body = resp.json()
    assert resp.status_code == 200
    assert len(body["data"]) == 2
    assert body["pagination"]["total"] == 3
    assert body["pagination"]["has_next"] is True

    resp = await client.get("/api/v1/documents/sales-orders", params={"status": "APPROVED"})
    assert resp.json()["pagination"]["total"] == 0


@pytest.mark.asyncio
async def test_transitions_through_api(client, parties):
    so = (await client.post("/api/v1/documents/sales-orders", json=_order_body(parties.customer))).json()

    assert (await _transition(client, "sales-orders", so["id"], "PENDING")).json()["status"] == "PENDING"
    approved = await _transition(client, "sales-orders", so["id"], "APPROVED")
    assert approved.status_code == 200
    assert approved.json()["status"] == "APPROVED"

    illegal = await _transition(client, "sales-orders", so["id"], "DRAFT")
    assert illegal.status_code == 409
    assert illegal.json()["error"]["code"] == "INVALID_TRANSITION"


@pytest.mark.asyncio
async def test_draft_delete_returns_no_content(client, parties):
    so = (await client.post("/api/v1/documents/sales-orders", json=_order_body(parties.customer))).json()

    resp = await client.delete(f"/api/v1/documents/sales-orders/{so['id']}")
    assert resp.status_code == 204
    assert (await client.get(f"/api/v1/documents/sales-orders/{so['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_missing_document_envelope(client):
    resp = await client.get(f"/api/v1/documents/sales-orders/{uuid.uuid4()}")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_unknown_document_type(client):
    resp = await client.get("/api/v1/documents/quotations")
    assert resp.status_code == 404
    assert resp.json()["error"]["details"]["entity"] == "Document type"


@pytest.mark.asyncio
async def test_invalid_payload_is_422(client, parties):
    resp = await client.post(
        "/api/v1/documents/sales-orders",
        json={"customer_id": str(parties.customer.id), "lines": []},
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


# ---------------------------------------------------------------------------
# Parties and payments
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_party_balance_and_payment(client, parties):
    so = (await client.post("/api/v1/documents/sales-orders", json=_order_body(parties.customer))).json()
    await _transition(client, "sales-orders", so["id"], "PENDING")
    await _transition(client, "sales-orders", so["id"], "APPROVED")

    balance = (await client.get(f"/api/v1/parties/customers/{parties.customer.id}/balance")).json()
    assert Decimal(balance["outstanding"]) == Decimal("300.00")

    resp = await client.post("/api/v1/payments", json={
        "source_type": "SALES_ORDER",
        "source_id": so["id"],
        "amount": "100.00",
    })
    assert resp.status_code == 201
    payment = resp.json()
    assert payment["number"].startswith("PAY/")

    listed = await client.get("/api/v1/payments", params={"source_type": "SALES_ORDER", "source_id": so["id"]})
    assert [p["id"] for p in listed.json()] == [payment["id"]]

    balance = (await client.get(f"/api/v1/parties/customers/{parties.customer.id}/balance")).json()
    assert Decimal(balance["outstanding"]) == Decimal("200.00")

    voided = await client.post(f"/api/v1/payments/{payment['id']}/void", json={"reason": "bounced"})
    assert voided.status_code == 200
    balance = (await client.get(f"/api/v1/parties/customers/{parties.customer.id}/balance")).json()
    assert Decimal(balance["outstanding"]) == Decimal("300.00")


@pytest.mark.asyncio
async def test_credit_check(client, parties):
    resp = await client.post(
        f"/api/v1/parties/customers/{parties.customer.id}/credit-check",
        json={"amount": "60000000.00"},
    )
    assert resp.status_code == 200
    assert resp.json()["within_limit"] is False


@pytest.mark.asyncio
async def test_create_party_and_wrong_slug(client):
    resp = await client.post("/api/v1/parties/suppliers", json={"code": "SUPP-900", "name": "Northwind"})
    assert resp.status_code == 201
    supplier_id = resp.json()["id"]

    assert (await client.get(f"/api/v1/parties/customers/{supplier_id}")).status_code == 404
    assert (await client.get("/api/v1/parties/vendors")).status_code == 404


@pytest.mark.asyncio
async def test_purchase_order_quantity_status(client, parties):
    po = (await client.post("/api/v1/documents/purchase-orders", json={
        "supplier_id": str(parties.supplier.id),
        "tax_rate": "0",
        "lines": [{"product_id": str(uuid.uuid4()), "quantity": "12", "unit_price": "5.00"}],
    })).json()

    resp = await client.get(f"/api/v1/purchase-orders/{po['id']}/quantity-status")
    assert resp.status_code == 200
    line = resp.json()["lines"][0]
    assert Decimal(line["ordered_qty"]) == Decimal("12")
    assert Decimal(line["invoiced_qty"]) == Decimal("0")


@pytest.mark.asyncio
async def test_delivery_tolerance_routes(client):
    product_id = str(uuid.uuid4())
    resp = await client.put("/api/v1/delivery-tolerances", json={"level": "COMPANY", "over_tolerance_pct": "5"})
    assert resp.status_code == 200
    company_rule = resp.json()
    await client.put("/api/v1/delivery-tolerances", json={
        "level": "PRODUCT", "product_id": product_id, "under_tolerance_pct": "3", "unlimited_over": True,
    })

    effective = (await client.get("/api/v1/delivery-tolerances/effective", params={"product_id": product_id})).json()
    assert effective["resolved_from"] == "PRODUCT"
    assert effective["unlimited_over"] is True
    assert Decimal(effective["under_pct"]) == Decimal("3")

    listed = (await client.get("/api/v1/delivery-tolerances")).json()
    assert {rule["level"] for rule in listed} == {"COMPANY", "PRODUCT"}

    resp = await client.delete(f"/api/v1/delivery-tolerances/{company_rule['id']}")
    assert resp.status_code == 204
    fallback = (await client.get("/api/v1/delivery-tolerances/effective")).json()
    assert fallback["resolved_from"] == "DEFAULT"


@pytest.mark.asyncio
async def test_product_tolerance_needs_a_product(client):
    resp = await client.put("/api/v1/delivery-tolerances", json={"level": "PRODUCT", "over_tolerance_pct": "5"})
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_health_reports_database(session_factory):
    async def override_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_db
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            resp = await ac.get("/health")
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["checks"]["db"] == "ok"


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_bearer_token_scopes_requests(anonymous_client, ctx, parties, monkeypatch):
    monkeypatch.setattr(settings, "JWT_ALGORITHM", "HS256")
    monkeypatch.setattr(settings, "JWT_SECRET_KEY", "test-secret-key")
    token = auth_service.create_access_token(ctx.actor, str(ctx.tenant_id))

    resp = await anonymous_client.post(
        "/api/v1/documents/sales-orders",
        json=_order_body(parties.customer),
        headers={"Authorization": f"Bearer {token}", "X-Company-ID": str(ctx.company_id)},
    )
    assert resp.status_code == 201
    assert resp.json()["created_by"] == ctx.actor
    assert resp.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_request_without_token_is_rejected(anonymous_client):
    resp = await anonymous_client.get("/api/v1/documents/sales-orders")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "AUTH_TOKEN_MISSING"


@pytest.mark.asyncio
async def test_token_without_company_is_rejected(anonymous_client, ctx, monkeypatch):
    monkeypatch.setattr(settings, "JWT_ALGORITHM", "HS256")
    monkeypatch.setattr(settings, "JWT_SECRET_KEY", "test-secret-key")
    token = auth_service.create_access_token(ctx.actor, str(ctx.tenant_id))

    resp = await anonymous_client.get(
        "/api/v1/documents/sales-orders", headers={"Authorization": f"Bearer {token}"}
    )
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "TENANT_CONTEXT_REQUIRED"


@pytest.fixture
def bearer(ctx, monkeypatch):
    monkeypatch.setattr(settings, "JWT_ALGORITHM", "HS256")
    monkeypatch.setattr(settings, "JWT_SECRET_KEY", "test-secret-key")

    def _headers(company_id, token_company=None):
        token = auth_service.create_access_token(ctx.actor, str(ctx.tenant_id), token_company)
        return {"Authorization": f"Bearer {token}", "X-Company-ID": str(company_id)}

    return _headers


@pytest.mark.asyncio
async def test_unknown_company_header_is_not_found(anonymous_client, bearer):
    resp = await anonymous_client.post(
        "/api/v1/parties/suppliers",
        json={"code": "SUPP-404", "name": "Nowhere"},
        headers=bearer(uuid.uuid4()),
    )
    assert resp.status_code == 404
    assert resp.json()["error"]["details"]["entity"] == "Company"


@pytest.mark.asyncio
async def test_other_tenants_company_header_is_not_found(anonymous_client, bearer, other_ctx):
    resp = await anonymous_client.get("/api/v1/parties/customers", headers=bearer(other_ctx.company_id))
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_company_bound_token_cannot_switch_company(anonymous_client, bearer, ctx):
    resp = await anonymous_client.get(
        "/api/v1/parties/customers", headers=bearer(uuid.uuid4(), token_company=str(ctx.company_id))
    )
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "FORBIDDEN"

    resp = await anonymous_client.get(
        "/api/v1/parties/customers", headers=bearer(ctx.company_id, token_company=str(ctx.company_id))
    )
    assert resp.status_code == 200


# ---------------------------------------------------------------------------
# Internal jobs
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_internal_jobs_require_secret(anonymous_client, ctx, monkeypatch):
    monkeypatch.setattr(settings, "INTERNAL_JOB_SECRET", "job-secret")

    assert (await anonymous_client.post("/internal/jobs/reconcile-balances")).status_code == 403

    resp = await anonymous_client.post(
        "/internal/jobs/reconcile-balances", headers={"X-Internal-Secret": "job-secret"}
    )
    assert resp.status_code == 200
    summary = resp.json()
    assert summary["companies"] == 1
    assert summary["failures"] == {}
    assert summary["results"][str(ctx.company_id)]["mismatches"] == []


@pytest.mark.asyncio
async def test_refresh_overdue_job(anonymous_client, ctx, monkeypatch):
    monkeypatch.setattr(settings, "INTERNAL_JOB_SECRET", "job-secret")

    resp = await anonymous_client.post(
        "/internal/jobs/refresh-overdue",
        params={"as_of": "2030-01-01"},
        headers={"X-Internal-Secret": "job-secret"},
    )
    assert resp.status_code == 200
    assert resp.json()["results"][str(ctx.company_id)]["invoices_overdue"] == 0
