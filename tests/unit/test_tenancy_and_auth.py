"""
Unit tests for tenant context construction, the error envelope and access tokens.
"""

import uuid

import pytest
from jose import JWTError, jwt

from docflow.config import settings
from docflow.errors import (
    InvalidTransitionError,
    NotFoundError,
    TenantContextRequiredError,
    ValidationError,
)
from docflow.gateway import TenantGateway
from docflow.services import auth_service
from docflow.tenancy import TenantContext, parse_uuid

TENANT = "a0000000-0000-0000-0000-000000000001"
COMPANY = "c0000000-0000-0000-0000-000000000001"


@pytest.fixture
def shared_secret(monkeypatch):
    monkeypatch.setattr(settings, "JWT_ALGORITHM", "HS256")
    monkeypatch.setattr(settings, "JWT_SECRET_KEY", "test-secret-key")


# ---------------------------------------------------------------------------
# TenantContext
# ---------------------------------------------------------------------------


def test_build_parses_identifiers():
    ctx = TenantContext.build(TENANT, COMPANY, "b0000000-0000-0000-0000-00000000000b")
    assert ctx.tenant_id == uuid.UUID(TENANT)
    assert ctx.company_id == uuid.UUID(COMPANY)
    assert ctx.actor == "b0000000-0000-0000-0000-00000000000b"


@pytest.mark.parametrize("tenant_id", [None, "", "not-a-uuid"])
def test_build_fails_closed_without_tenant(tenant_id):
    with pytest.raises(TenantContextRequiredError):
        TenantContext.build(tenant_id)


def test_build_rejects_malformed_company():
    with pytest.raises(TenantContextRequiredError):
        TenantContext.build(TENANT, "company-1")


def test_require_company():
    ctx = TenantContext.build(TENANT)
    assert ctx.actor == "system"
    with pytest.raises(TenantContextRequiredError):
        ctx.require_company()
    assert ctx.for_company(COMPANY).require_company() == uuid.UUID(COMPANY)


def test_parse_uuid():
    assert parse_uuid(None) is None
    assert parse_uuid("nope") is None
    assert parse_uuid(TENANT) == uuid.UUID(TENANT)


def test_gateway_requires_context():
    with pytest.raises(TenantContextRequiredError):
        TenantGateway(session=None, ctx=None)


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


def test_not_found_envelope():
    err = NotFoundError("Sales order", "1234")
    assert err.http_status == 404
    assert err.to_dict() == {
        "code": "NOT_FOUND",
        "message": "Sales order not found",
        "details": {"entity": "Sales order", "id": "1234"},
    }


def test_validation_error_carries_fields():
    err = ValidationError("Invalid document payload", {"lines": "field required"})
    assert err.http_status == 422
    assert err.to_dict()["details"] == {"fields": {"lines": "field required"}}


def test_invalid_transition_message():
    err = InvalidTransitionError("PURCHASE_ORDER", "COMPLETED", "CANCELLED")
    assert err.code == "INVALID_TRANSITION"
    assert err.message == "PURCHASE_ORDER cannot move from COMPLETED to CANCELLED"


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------


def test_token_round_trip_carries_tenant(shared_secret):
    token = auth_service.create_access_token("user-1", TENANT, company_id=COMPANY)
    claims = auth_service.verify_access_token(token)

    assert claims["sub"] == "user-1"
    assert claims["tenant_id"] == TENANT
    assert claims["company_id"] == COMPANY


def test_expired_token_is_rejected(shared_secret):
    token = auth_service.create_access_token("user-1", TENANT, expires_minutes=-1)
    with pytest.raises(JWTError):
        auth_service.verify_access_token(token)


def test_token_without_tenant_is_rejected(shared_secret):
    token = jwt.encode({"sub": "user-1", "type": "access"}, "test-secret-key", algorithm="HS256")
    with pytest.raises(JWTError):
        auth_service.verify_access_token(token)


def test_missing_secret_is_an_error(monkeypatch):
    monkeypatch.setattr(settings, "JWT_ALGORITHM", "HS256")
    monkeypatch.setattr(settings, "JWT_SECRET_KEY", None)
    with pytest.raises(JWTError):
        auth_service.create_access_token("user-1", TENANT)
