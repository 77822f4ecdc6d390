"""Tenant context carried explicitly through every data-access call."""

import uuid
from dataclasses import dataclass
from typing import Any, Optional

from docflow.errors import TenantContextRequiredError


def parse_uuid(value: Any) -> Optional[uuid.UUID]:
    """Coerce ``value`` to a UUID, returning None when it is not one."""
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        return None


@dataclass(frozen=True)
class TenantContext:
    tenant_id: uuid.UUID
    company_id: Optional[uuid.UUID] = None
    user_id: Optional[uuid.UUID] = None

    @classmethod
    def build(cls, tenant_id: Any, company_id: Any = None, user_id: Any = None) -> "TenantContext":
        """Build a context from raw claim/header values, failing closed on a bad tenant."""
        tid = parse_uuid(tenant_id)
        if tid is None:
            raise TenantContextRequiredError("A valid tenant_id is required")
        cid = parse_uuid(company_id)
        if company_id not in (None, "") and cid is None:
            raise TenantContextRequiredError("company_id is not a valid identifier")
        return cls(tenant_id=tid, company_id=cid, user_id=parse_uuid(user_id))

    def for_company(self, company_id: Any) -> "TenantContext":
        return TenantContext.build(self.tenant_id, company_id, self.user_id)

    def require_company(self) -> uuid.UUID:
        if self.company_id is None:
            raise TenantContextRequiredError("A company must be selected for this operation")
        return self.company_id

    @property
    def actor(self) -> str:
        return str(self.user_id) if self.user_id else "system"
