"""
Typed error hierarchy for docflow.

Every error carries a stable machine-readable ``code`` and the HTTP status the
API layer maps it to. Services raise these; ``docflow.main`` renders them into
the ``{"error": {"code", "message", "details"}}`` envelope.
"""

from typing import Any, Optional


class DocflowError(Exception):
    code: str = "DOCFLOW_ERROR"
    http_status: int = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(DocflowError):
    """Malformed or incomplete input. ``fields`` maps field name to problem."""

    code = "VALIDATION_ERROR"
    http_status = 422

    def __init__(self, message: str, fields: Optional[dict[str, str]] = None):
        super().__init__(message, {"fields": fields} if fields else None)
        self.fields = fields or {}


class NotFoundError(DocflowError):
    """Entity absent, or present under another tenant/company."""

    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity: str, entity_id: Any = None):
        message = f"{entity} not found"
        super().__init__(message, {"entity": entity, "id": str(entity_id)} if entity_id else {"entity": entity})
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(DocflowError):
    code = "CONFLICT"
    http_status = 409


class InvalidTransitionError(DocflowError):
    """Requested status change is not in the transition table."""

    code = "INVALID_TRANSITION"
    http_status = 409

    def __init__(self, document_type: str, current: str, requested: str):
        super().__init__(
            f"{document_type} cannot move from {current} to {requested}",
            {"document_type": document_type, "current": current, "requested": requested},
        )
        self.document_type = document_type
        self.current = current
        self.requested = requested


class InvariantViolationError(DocflowError):
    """A quantity or balance bound would be broken."""

    code = "INVARIANT_VIOLATION"
    http_status = 422


class ForbiddenError(DocflowError):
    """Authenticated caller may not act on the requested scope."""

    code = "FORBIDDEN"
    http_status = 403


class TenantContextRequiredError(DocflowError):
    code = "TENANT_CONTEXT_REQUIRED"
    http_status = 401

    def __init__(self, message: str = "Tenant context is required"):
        super().__init__(message)


class AuditSinkError(DocflowError):
    """Raised by audit sinks. Logged by the recorder, never surfaced to callers."""

    code = "AUDIT_SINK_FAILED"
    http_status = 500
