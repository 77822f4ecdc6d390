"""Helpers shared by the per-document services."""

from decimal import Decimal
from typing import Any, Iterable, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from docflow.config import settings
from docflow.database import utcnow
from docflow.errors import NotFoundError, ValidationError
from docflow.gateway import TenantGateway
from docflow.models.enums import PartyType
from docflow.models.party import Party
from docflow.money import ZERO, money, to_decimal
from docflow.services.audit_service import stage_audit


def parse_payload(schema: type[BaseModel], payload: Any) -> BaseModel:
    """Validate a raw payload against ``schema``; pydantic errors become ValidationError."""
    if isinstance(payload, schema):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(exclude_unset=True)
    try:
        return schema.model_validate(payload or {})
    except PydanticValidationError as exc:
        fields = {
            ".".join(str(part) for part in error["loc"]) or "payload": error["msg"]
            for error in exc.errors()
        }
        raise ValidationError("Invalid document payload", fields)


def build_lines(line_cls, inputs: Iterable[Any], **extra) -> list:
    lines = []
    for number, item in enumerate(inputs, start=1):
        values = item.model_dump() if isinstance(item, BaseModel) else dict(item)
        lines.append(line_cls(line_number=number, **values, **extra))
    return lines


def resolve_tax_rate(requested: Optional[Decimal], company) -> Decimal:
    if requested is not None:
        return to_decimal(requested)
    if company.default_tax_rate is not None:
        return to_decimal(company.default_tax_rate)
    return to_decimal(settings.DEFAULT_TAX_RATE)


def check_totals(document) -> None:
    if money(document.discount_amount) > money(document.subtotal):
        raise ValidationError(
            "Discount cannot exceed the subtotal",
            {"discount_amount": str(document.discount_amount)},
        )
    if document.total_amount < ZERO:
        raise ValidationError("Document total cannot be negative")


async def load_party(gw: TenantGateway, party_id, party_type: PartyType, lock: bool = False) -> Party:
    label = party_type.value.title()
    party = await gw.get(Party, party_id, lock=lock, label=label)
    if party.party_type != party_type.value:
        raise NotFoundError(label, party_id)
    if not party.is_active:
        raise ValidationError(f"{label} {party.code} is inactive", {f"{label.lower()}_id": str(party_id)})
    return party


def apply_header_changes(document, changes: dict, nullable: Iterable[str] = ()) -> None:
    """Copy updated header fields, ignoring explicit nulls on required columns."""
    nullable = set(nullable)
    for key, value in changes.items():
        if value is None and key not in nullable:
            continue
        setattr(document, key, value)


def stamp_cancellation(gw: TenantGateway, document, payload: dict) -> None:
    document.cancelled_by = gw.ctx.user_id
    document.cancelled_at = utcnow()
    document.cancellation_reason = payload.get("reason")


def audit_document(gw: TenantGateway, action: str, document, before: Optional[dict] = None) -> None:
    stage_audit(
        gw.session,
        gw.ctx,
        action=action,
        entity_type=type(document).document_type.value,
        entity_id=document.id,
        before_state=before,
        after_state=document.snapshot(),
    )
