"""
Customers and suppliers.

Parties are created and edited here; their balance columns belong to the
balance ledger and are never written directly. Deleting a party only
deactivates it, and only once nothing is outstanding or overdue.
"""

from typing import Optional

from sqlalchemy import func, select
import structlog

from docflow.errors import ConflictError, InvariantViolationError, NotFoundError
from docflow.gateway import TenantGateway
from docflow.models.enums import PartyType
from docflow.models.party import Party
from docflow.money import ZERO, money
from docflow.schemas.party import PartyCreate, PartyUpdate
from docflow.services import balance_ledger
from docflow.services.audit_service import stage_audit
from docflow.services.company_service import load_company
from docflow.services.document_support import apply_header_changes, parse_payload

logger = structlog.get_logger()


def _party_state(party: Party) -> dict:
    return {
        "code": party.code,
        "name": party.name,
        "credit_limit": str(party.credit_limit),
        "payment_term_days": party.payment_term_days,
        "is_active": party.is_active,
    }


async def get_party(gw: TenantGateway, party_type, party_id, lock: bool = False) -> Party:
    party_type = balance_ledger.parse_party_type(party_type)
    if lock:
        return await balance_ledger.lock_party(gw, party_id, party_type)
    party = await gw.get(Party, party_id, label=party_type.value.title())
    if party.party_type != party_type.value:
        raise NotFoundError(party_type.value.title(), party_id)
    return party


async def create_party(gw: TenantGateway, party_type, payload) -> Party:
    await load_company(gw)
    party_type = balance_ledger.parse_party_type(party_type)
    data: PartyCreate = parse_payload(PartyCreate, payload)

    existing = await gw.first(
        select(Party).where(Party.party_type == party_type.value, Party.code == data.code)
    )
    if existing is not None:
        raise ConflictError(
            f"{party_type.value.title()} with code '{data.code}' already exists",
            {"code": data.code},
        )

    party = Party(
        party_type=party_type.value,
        current_outstanding=ZERO,
        overdue_amount=ZERO,
        is_active=True,
        **data.model_dump(),
    )
    party.credit_limit = money(party.credit_limit)
    gw.add(party)
    await gw.flush()

    stage_audit(gw.session, gw.ctx, "PARTY_CREATED", party_type.value, party.id, after_state=_party_state(party))
    logger.info("party_created", party_id=str(party.id), party_type=party_type.value, code=party.code)
    return party


async def update_party(gw: TenantGateway, party_type, party_id, payload) -> Party:
    data: PartyUpdate = parse_payload(PartyUpdate, payload)
    party = await get_party(gw, party_type, party_id, lock=True)
    before = _party_state(party)

    apply_header_changes(
        party,
        data.model_dump(exclude_unset=True),
        nullable=("email", "phone", "address", "tax_id"),
    )
    await gw.flush()

    stage_audit(
        gw.session, gw.ctx, "PARTY_UPDATED", party.party_type, party.id,
        before_state=before, after_state=_party_state(party),
    )
    logger.info("party_updated", party_id=str(party.id))
    return party


async def delete_party(gw: TenantGateway, party_type, party_id) -> Party:
    """Soft-delete: the party is deactivated, never removed."""
    party = await get_party(gw, party_type, party_id, lock=True)
    await balance_ledger.refresh_overdue(gw, party)
    if party.current_outstanding > ZERO or party.overdue_amount > ZERO:
        raise InvariantViolationError(
            f"{party.code} still has an outstanding balance",
            {
                "current_outstanding": str(party.current_outstanding),
                "overdue_amount": str(party.overdue_amount),
            },
        )
    before = _party_state(party)
    party.is_active = False
    await gw.flush()

    stage_audit(
        gw.session, gw.ctx, "PARTY_DEACTIVATED", party.party_type, party.id,
        before_state=before, after_state=_party_state(party),
    )
    logger.info("party_deactivated", party_id=str(party.id), code=party.code)
    return party


async def check_party_credit(gw: TenantGateway, party_type, party_id, amount=ZERO):
    party = await get_party(gw, party_type, party_id)
    return balance_ledger.check_credit(party, amount)


async def list_parties(
    gw: TenantGateway,
    party_type,
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    include_inactive: bool = False,
) -> tuple[list, int]:
    party_type = balance_ledger.parse_party_type(party_type)
    filters = [Party.party_type == party_type.value]
    if not include_inactive:
        filters.append(Party.is_active.is_(True))
    if search:
        pattern = f"%{search}%"
        filters.append(Party.name.ilike(pattern) | Party.code.ilike(pattern))

    total = await gw.scalar(select(func.count(Party.id)).where(*filters))
    rows = await gw.scalars(select(Party).where(*filters).order_by(Party.code).offset((page - 1) * limit).limit(limit))
    return rows, total or 0
