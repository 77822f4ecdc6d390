"""
Balance ledger: party obligations and the denormalised balance columns.

Approving a sales order opens a receivable for the customer; approving a
purchase invoice opens a payable to the supplier. Payments settle
obligations, voids unsettle them and cancelling the source document cancels
whatever is still unsettled. Every adjustment locks the party row, moves
``current_outstanding`` by exactly the delta and recomputes
``overdue_amount`` from the open obligations.

The credit check is advisory. Whether a failed check blocks anything is the
caller's decision (see Company.credit_policy).
"""

import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from docflow.database import utcnow
from docflow.errors import InvariantViolationError, NotFoundError, ValidationError
from docflow.gateway import TenantGateway
from docflow.models.enums import ObligationStatus, PartyType
from docflow.models.ledger import PartyObligation
from docflow.models.party import Party
from docflow.money import HUNDRED, ZERO, money, to_decimal
from docflow.tenancy import TenantContext

logger = structlog.get_logger()


@dataclass
class PartyBalance:
    party_id: str
    party_type: str
    code: str
    name: str
    credit_limit: Decimal
    outstanding: Decimal
    overdue: Decimal
    available_credit: Decimal


@dataclass
class CreditCheckResult:
    within_limit: bool
    credit_limit: Decimal
    outstanding: Decimal
    overdue: Decimal
    pending_amount: Decimal
    projected_outstanding: Decimal
    available_credit: Decimal
    utilization_pct: Decimal
    message: Optional[str] = None


def parse_party_type(value) -> PartyType:
    try:
        return PartyType(getattr(value, "value", value))
    except ValueError:
        raise ValidationError("Unknown party type", {"party_type": str(value)})


async def lock_party(gw: TenantGateway, party_id, party_type: Optional[PartyType] = None) -> Party:
    party = await gw.get(Party, party_id, lock=True, label="Party")
    if party_type is not None and party.party_type != party_type.value:
        raise NotFoundError(party_type.value.title(), party_id)
    return party


def _adjust_outstanding(party: Party, delta: Decimal) -> None:
    new_value = money(to_decimal(party.current_outstanding) + delta)
    if new_value < ZERO:
        logger.error(
            "party_balance_underflow",
            party_id=str(party.id),
            outstanding=str(party.current_outstanding),
            delta=str(delta),
        )
        raise InvariantViolationError(
            f"Outstanding balance of {party.code} cannot go below zero",
            {"party_id": str(party.id), "outstanding": str(party.current_outstanding), "delta": str(delta)},
        )
    party.current_outstanding = new_value


async def overdue_total(gw: TenantGateway, party_id: uuid.UUID, as_of: Optional[date] = None) -> Decimal:
    as_of = as_of or date.today()
    total = await gw.scalar(
        select(
            func.coalesce(
                func.sum(PartyObligation.amount - PartyObligation.settled_amount), 0
            )
        ).where(
            PartyObligation.party_id == party_id,
            PartyObligation.status == ObligationStatus.OPEN.value,
            PartyObligation.due_date < as_of,
        )
    )
    return money(total)


async def unsettled_total(gw: TenantGateway, party_id: uuid.UUID) -> Decimal:
    total = await gw.scalar(
        select(
            func.coalesce(
                func.sum(PartyObligation.amount - PartyObligation.settled_amount), 0
            )
        ).where(
            PartyObligation.party_id == party_id,
            PartyObligation.status == ObligationStatus.OPEN.value,
        )
    )
    return money(total)


async def refresh_overdue(gw: TenantGateway, party: Party, as_of: Optional[date] = None) -> Decimal:
    await gw.flush()
    party.overdue_amount = await overdue_total(gw, party.id, as_of)
    return party.overdue_amount


async def find_obligation(
    gw: TenantGateway, source_type: str, source_id: uuid.UUID, lock: bool = True
) -> Optional[PartyObligation]:
    stmt = select(PartyObligation).where(
        PartyObligation.source_type == source_type,
        PartyObligation.source_id == source_id,
        PartyObligation.status != ObligationStatus.CANCELLED.value,
    )
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return await gw.first(stmt)


async def open_obligation(
    gw: TenantGateway,
    party: Party,
    source_type: str,
    source_id: uuid.UUID,
    amount,
    due_date: date,
    source_number: Optional[str] = None,
) -> Optional[PartyObligation]:
    """Record what ``party`` owes for a source document. Zero amounts open nothing."""
    amount = money(amount)
    if amount < ZERO:
        raise InvariantViolationError("Obligation amount cannot be negative", {"amount": str(amount)})
    if amount == ZERO:
        return None

    obligation = PartyObligation(
        party_id=party.id,
        source_type=source_type,
        source_id=source_id,
        source_number=source_number,
        amount=amount,
        settled_amount=ZERO,
        due_date=due_date,
        status=ObligationStatus.OPEN.value,
    )
    gw.add(obligation)
    _adjust_outstanding(party, amount)
    await refresh_overdue(gw, party)

    logger.info(
        "obligation_opened",
        party_id=str(party.id),
        source_type=source_type,
        source_id=str(source_id),
        amount=str(amount),
        outstanding=str(party.current_outstanding),
    )
    return obligation


async def reverse_obligation(
    gw: TenantGateway, source_type: str, source_id: uuid.UUID
) -> Optional[PartyObligation]:
    """Cancel the obligation of a source document, releasing its unsettled remainder."""
    obligation = await find_obligation(gw, source_type, source_id)
    if obligation is None:
        return None

    party = await lock_party(gw, obligation.party_id)
    released = to_decimal(obligation.amount) - to_decimal(obligation.settled_amount)
    if obligation.status == ObligationStatus.OPEN.value:
        _adjust_outstanding(party, -released)
    obligation.status = ObligationStatus.CANCELLED.value
    obligation.closed_at = utcnow()
    await refresh_overdue(gw, party)

    logger.info(
        "obligation_reversed",
        party_id=str(party.id),
        source_type=source_type,
        source_id=str(source_id),
        released=str(released),
        outstanding=str(party.current_outstanding),
    )
    return obligation


async def apply_payment(gw: TenantGateway, obligation: PartyObligation, amount) -> Party:
    amount = money(amount)
    if amount <= ZERO:
        raise ValidationError("Payment amount must be positive", {"amount": str(amount)})
    if obligation.status != ObligationStatus.OPEN.value:
        raise InvariantViolationError(
            "Only open obligations can be paid", {"obligation_id": str(obligation.id)}
        )
    remaining = to_decimal(obligation.amount) - to_decimal(obligation.settled_amount)
    if amount > remaining:
        raise InvariantViolationError(
            f"Payment {amount} exceeds the remaining balance {remaining}",
            {"amount": str(amount), "remaining": str(remaining)},
        )

    party = await lock_party(gw, obligation.party_id)
    obligation.settled_amount = money(to_decimal(obligation.settled_amount) + amount)
    if obligation.settled_amount >= obligation.amount:
        obligation.status = ObligationStatus.SETTLED.value
        obligation.closed_at = utcnow()
    _adjust_outstanding(party, -amount)
    await refresh_overdue(gw, party)

    logger.info(
        "obligation_payment_applied",
        party_id=str(party.id),
        obligation_id=str(obligation.id),
        amount=str(amount),
        outstanding=str(party.current_outstanding),
    )
    return party


async def reverse_payment(gw: TenantGateway, obligation: PartyObligation, amount) -> Party:
    amount = money(amount)
    if amount > to_decimal(obligation.settled_amount):
        raise InvariantViolationError(
            "Cannot unsettle more than was settled",
            {"amount": str(amount), "settled": str(obligation.settled_amount)},
        )

    party = await lock_party(gw, obligation.party_id)
    obligation.settled_amount = money(to_decimal(obligation.settled_amount) - amount)
    if obligation.status == ObligationStatus.SETTLED.value:
        obligation.status = ObligationStatus.OPEN.value
        obligation.closed_at = None
    if obligation.status == ObligationStatus.OPEN.value:
        _adjust_outstanding(party, amount)
    await refresh_overdue(gw, party)

    logger.info(
        "obligation_payment_reversed",
        party_id=str(party.id),
        obligation_id=str(obligation.id),
        amount=str(amount),
        outstanding=str(party.current_outstanding),
    )
    return party


def check_credit(party: Party, pending_amount=ZERO) -> CreditCheckResult:
    """Would ``pending_amount`` more keep the party within its credit limit?"""
    credit_limit = money(party.credit_limit)
    outstanding = money(party.current_outstanding)
    pending = money(pending_amount)
    projected = outstanding + pending
    within = projected <= credit_limit
    utilization = money(outstanding / credit_limit * HUNDRED) if credit_limit > ZERO else ZERO
    return CreditCheckResult(
        within_limit=within,
        credit_limit=credit_limit,
        outstanding=outstanding,
        overdue=money(party.overdue_amount),
        pending_amount=pending,
        projected_outstanding=projected,
        available_credit=credit_limit - outstanding,
        utilization_pct=utilization,
        message=None if within else (
            f"Outstanding {projected} would exceed the credit limit {credit_limit}"
        ),
    )


async def get_party_balance(
    session: AsyncSession,
    ctx: TenantContext,
    party_type,
    party_id,
    as_of: Optional[date] = None,
) -> PartyBalance:
    gw = TenantGateway(session, ctx)
    party_type = parse_party_type(party_type)
    party = await gw.get(Party, party_id, label=party_type.value.title())
    if party.party_type != party_type.value:
        raise NotFoundError(party_type.value.title(), party_id)

    outstanding = money(party.current_outstanding)
    credit_limit = money(party.credit_limit)
    return PartyBalance(
        party_id=str(party.id),
        party_type=party.party_type,
        code=party.code,
        name=party.name,
        credit_limit=credit_limit,
        outstanding=outstanding,
        overdue=await overdue_total(gw, party.id, as_of),
        available_credit=credit_limit - outstanding,
    )
