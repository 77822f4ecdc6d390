"""
Delivery tolerances.

A tolerance widens the ordered quantity of a line in both directions:
``over`` caps how much may be received or delivered, ``under`` lets a line
count as complete before the full quantity arrived. The rule for a line is
the active PRODUCT rule for its product, else the active COMPANY rule, else
no tolerance at all.
"""

import uuid
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, ROUND_UP, Decimal
from typing import Iterable, Mapping, Optional

from sqlalchemy import and_, or_, select
import structlog

from docflow.gateway import TenantGateway
from docflow.models.enums import ToleranceLevel
from docflow.models.tolerance import DeliveryTolerance
from docflow.money import HUNDRED, ZERO, qty, to_decimal
from docflow.schemas.tolerance import DeliveryToleranceSet
from docflow.services.audit_service import stage_audit
from docflow.services.company_service import load_company
from docflow.services.document_support import parse_payload
from docflow.tenancy import parse_uuid

logger = structlog.get_logger()

DEFAULT = "DEFAULT"


@dataclass(frozen=True)
class ToleranceRule:
    under_pct: Decimal = ZERO
    over_pct: Decimal = ZERO
    unlimited_over: bool = False
    resolved_from: str = DEFAULT

    @classmethod
    def from_row(cls, row: DeliveryTolerance) -> "ToleranceRule":
        return cls(
            under_pct=to_decimal(row.under_tolerance_pct),
            over_pct=to_decimal(row.over_tolerance_pct),
            unlimited_over=row.unlimited_over,
            resolved_from=row.level,
        )

    def max_quantity(self, ordered) -> Optional[Decimal]:
        """Most that may be received or delivered against ``ordered``; None when unlimited."""
        if self.unlimited_over:
            return None
        return qty(to_decimal(ordered) * (HUNDRED + self.over_pct) / HUNDRED, ROUND_DOWN)

    def complete_at(self, ordered) -> Decimal:
        """Quantity from which a line counts as fully received or delivered."""
        return qty(to_decimal(ordered) * (HUNDRED - self.under_pct) / HUNDRED, ROUND_UP)


@dataclass(frozen=True)
class ToleranceRules:
    """Resolved rules for the products of one document."""

    company: ToleranceRule = field(default_factory=ToleranceRule)
    products: Mapping[uuid.UUID, ToleranceRule] = field(default_factory=dict)

    def for_product(self, product_id) -> ToleranceRule:
        return self.products.get(product_id, self.company)


NO_TOLERANCE = ToleranceRules()


async def resolve_tolerances(gw: TenantGateway, product_ids: Iterable) -> ToleranceRules:
    product_ids = {pid for pid in product_ids if pid is not None}
    criteria = [DeliveryTolerance.level == ToleranceLevel.COMPANY.value]
    if product_ids:
        criteria.append(
            and_(
                DeliveryTolerance.level == ToleranceLevel.PRODUCT.value,
                DeliveryTolerance.product_id.in_(sorted(product_ids, key=str)),
            )
        )
    rows = await gw.scalars(
        select(DeliveryTolerance).where(DeliveryTolerance.is_active.is_(True), or_(*criteria))
    )

    company = ToleranceRule()
    products = {}
    for row in rows:
        if row.level == ToleranceLevel.PRODUCT.value:
            products[row.product_id] = ToleranceRule.from_row(row)
        else:
            company = ToleranceRule.from_row(row)
    return ToleranceRules(company=company, products=products)


async def get_effective_tolerance(gw: TenantGateway, product_id=None) -> ToleranceRule:
    pid = parse_uuid(product_id)
    rules = await resolve_tolerances(gw, [pid])
    return rules.for_product(pid)


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


async def _active_rule(gw: TenantGateway, level: ToleranceLevel, product_id) -> Optional[DeliveryTolerance]:
    stmt = select(DeliveryTolerance).where(
        DeliveryTolerance.level == level.value, DeliveryTolerance.is_active.is_(True)
    )
    if product_id is None:
        stmt = stmt.where(DeliveryTolerance.product_id.is_(None))
    else:
        stmt = stmt.where(DeliveryTolerance.product_id == product_id)
    return await gw.first(stmt.with_for_update())


async def set_tolerance(gw: TenantGateway, payload) -> DeliveryTolerance:
    """Create or replace the active rule for a company or product."""
    data: DeliveryToleranceSet = parse_payload(DeliveryToleranceSet, payload)
    await load_company(gw)

    rule = await _active_rule(gw, data.level, data.product_id)
    before = rule.snapshot() if rule is not None else None
    if rule is None:
        rule = DeliveryTolerance(level=data.level.value, product_id=data.product_id)
        gw.add(rule)
    rule.under_tolerance_pct = data.under_tolerance_pct
    rule.over_tolerance_pct = data.over_tolerance_pct
    rule.unlimited_over = data.unlimited_over
    rule.is_active = data.is_active
    rule.notes = data.notes
    await gw.flush()

    stage_audit(
        gw.session, gw.ctx, "DELIVERY_TOLERANCE_SET", "DELIVERY_TOLERANCE", rule.id,
        before_state=before, after_state=rule.snapshot(),
    )
    logger.info(
        "delivery_tolerance_set",
        tolerance_id=str(rule.id),
        level=rule.level,
        product_id=str(rule.product_id) if rule.product_id else None,
    )
    return rule


async def delete_tolerance(gw: TenantGateway, tolerance_id) -> None:
    rule = await gw.get(DeliveryTolerance, tolerance_id, lock=True, label="Delivery tolerance")
    before = rule.snapshot()
    await gw.delete(rule)
    await gw.flush()
    stage_audit(
        gw.session, gw.ctx, "DELIVERY_TOLERANCE_DELETED", "DELIVERY_TOLERANCE", rule.id,
        before_state=before,
    )
    logger.info("delivery_tolerance_deleted", tolerance_id=str(rule.id))


async def list_tolerances(gw: TenantGateway, include_inactive: bool = False) -> list[DeliveryTolerance]:
    stmt = select(DeliveryTolerance).order_by(DeliveryTolerance.level, DeliveryTolerance.created_at)
    if not include_inactive:
        stmt = stmt.where(DeliveryTolerance.is_active.is_(True))
    return list(await gw.scalars(stmt))
