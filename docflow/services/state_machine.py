"""
Document lifecycles.

Each document type has one status enum and one entry in ``TRANSITIONS``
mapping a status to the statuses it may move to. Anything not listed is
refused with InvalidTransitionError before any side effect runs, so the
document is left untouched.
"""

from typing import Awaitable, Callable, Optional

import structlog

from docflow.errors import InvalidTransitionError
from docflow.models.enums import (
    DeliveryStatus,
    DocumentType,
    GoodsReceiptStatus,
    PurchaseInvoiceStatus,
    PurchaseOrderStatus,
    SalesOrderStatus,
)

logger = structlog.get_logger()

SO = SalesOrderStatus
DL = DeliveryStatus
PO = PurchaseOrderStatus
GR = GoodsReceiptStatus
PI = PurchaseInvoiceStatus

TRANSITIONS: dict[DocumentType, dict] = {
    DocumentType.SALES_ORDER: {
        SO.DRAFT: {SO.PENDING, SO.CANCELLED},
        SO.PENDING: {SO.APPROVED, SO.CANCELLED},
        SO.APPROVED: {SO.PROCESSING, SO.CANCELLED},
        SO.PROCESSING: {SO.SHIPPED, SO.CANCELLED},
        SO.SHIPPED: {SO.DELIVERED, SO.CANCELLED},
        SO.DELIVERED: {SO.COMPLETED, SO.CANCELLED},
        SO.COMPLETED: set(),
        SO.CANCELLED: set(),
    },
    DocumentType.DELIVERY: {
        DL.PREPARED: {DL.IN_TRANSIT, DL.CANCELLED},
        DL.IN_TRANSIT: {DL.DELIVERED, DL.CANCELLED},
        DL.DELIVERED: {DL.CONFIRMED, DL.CANCELLED},
        DL.CONFIRMED: set(),
        DL.CANCELLED: set(),
    },
    DocumentType.PURCHASE_ORDER: {
        PO.DRAFT: {PO.CONFIRMED, PO.CANCELLED},
        PO.CONFIRMED: {PO.COMPLETED, PO.CANCELLED},
        PO.COMPLETED: set(),
        PO.CANCELLED: set(),
    },
    DocumentType.GOODS_RECEIPT: {
        GR.DRAFT: {GR.ACCEPTED, GR.CANCELLED},
        GR.ACCEPTED: {GR.CANCELLED},
        GR.CANCELLED: set(),
    },
    DocumentType.PURCHASE_INVOICE: {
        PI.DRAFT: {PI.SUBMITTED},
        PI.SUBMITTED: {PI.APPROVED, PI.REJECTED},
        PI.APPROVED: {PI.PAID, PI.CANCELLED},
        PI.REJECTED: set(),
        PI.PAID: set(),
        PI.CANCELLED: set(),
    },
}

STATUS_ENUMS = {
    DocumentType.SALES_ORDER: SO,
    DocumentType.DELIVERY: DL,
    DocumentType.PURCHASE_ORDER: PO,
    DocumentType.GOODS_RECEIPT: GR,
    DocumentType.PURCHASE_INVOICE: PI,
}

INITIAL_STATUS = {
    DocumentType.SALES_ORDER: SO.DRAFT,
    DocumentType.DELIVERY: DL.PREPARED,
    DocumentType.PURCHASE_ORDER: PO.DRAFT,
    DocumentType.GOODS_RECEIPT: GR.DRAFT,
    DocumentType.PURCHASE_INVOICE: PI.DRAFT,
}

TransitionHook = Callable[..., Awaitable[None]]


def parse_status(document_type: DocumentType, value: str):
    """Map a raw status string to the document's enum; unknown values are refused."""
    enum_cls = STATUS_ENUMS[document_type]
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidTransitionError(document_type.value, "UNKNOWN", str(value))


def allowed_targets(document_type: DocumentType, current) -> set:
    return set(TRANSITIONS[document_type][STATUS_ENUMS[document_type](current)])


def is_terminal(document_type: DocumentType, status) -> bool:
    return not allowed_targets(document_type, status)


def can_transition(document_type: DocumentType, current, target) -> bool:
    return STATUS_ENUMS[document_type](target) in allowed_targets(document_type, current)


def assert_transition(document_type: DocumentType, current, target) -> None:
    current_value = getattr(current, "value", current)
    target_value = getattr(target, "value", target)
    if not can_transition(document_type, current_value, target_value):
        logger.info(
            "transition_refused",
            document_type=document_type.value,
            current=current_value,
            requested=target_value,
        )
        raise InvalidTransitionError(document_type.value, current_value, target_value)


def assert_editable(document_type: DocumentType, document, operation: str) -> None:
    """Only documents still in their initial status may be edited or deleted."""
    if document.status != INITIAL_STATUS[document_type].value:
        raise InvalidTransitionError(document_type.value, document.status, operation)


async def run_transition(
    gateway,
    document,
    target,
    payload: Optional[dict] = None,
    hooks: Optional[dict] = None,
):
    """Validate ``document.status -> target``, run the target's hook, then set the status.

    Hooks perform the ledger side effects of entering a status. They run in the
    caller's transaction; an exception from a hook aborts it.
    """
    document_type = type(document).document_type
    target = parse_status(document_type, getattr(target, "value", target))
    previous = document.status
    assert_transition(document_type, previous, target)

    hook = (hooks or {}).get(target)
    if hook is not None:
        await hook(gateway, document, payload or {})

    document.status = target.value
    await gateway.flush()

    logger.info(
        "document_transitioned",
        document_type=document_type.value,
        document_id=str(document.id),
        number=document.number,
        from_status=previous,
        to_status=target.value,
    )
    return document
