from enum import Enum


class DocumentType(str, Enum):
    SALES_ORDER = "SALES_ORDER"
    DELIVERY = "DELIVERY"
    PURCHASE_ORDER = "PURCHASE_ORDER"
    GOODS_RECEIPT = "GOODS_RECEIPT"
    PURCHASE_INVOICE = "PURCHASE_INVOICE"
    PAYMENT = "PAYMENT"


class SalesOrderStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class DeliveryStatus(str, Enum):
    PREPARED = "PREPARED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class PurchaseOrderStatus(str, Enum):
    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class GoodsReceiptStatus(str, Enum):
    DRAFT = "DRAFT"
    ACCEPTED = "ACCEPTED"
    CANCELLED = "CANCELLED"


class PurchaseInvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class InvoicePaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


class CoverageStatus(str, Enum):
    """How much of a purchase order has been invoiced (or received)."""

    NONE = "NONE"
    PARTIAL = "PARTIAL"
    FULL = "FULL"


class InvoiceControlPolicy(str, Enum):
    ORDERED = "ORDERED"
    RECEIVED = "RECEIVED"


class CreditPolicy(str, Enum):
    ADVISORY = "ADVISORY"
    ENFORCE = "ENFORCE"
    DISABLED = "DISABLED"


class ToleranceLevel(str, Enum):
    COMPANY = "COMPANY"
    PRODUCT = "PRODUCT"


class PartyType(str, Enum):
    CUSTOMER = "CUSTOMER"
    SUPPLIER = "SUPPLIER"


class ObligationStatus(str, Enum):
    OPEN = "OPEN"
    SETTLED = "SETTLED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    RECORDED = "RECORDED"
    VOID = "VOID"


def sql_in(enum_cls) -> str:
    """Render enum values for a CHECK ... IN (...) constraint."""
    return ", ".join(f"'{member.value}'" for member in enum_cls)
