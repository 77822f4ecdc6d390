"""Central model registry: import all models so Alembic autodiscover works."""

from docflow.database import Base  # noqa: F401

from docflow.models.tenant import Tenant, Company  # noqa: F401
from docflow.models.party import Party  # noqa: F401
from docflow.models.sales_order import SalesOrder, SalesOrderLine  # noqa: F401
from docflow.models.delivery import Delivery, DeliveryLine  # noqa: F401
from docflow.models.purchase_order import PurchaseOrder, PurchaseOrderLine  # noqa: F401
from docflow.models.goods_receipt import GoodsReceipt, GoodsReceiptLine  # noqa: F401
from docflow.models.purchase_invoice import PurchaseInvoice, PurchaseInvoiceLine  # noqa: F401
from docflow.models.ledger import PartyObligation, Payment  # noqa: F401
from docflow.models.document_sequence import DocumentSequence  # noqa: F401
from docflow.models.tolerance import DeliveryTolerance  # noqa: F401
from docflow.models.audit_log import AuditLog  # noqa: F401
