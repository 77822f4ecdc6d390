"""enable_rls_policies

Revision ID: 0002_enable_rls_policies
Revises: 0001_initial_schema
Create Date: 2026-10-18 09:05:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0002_enable_rls_policies'
down_revision: Union[str, None] = '0001_initial_schema'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Tables with tenant_id that get RLS
RLS_TABLES = [
    "companies", "parties",
    "sales_orders", "sales_order_lines", "deliveries", "delivery_lines",
    "purchase_orders", "purchase_order_lines", "goods_receipts", "goods_receipt_lines",
    "purchase_invoices", "purchase_invoice_lines",
    "party_obligations", "payments", "document_sequences", "delivery_tolerances", "audit_logs",
]


def upgrade() -> None:
    # app.current_tenant_id is bound per transaction by docflow.database.set_tenant_context
    for table in RLS_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY")
        op.execute(
            f"CREATE POLICY tenant_isolation ON {table} "
            f"USING (tenant_id = current_setting('app.current_tenant_id', true)::uuid) "
            f"WITH CHECK (tenant_id = current_setting('app.current_tenant_id', true)::uuid)"
        )

    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_sales_orders_company_status "
        "ON sales_orders(tenant_id, company_id, status, created_at DESC)"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_purchase_invoices_company_status "
        "ON purchase_invoices(tenant_id, company_id, status, due_date)"
    )
    # Partial index for the overdue refresh job
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_obligations_open_due "
        "ON party_obligations(party_id, due_date) WHERE status = 'OPEN'"
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_obligations_open_due")
    op.execute("DROP INDEX IF EXISTS idx_purchase_invoices_company_status")
    op.execute("DROP INDEX IF EXISTS idx_sales_orders_company_status")
    for table in reversed(RLS_TABLES):
        op.execute(f"DROP POLICY IF EXISTS tenant_isolation ON {table}")
        op.execute(f"ALTER TABLE {table} NO FORCE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")
