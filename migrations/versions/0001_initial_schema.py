"""initial_schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(18, 2)
QUANTITY = sa.Numeric(18, 3)
RATE = sa.Numeric(7, 3)
JSONB = postgresql.JSONB(astext_type=sa.Text())


def _scope_columns():
    return [
        sa.Column('tenant_id', sa.UUID(), nullable=False),
        sa.Column('company_id', sa.UUID(), nullable=False),
    ]


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def _document_columns():
    return [
        sa.Column('id', sa.UUID(), nullable=False),
        *_scope_columns(),
        sa.Column('number', sa.String(length=50), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('subtotal', MONEY, nullable=False),
        sa.Column('discount_amount', MONEY, nullable=False),
        sa.Column('tax_rate', RATE, nullable=False),
        sa.Column('tax_amount', MONEY, nullable=False),
        sa.Column('shipping_cost', MONEY, nullable=False),
        sa.Column('total_amount', MONEY, nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.UUID(), nullable=True),
        sa.Column('approved_by', sa.UUID(), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_by', sa.UUID(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    ]


def _document_constraints(table, statuses):
    return [
        sa.UniqueConstraint('tenant_id', 'company_id', 'number', name=f'uq_{table}_number'),
        sa.CheckConstraint(
            'status IN (' + ', '.join(f"'{s}'" for s in statuses) + ')',
            name=f'chk_{table}_status',
        ),
    ]


def _line_columns():
    return [
        sa.Column('id', sa.UUID(), nullable=False),
        *_scope_columns(),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.UUID(), nullable=False),
        sa.Column('unit_id', sa.UUID(), nullable=True),
        sa.Column('batch_id', sa.UUID(), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('quantity', QUANTITY, nullable=False),
        sa.Column('unit_price', MONEY, nullable=False),
        sa.Column('discount_amount', MONEY, nullable=False),
        sa.Column('tax_amount', MONEY, nullable=False),
        sa.Column('line_total', MONEY, nullable=False),
        sa.PrimaryKeyConstraint('id'),
    ]


def _scope_indexes(table):
    op.create_index(f'ix_{table}_tenant_id', table, ['tenant_id'], unique=False)
    op.create_index(f'ix_{table}_company_id', table, ['company_id'], unique=False)


def upgrade() -> None:
    # 1. tenants and companies
    op.create_table('tenants',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('slug', sa.String(length=100), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('slug')
    )

    op.create_table('companies',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('tenant_id', sa.UUID(), nullable=False),
    sa.Column('code', sa.String(length=50), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('numbering', JSONB, nullable=True),
    sa.Column('invoice_control_policy', sa.String(length=20), nullable=False),
    sa.Column('invoice_tolerance_pct', RATE, nullable=False),
    sa.Column('credit_policy', sa.String(length=20), nullable=False),
    sa.Column('default_tax_rate', RATE, nullable=True),
    *_timestamps(),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('tenant_id', 'code', name='uq_companies_code')
    )
    op.create_index('ix_companies_tenant_id', 'companies', ['tenant_id'], unique=False)

    # 2. parties
    op.create_table('parties',
    sa.Column('id', sa.UUID(), nullable=False),
    *_scope_columns(),
    sa.Column('party_type', sa.String(length=20), nullable=False),
    sa.Column('code', sa.String(length=50), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('email', sa.String(length=255), nullable=True),
    sa.Column('phone', sa.String(length=50), nullable=True),
    sa.Column('address', sa.Text(), nullable=True),
    sa.Column('tax_id', sa.String(length=50), nullable=True),
    sa.Column('credit_limit', MONEY, nullable=False),
    sa.Column('current_outstanding', MONEY, nullable=False),
    sa.Column('overdue_amount', MONEY, nullable=False),
    sa.Column('payment_term_days', sa.Integer(), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    *_timestamps(),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('tenant_id', 'company_id', 'party_type', 'code', name='uq_parties_code'),
    sa.CheckConstraint("party_type IN ('CUSTOMER', 'SUPPLIER')", name='chk_parties_type'),
    sa.CheckConstraint('credit_limit >= 0', name='chk_parties_credit_limit'),
    sa.CheckConstraint('current_outstanding >= 0', name='chk_parties_outstanding'),
    sa.CheckConstraint('overdue_amount >= 0', name='chk_parties_overdue')
    )
    _scope_indexes('parties')

    # 3. sales side
    op.create_table('sales_orders',
    *_document_columns(),
    sa.Column('customer_id', sa.UUID(), nullable=False),
    sa.Column('order_date', sa.Date(), nullable=False),
    sa.Column('expected_delivery_date', sa.Date(), nullable=True),
    sa.Column('delivery_address', sa.Text(), nullable=True),
    sa.Column('submitted_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['customer_id'], ['parties.id'], ),
    *_document_constraints('sales_orders', [
        'DRAFT', 'PENDING', 'APPROVED', 'PROCESSING', 'SHIPPED', 'DELIVERED', 'COMPLETED', 'CANCELLED',
    ])
    )
    _scope_indexes('sales_orders')
    op.create_index('ix_sales_orders_customer_id', 'sales_orders', ['customer_id'], unique=False)

    op.create_table('sales_order_lines',
    *_line_columns(),
    sa.Column('sales_order_id', sa.UUID(), nullable=False),
    sa.Column('delivered_qty', QUANTITY, nullable=False),
    sa.ForeignKeyConstraint(['sales_order_id'], ['sales_orders.id'], ondelete='CASCADE')
    )
    _scope_indexes('sales_order_lines')
    op.create_index('ix_sales_order_lines_sales_order_id', 'sales_order_lines', ['sales_order_id'], unique=False)

    op.create_table('deliveries',
    *_document_columns(),
    sa.Column('sales_order_id', sa.UUID(), nullable=False),
    sa.Column('customer_id', sa.UUID(), nullable=False),
    sa.Column('delivery_date', sa.Date(), nullable=False),
    sa.Column('departed_at', sa.DateTime(), nullable=True),
    sa.Column('arrived_at', sa.DateTime(), nullable=True),
    sa.Column('received_by_name', sa.String(length=255), nullable=True),
    sa.Column('confirmed_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['sales_order_id'], ['sales_orders.id'], ),
    sa.ForeignKeyConstraint(['customer_id'], ['parties.id'], ),
    *_document_constraints('deliveries', ['PREPARED', 'IN_TRANSIT', 'DELIVERED', 'CONFIRMED', 'CANCELLED'])
    )
    _scope_indexes('deliveries')
    op.create_index('ix_deliveries_sales_order_id', 'deliveries', ['sales_order_id'], unique=False)
    op.create_index('ix_deliveries_customer_id', 'deliveries', ['customer_id'], unique=False)

    op.create_table('delivery_lines',
    *_line_columns(),
    sa.Column('delivery_id', sa.UUID(), nullable=False),
    sa.Column('sales_order_line_id', sa.UUID(), nullable=False),
    sa.ForeignKeyConstraint(['delivery_id'], ['deliveries.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['sales_order_line_id'], ['sales_order_lines.id'], )
    )
    _scope_indexes('delivery_lines')
    op.create_index('ix_delivery_lines_delivery_id', 'delivery_lines', ['delivery_id'], unique=False)

    # 4. purchasing side
    op.create_table('purchase_orders',
    *_document_columns(),
    sa.Column('supplier_id', sa.UUID(), nullable=False),
    sa.Column('order_date', sa.Date(), nullable=False),
    sa.Column('expected_date', sa.Date(), nullable=True),
    sa.Column('invoice_status', sa.String(length=20), nullable=False),
    sa.Column('receipt_status', sa.String(length=20), nullable=False),
    sa.ForeignKeyConstraint(['supplier_id'], ['parties.id'], ),
    *_document_constraints('purchase_orders', ['DRAFT', 'CONFIRMED', 'COMPLETED', 'CANCELLED'])
    )
    _scope_indexes('purchase_orders')
    op.create_index('ix_purchase_orders_supplier_id', 'purchase_orders', ['supplier_id'], unique=False)

    op.create_table('purchase_order_lines',
    *_line_columns(),
    sa.Column('purchase_order_id', sa.UUID(), nullable=False),
    sa.Column('received_qty', QUANTITY, nullable=False),
    sa.Column('invoiced_qty', QUANTITY, nullable=False),
    sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id'], ondelete='CASCADE')
    )
    _scope_indexes('purchase_order_lines')
    op.create_index('ix_purchase_order_lines_purchase_order_id', 'purchase_order_lines', ['purchase_order_id'], unique=False)

    op.create_table('goods_receipts',
    *_document_columns(),
    sa.Column('purchase_order_id', sa.UUID(), nullable=False),
    sa.Column('supplier_id', sa.UUID(), nullable=False),
    sa.Column('receipt_date', sa.Date(), nullable=False),
    sa.Column('supplier_delivery_note', sa.String(length=100), nullable=True),
    sa.Column('accepted_by', sa.UUID(), nullable=True),
    sa.Column('accepted_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id'], ),
    sa.ForeignKeyConstraint(['supplier_id'], ['parties.id'], ),
    *_document_constraints('goods_receipts', ['DRAFT', 'ACCEPTED', 'CANCELLED'])
    )
    _scope_indexes('goods_receipts')
    op.create_index('ix_goods_receipts_purchase_order_id', 'goods_receipts', ['purchase_order_id'], unique=False)
    op.create_index('ix_goods_receipts_supplier_id', 'goods_receipts', ['supplier_id'], unique=False)

    op.create_table('goods_receipt_lines',
    *_line_columns(),
    sa.Column('goods_receipt_id', sa.UUID(), nullable=False),
    sa.Column('purchase_order_line_id', sa.UUID(), nullable=False),
    sa.ForeignKeyConstraint(['goods_receipt_id'], ['goods_receipts.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['purchase_order_line_id'], ['purchase_order_lines.id'], )
    )
    _scope_indexes('goods_receipt_lines')
    op.create_index('ix_goods_receipt_lines_goods_receipt_id', 'goods_receipt_lines', ['goods_receipt_id'], unique=False)

    op.create_table('purchase_invoices',
    *_document_columns(),
    sa.Column('supplier_id', sa.UUID(), nullable=False),
    sa.Column('purchase_order_id', sa.UUID(), nullable=True),
    sa.Column('goods_receipt_id', sa.UUID(), nullable=True),
    sa.Column('supplier_invoice_number', sa.String(length=100), nullable=True),
    sa.Column('invoice_date', sa.Date(), nullable=False),
    sa.Column('due_date', sa.Date(), nullable=False),
    sa.Column('payment_term_days', sa.Integer(), nullable=False),
    sa.Column('handling_cost', MONEY, nullable=False),
    sa.Column('other_cost', MONEY, nullable=False),
    sa.Column('paid_amount', MONEY, nullable=False),
    sa.Column('remaining_amount', MONEY, nullable=False),
    sa.Column('payment_status', sa.String(length=20), nullable=False),
    sa.Column('submitted_by', sa.UUID(), nullable=True),
    sa.Column('submitted_at', sa.DateTime(), nullable=True),
    sa.Column('rejected_by', sa.UUID(), nullable=True),
    sa.Column('rejected_at', sa.DateTime(), nullable=True),
    sa.Column('rejection_reason', sa.Text(), nullable=True),
    sa.ForeignKeyConstraint(['supplier_id'], ['parties.id'], ),
    sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id'], ),
    sa.ForeignKeyConstraint(['goods_receipt_id'], ['goods_receipts.id'], ),
    *_document_constraints('purchase_invoices', ['DRAFT', 'SUBMITTED', 'APPROVED', 'REJECTED', 'PAID', 'CANCELLED']),
    sa.CheckConstraint(
        "payment_status IN ('UNPAID', 'PARTIAL', 'PAID', 'OVERDUE')",
        name='chk_purchase_invoices_payment_status',
    ),
    sa.CheckConstraint('due_date >= invoice_date', name='chk_purchase_invoices_due_date')
    )
    _scope_indexes('purchase_invoices')
    op.create_index('ix_purchase_invoices_supplier_id', 'purchase_invoices', ['supplier_id'], unique=False)
    op.create_index('ix_purchase_invoices_purchase_order_id', 'purchase_invoices', ['purchase_order_id'], unique=False)

    op.create_table('purchase_invoice_lines',
    *_line_columns(),
    sa.Column('invoice_id', sa.UUID(), nullable=False),
    sa.Column('purchase_order_line_id', sa.UUID(), nullable=True),
    sa.Column('goods_receipt_line_id', sa.UUID(), nullable=True),
    sa.ForeignKeyConstraint(['invoice_id'], ['purchase_invoices.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['purchase_order_line_id'], ['purchase_order_lines.id'], ),
    sa.ForeignKeyConstraint(['goods_receipt_line_id'], ['goods_receipt_lines.id'], )
    )
    _scope_indexes('purchase_invoice_lines')
    op.create_index('ix_purchase_invoice_lines_invoice_id', 'purchase_invoice_lines', ['invoice_id'], unique=False)

    # 5. balance ledger
    op.create_table('party_obligations',
    sa.Column('id', sa.UUID(), nullable=False),
    *_scope_columns(),
    sa.Column('party_id', sa.UUID(), nullable=False),
    sa.Column('source_type', sa.String(length=30), nullable=False),
    sa.Column('source_id', sa.UUID(), nullable=False),
    sa.Column('source_number', sa.String(length=50), nullable=True),
    sa.Column('amount', MONEY, nullable=False),
    sa.Column('settled_amount', MONEY, nullable=False),
    sa.Column('due_date', sa.Date(), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('closed_at', sa.DateTime(), nullable=True),
    *_timestamps(),
    sa.ForeignKeyConstraint(['party_id'], ['parties.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.CheckConstraint('amount > 0', name='chk_obligations_amount'),
    sa.CheckConstraint('settled_amount >= 0 AND settled_amount <= amount', name='chk_obligations_settled'),
    sa.CheckConstraint("status IN ('OPEN', 'SETTLED', 'CANCELLED')", name='chk_obligations_status')
    )
    _scope_indexes('party_obligations')
    op.create_index('ix_party_obligations_party_id', 'party_obligations', ['party_id'], unique=False)
    op.create_index('idx_obligations_source', 'party_obligations', ['source_type', 'source_id'], unique=False)

    op.create_table('payments',
    sa.Column('id', sa.UUID(), nullable=False),
    *_scope_columns(),
    sa.Column('number', sa.String(length=50), nullable=False),
    sa.Column('party_id', sa.UUID(), nullable=False),
    sa.Column('obligation_id', sa.UUID(), nullable=False),
    sa.Column('source_type', sa.String(length=30), nullable=False),
    sa.Column('source_id', sa.UUID(), nullable=False),
    sa.Column('amount', MONEY, nullable=False),
    sa.Column('payment_date', sa.Date(), nullable=False),
    sa.Column('method', sa.String(length=30), nullable=False),
    sa.Column('reference', sa.String(length=100), nullable=True),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('created_by', sa.UUID(), nullable=True),
    sa.Column('voided_by', sa.UUID(), nullable=True),
    sa.Column('voided_at', sa.DateTime(), nullable=True),
    sa.Column('void_reason', sa.Text(), nullable=True),
    *_timestamps(),
    sa.ForeignKeyConstraint(['party_id'], ['parties.id'], ),
    sa.ForeignKeyConstraint(['obligation_id'], ['party_obligations.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('tenant_id', 'company_id', 'number', name='uq_payments_number'),
    sa.CheckConstraint('amount > 0', name='chk_payments_amount'),
    sa.CheckConstraint("status IN ('RECORDED', 'VOID')", name='chk_payments_status')
    )
    _scope_indexes('payments')
    op.create_index('ix_payments_party_id', 'payments', ['party_id'], unique=False)
    op.create_index('ix_payments_obligation_id', 'payments', ['obligation_id'], unique=False)

    # 6. numbering and audit
    op.create_table('document_sequences',
    sa.Column('id', sa.UUID(), nullable=False),
    *_scope_columns(),
    sa.Column('document_type', sa.String(length=30), nullable=False),
    sa.Column('period', sa.String(length=10), nullable=False),
    sa.Column('last_value', sa.Integer(), nullable=False),
    *_timestamps(),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('tenant_id', 'company_id', 'document_type', 'period', name='uq_document_sequences_period')
    )
    _scope_indexes('document_sequences')

    op.create_table('delivery_tolerances',
    sa.Column('id', sa.UUID(), nullable=False),
    *_scope_columns(),
    sa.Column('level', sa.String(length=20), nullable=False),
    sa.Column('product_id', sa.UUID(), nullable=True),
    sa.Column('under_tolerance_pct', RATE, nullable=False),
    sa.Column('over_tolerance_pct', RATE, nullable=False),
    sa.Column('unlimited_over', sa.Boolean(), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('notes', sa.Text(), nullable=True),
    *_timestamps(),
    sa.PrimaryKeyConstraint('id'),
    sa.CheckConstraint("level IN ('COMPANY', 'PRODUCT')", name='chk_delivery_tolerances_level'),
    sa.CheckConstraint("(level = 'PRODUCT') = (product_id IS NOT NULL)", name='chk_delivery_tolerances_product'),
    sa.CheckConstraint('under_tolerance_pct >= 0 AND under_tolerance_pct <= 100', name='chk_delivery_tolerances_under'),
    sa.CheckConstraint('over_tolerance_pct >= 0', name='chk_delivery_tolerances_over')
    )
    _scope_indexes('delivery_tolerances')
    op.create_index('ix_delivery_tolerances_scope', 'delivery_tolerances', ['tenant_id', 'company_id', 'level', 'product_id'], unique=False)
    # At most one active rule per company and per product.
    op.create_index(
        'uq_delivery_tolerances_active', 'delivery_tolerances',
        ['tenant_id', 'company_id', 'level', sa.text("coalesce(product_id, '00000000-0000-0000-0000-000000000000'::uuid)")],
        unique=True, postgresql_where=sa.text('is_active'),
    )

    op.create_table('audit_logs',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('tenant_id', sa.UUID(), nullable=False),
    sa.Column('company_id', sa.UUID(), nullable=True),
    sa.Column('actor_id', sa.UUID(), nullable=True),
    sa.Column('action', sa.String(length=100), nullable=False),
    sa.Column('entity_type', sa.String(length=50), nullable=False),
    sa.Column('entity_id', sa.UUID(), nullable=False),
    sa.Column('before_state', JSONB, nullable=True),
    sa.Column('after_state', JSONB, nullable=True),
    sa.Column('changed_fields', JSONB, nullable=True),
    sa.Column('request_id', sa.String(length=64), nullable=True),
    sa.Column('occurred_at', sa.DateTime(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_audit_logs_tenant_id', 'audit_logs', ['tenant_id'], unique=False)
    op.create_index('idx_audit_entity', 'audit_logs', ['entity_type', 'entity_id'], unique=False)
    op.create_index('idx_audit_actor', 'audit_logs', ['actor_id'], unique=False)
    op.create_index('idx_audit_created', 'audit_logs', [sa.text('created_at DESC')], unique=False)


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('delivery_tolerances')
    op.drop_table('document_sequences')
    op.drop_table('payments')
    op.drop_table('party_obligations')
    op.drop_table('purchase_invoice_lines')
    op.drop_table('purchase_invoices')
    op.drop_table('goods_receipt_lines')
    op.drop_table('goods_receipts')
    op.drop_table('purchase_order_lines')
    op.drop_table('purchase_orders')
    op.drop_table('delivery_lines')
    op.drop_table('deliveries')
    op.drop_table('sales_order_lines')
    op.drop_table('sales_orders')
    op.drop_table('parties')
    op.drop_table('companies')
    op.drop_table('tenants')
