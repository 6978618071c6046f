"""initial inventory lifecycle schema

Revision ID: ds001
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the device stock schema from scratch:
- companies: tenant root
- inventory_items: serialized devices with lifecycle/payment status and an
  optimistic-lock version counter
- repair_entries, bank_payments, installment_payments, status_logs: per-item
  history lists
- change_records, return_records: append-only audit documents
- daily_stock_sessions: one row per (company, business_date)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'ds001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    # ============================================================================
    # companies: tenant root
    # ============================================================================
    op.create_table(
        'companies',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_companies'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_companies_code', 'companies', ['code'], unique=True)
    op.create_index('ix_companies_is_active', 'companies', ['is_active'])

    # ============================================================================
    # inventory_items: one row per serialized device
    # ============================================================================
    op.create_table(
        'inventory_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('serial_number', sa.String(length=128), nullable=False),
        sa.Column('device_type', sa.String(length=32), nullable=False),
        sa.Column('brand', sa.String(length=128), nullable=False),
        sa.Column('model_name', sa.String(length=128), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('color', sa.String(length=64), nullable=False),
        sa.Column('condition', sa.String(length=64), nullable=False),
        sa.Column('specifications', sa.JSON(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('purchase_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('selling_price_cents', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('repair_status', sa.String(length=16), nullable=True),
        sa.Column('payment_status', sa.String(length=16), nullable=False),
        sa.Column('total_amount_paid_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_repair_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('trusted_collector', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('collected_by', sa.JSON(), nullable=True),
        sa.Column('customer_details', sa.JSON(), nullable=True),
        sa.Column('sales_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'],
                                name='fk_inventory_items_company_id_companies'),
        sa.PrimaryKeyConstraint('id', name='pk_inventory_items'),
        sa.UniqueConstraint('company_id', 'serial_number', name='uq_inventory_items_company_serial'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_items_company_id', 'inventory_items', ['company_id'])
    op.create_index('ix_inventory_items_device_type', 'inventory_items', ['device_type'])
    op.create_index('ix_inventory_items_company_status', 'inventory_items', ['company_id', 'status'])

    # ============================================================================
    # per-item history lists
    # ============================================================================
    op.create_table(
        'repair_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('technician_name', sa.String(length=128), nullable=False),
        sa.Column('assigned_by_id', sa.Integer(), nullable=True),
        sa.Column('assigned_by_name', sa.String(length=128), nullable=False),
        sa.Column('repair_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id'],
                                name='fk_repair_entries_item_id_inventory_items'),
        sa.PrimaryKeyConstraint('id', name='pk_repair_entries'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_repair_entries_item_id', 'repair_entries', ['item_id'])

    op.create_table(
        'bank_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('bank_name', sa.String(length=128), nullable=True),
        sa.Column('account_number', sa.String(length=64), nullable=True),
        sa.Column('date', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id'],
                                name='fk_bank_payments_item_id_inventory_items'),
        sa.PrimaryKeyConstraint('id', name='pk_bank_payments'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_bank_payments_item_id', 'bank_payments', ['item_id'])

    op.create_table(
        'installment_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('amount_paid_cents', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=True),
        sa.Column('bank_name', sa.String(length=128), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('date', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id'],
                                name='fk_installment_payments_item_id_inventory_items'),
        sa.PrimaryKeyConstraint('id', name='pk_installment_payments'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_installment_payments_item_id', 'installment_payments', ['item_id'])

    op.create_table(
        'status_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('changed_by_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id'],
                                name='fk_status_logs_item_id_inventory_items'),
        sa.PrimaryKeyConstraint('id', name='pk_status_logs'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_status_logs_item_id', 'status_logs', ['item_id'])

    # ============================================================================
    # append-only audit documents
    # ============================================================================
    op.create_table(
        'change_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('field', sa.String(length=64), nullable=False),
        sa.Column('old_value', sa.JSON(), nullable=True),
        sa.Column('new_value', sa.JSON(), nullable=True),
        sa.Column('changed_by_id', sa.Integer(), nullable=False),
        sa.Column('changed_by_name', sa.String(length=128), nullable=False),
        sa.Column('changed_by_email', sa.String(length=255), nullable=True),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id'],
                                name='fk_change_records_item_id_inventory_items'),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'],
                                name='fk_change_records_company_id_companies'),
        sa.PrimaryKeyConstraint('id', name='pk_change_records'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_change_records_item_id', 'change_records', ['item_id'])
    op.create_index('ix_change_records_company_id', 'change_records', ['company_id'])
    op.create_index('ix_change_records_item_changed', 'change_records', ['item_id', 'changed_at'])

    op.create_table(
        'return_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('refund_amount_cents', sa.Integer(), nullable=False),
        sa.Column('refund_type', sa.String(length=16), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('return_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('processed_by_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id'],
                                name='fk_return_records_item_id_inventory_items'),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'],
                                name='fk_return_records_company_id_companies'),
        sa.PrimaryKeyConstraint('id', name='pk_return_records'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_return_records_item_id', 'return_records', ['item_id'])
    op.create_index('ix_return_records_company_id', 'return_records', ['company_id'])
    op.create_index('ix_return_records_company_date', 'return_records', ['company_id', 'return_date'])

    # ============================================================================
    # daily_stock_sessions: one per company-day, frozen once closed
    # ============================================================================
    op.create_table(
        'daily_stock_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('opening_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('closing_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('opened_by_id', sa.Integer(), nullable=True),
        sa.Column('closed_by_id', sa.Integer(), nullable=True),
        sa.Column('opening_total', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('opening_available', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('opening_in_repair', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('opening_reserved', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('opening_damaged', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('closing_total', sa.Integer(), nullable=True),
        sa.Column('closing_available', sa.Integer(), nullable=True),
        sa.Column('closing_in_repair', sa.Integer(), nullable=True),
        sa.Column('closing_reserved', sa.Integer(), nullable=True),
        sa.Column('closing_damaged', sa.Integer(), nullable=True),
        sa.Column('sales', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('repairs_sent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('repairs_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('returns', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('new_additions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cash_flow_sales_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cash_flow_repairs_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cash_flow_total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discrepancies', sa.JSON(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'],
                                name='fk_daily_stock_sessions_company_id_companies'),
        sa.PrimaryKeyConstraint('id', name='pk_daily_stock_sessions'),
        sa.UniqueConstraint('company_id', 'business_date', name='uq_daily_stock_sessions_company_date'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_daily_stock_sessions_company_id', 'daily_stock_sessions', ['company_id'])
    op.create_index('ix_daily_stock_sessions_business_date', 'daily_stock_sessions', ['business_date'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('daily_stock_sessions')
    op.drop_table('return_records')
    op.drop_table('change_records')
    op.drop_table('status_logs')
    op.drop_table('installment_payments')
    op.drop_table('bank_payments')
    op.drop_table('repair_entries')
    op.drop_table('inventory_items')
    op.drop_table('companies')
