"""initial reconciliation schema

Revision ID: hf0001initial
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates the HydroFlow schema from scratch:
- driver_profiles / routes / customer_profiles / customer_special_prices
- products (stock buckets) / stock_movements / customer_bottle_wallets
- orders / order_items
- ledger_entries / driver_ledger_entries
- cash_handovers (one PENDING per driver) / expenses
- audit_events
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'hf0001initial'
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def _money(name, nullable=False):
    return sa.Column(name, sa.Numeric(precision=12, scale=2), nullable=nullable)


def upgrade():
    """
    Create all tables.

    Money is Numeric(12, 2). Rows mutated under contention carry version_id
    for optimistic locking. CHECK constraints back the non-negative counters.
    """

    # ============================================================================
    # People and routes
    # ============================================================================
    op.create_table(
        'driver_profiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _money('ledger_balance'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_driver_profiles_is_active', 'driver_profiles', ['is_active'])

    op.create_table(
        'routes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('default_driver_id', sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['default_driver_id'], ['driver_profiles.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_routes_default_driver_id', 'routes', ['default_driver_id'])

    # ============================================================================
    # products: stock buckets per product
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        _money('base_price'),
        sa.Column('is_returnable', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('stock_filled', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stock_empty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stock_damaged', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stock_reserved', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('stock_filled >= 0', name='ck_products_stock_filled'),
        sa.CheckConstraint('stock_empty >= 0', name='ck_products_stock_empty'),
        sa.CheckConstraint('stock_damaged >= 0', name='ck_products_stock_damaged'),
        sa.CheckConstraint('stock_reserved >= 0', name='ck_products_stock_reserved'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'customer_profiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('route_id', sa.Integer(), nullable=True),
        sa.Column('customer_type', sa.String(length=16), nullable=False, server_default='RESIDENTIAL'),
        _money('cash_balance'),
        _money('credit_limit'),
        sa.Column('default_product_id', sa.Integer(), nullable=True),
        sa.Column('default_quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('delivery_days', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _created_at(),
        sa.CheckConstraint('credit_limit >= 0', name='ck_customer_profiles_credit_limit'),
        sa.ForeignKeyConstraint(['route_id'], ['routes.id']),
        sa.ForeignKeyConstraint(['default_product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_customer_profiles_route_id', 'customer_profiles', ['route_id'])
    op.create_index('ix_customer_profiles_is_active', 'customer_profiles', ['is_active'])
    op.create_index('ix_customer_profiles_customer_type', 'customer_profiles', ['customer_type'])

    op.create_table(
        'customer_special_prices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        _money('custom_price'),
        sa.ForeignKeyConstraint(['customer_id'], ['customer_profiles.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('customer_id', 'product_id', name='uq_special_prices_customer_product'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_customer_special_prices_customer_id', 'customer_special_prices', ['customer_id'])

    # ============================================================================
    # customer_bottle_wallets: containers held per (customer, product)
    # ============================================================================
    op.create_table(
        'customer_bottle_wallets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('balance >= 0', name='ck_bottle_wallets_balance'),
        sa.ForeignKeyConstraint(['customer_id'], ['customer_profiles.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('customer_id', 'product_id', name='uq_bottle_wallets_customer_product'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_customer_bottle_wallets_customer_id', 'customer_bottle_wallets', ['customer_id'])
    op.create_index('ix_customer_bottle_wallets_product_id', 'customer_bottle_wallets', ['product_id'])

    # ============================================================================
    # cash_handovers: created before orders/expenses which reference it
    # ============================================================================
    op.create_table(
        'cash_handovers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('driver_id', sa.Integer(), nullable=False),
        sa.Column('handover_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        _money('gross_cash'),
        _money('expense_total'),
        _money('expected_cash'),
        _money('actual_cash'),
        _money('discrepancy'),
        _money('adjustment_amount', nullable=True),
        sa.Column('cash_order_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expense_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('driver_notes', sa.Text(), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('shift_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shift_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('verified_by', sa.String(length=128), nullable=True),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['driver_id'], ['driver_profiles.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cash_handovers_driver_id', 'cash_handovers', ['driver_id'])
    op.create_index('ix_cash_handovers_status', 'cash_handovers', ['status'])
    op.create_index('ix_cash_handovers_driver_date', 'cash_handovers', ['driver_id', 'handover_date'])
    # At most one PENDING handover per driver
    op.create_index(
        'uq_cash_handovers_driver_pending',
        'cash_handovers',
        ['driver_id'],
        unique=True,
        sqlite_where=sa.text("status = 'PENDING'"),
        postgresql_where=sa.text("status = 'PENDING'"),
    )

    # ============================================================================
    # orders / order_items
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('driver_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('scheduled_date', sa.Date(), nullable=False),
        _money('total_amount'),
        _money('cash_collected'),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        _money('delivery_charge'),
        _money('discount'),
        sa.Column('cash_handover_id', sa.Integer(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.String(length=32), nullable=True),
        sa.Column('cancelled_by', sa.String(length=128), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('driver_notes', sa.Text(), nullable=True),
        sa.Column('rescheduled_to_date', sa.Date(), nullable=True),
        sa.Column('original_scheduled_date', sa.Date(), nullable=True),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['customer_id'], ['customer_profiles.id']),
        sa.ForeignKeyConstraint(['driver_id'], ['driver_profiles.id']),
        sa.ForeignKeyConstraint(['cash_handover_id'], ['cash_handovers.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_driver_id', 'orders', ['driver_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_scheduled_date', 'orders', ['scheduled_date'])
    op.create_index('ix_orders_cash_handover_id', 'orders', ['cash_handover_id'])
    op.create_index('ix_orders_customer_date', 'orders', ['customer_id', 'scheduled_date'])
    op.create_index('ix_orders_driver_status_payment', 'orders', ['driver_id', 'status', 'payment_method'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        _money('price_at_time'),
        sa.Column('filled_given', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('empty_taken', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('damaged_returned', sa.Integer(), nullable=False, server_default='0'),
        sa.CheckConstraint('quantity >= 0', name='ck_order_items_quantity'),
        sa.CheckConstraint('filled_given >= 0', name='ck_order_items_filled_given'),
        sa.CheckConstraint('empty_taken >= 0', name='ck_order_items_empty_taken'),
        sa.CheckConstraint('damaged_returned >= 0', name='ck_order_items_damaged_returned'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])

    # ============================================================================
    # stock_movements: append-only warehouse history
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('filled_before', sa.Integer(), nullable=False),
        sa.Column('filled_after', sa.Integer(), nullable=False),
        sa.Column('empty_before', sa.Integer(), nullable=False),
        sa.Column('empty_after', sa.Integer(), nullable=False),
        sa.Column('damaged_before', sa.Integer(), nullable=False),
        sa.Column('damaged_after', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('actor', sa.String(length=128), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'])
    op.create_index('ix_stock_movements_movement_type', 'stock_movements', ['movement_type'])
    op.create_index('ix_stock_movements_order_id', 'stock_movements', ['order_id'])
    op.create_index('ix_stock_movements_product_occurred', 'stock_movements', ['product_id', 'occurred_at'])

    # ============================================================================
    # Ledgers: append-only, running balance on the owner row
    # ============================================================================
    for table, owner, owner_table in (
        ('ledger_entries', 'customer_id', 'customer_profiles'),
        ('driver_ledger_entries', 'driver_id', 'driver_profiles'),
    ):
        op.create_table(
            table,
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column(owner, sa.Integer(), nullable=False),
            _money('amount'),
            _money('balance_after'),
            sa.Column('description', sa.String(length=255), nullable=False),
            sa.Column('reference_type', sa.String(length=32), nullable=True),
            sa.Column('reference_id', sa.Integer(), nullable=True),
            _created_at(),
            sa.ForeignKeyConstraint([owner], [f'{owner_table}.id']),
            sa.PrimaryKeyConstraint('id'),
            sqlite_autoincrement=True
        )
        op.create_index(f'ix_{table}_{owner}', table, [owner])
        op.create_index(f'ix_{table}_reference_id', table, ['reference_id'])
        op.create_index(f'ix_{table}_{owner}_id', table, [owner, 'id'])

    # ============================================================================
    # expenses
    # ============================================================================
    op.create_table(
        'expenses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('driver_id', sa.Integer(), nullable=False),
        _money('amount'),
        sa.Column('category', sa.String(length=32), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('expense_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('cash_handover_id', sa.Integer(), nullable=True),
        sa.Column('reviewed_by', sa.String(length=128), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.CheckConstraint('amount > 0', name='ck_expenses_amount'),
        sa.ForeignKeyConstraint(['driver_id'], ['driver_profiles.id']),
        sa.ForeignKeyConstraint(['cash_handover_id'], ['cash_handovers.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_expenses_driver_id', 'expenses', ['driver_id'])
    op.create_index('ix_expenses_status', 'expenses', ['status'])
    op.create_index('ix_expenses_cash_handover_id', 'expenses', ['cash_handover_id'])
    op.create_index('ix_expenses_driver_status_payment', 'expenses', ['driver_id', 'status', 'payment_method'])

    # ============================================================================
    # audit_events
    # ============================================================================
    op.create_table(
        'audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('actor', sa.String(length=128), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_audit_events_event_type', 'audit_events', ['event_type'])
    op.create_index('ix_audit_events_occurred_at', 'audit_events', ['occurred_at'])
    op.create_index('ix_audit_events_entity', 'audit_events', ['entity_type', 'entity_id'])


def downgrade():
    for table in (
        'audit_events',
        'expenses',
        'driver_ledger_entries',
        'ledger_entries',
        'stock_movements',
        'order_items',
        'orders',
        'cash_handovers',
        'customer_bottle_wallets',
        'customer_special_prices',
        'customer_profiles',
        'products',
        'routes',
        'driver_profiles',
    ):
        op.drop_table(table)
