"""reservation schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00

"""
from alembic import op
import sqlalchemy as sa


revision = '0001'
down_revision = None
branch_labels = None
depends_on = None

duration_unit = sa.Enum('HOUR', 'DAY', 'WEEK', 'MONTH', 'YEAR', name='durationunit')
order_status = sa.Enum(
    'QUOTATION', 'QUOTATION_SENT', 'SALES_ORDER', 'PAID', 'PICKED_UP', 'RETURNED', 'CANCELLED',
    name='orderstatus',
)
commitment_level = sa.Enum('PROVISIONAL', 'COMMITTED', 'ACTIVE', 'RELEASED', name='commitmentlevel')
invoice_status = sa.Enum('UNPAID', 'PAID', 'VOID', name='invoicestatus')
discount_kind = sa.Enum('PERCENT', 'FIXED', name='discountkind')


def upgrade() -> None:
    op.create_table(
        'products',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('vendor_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('stock', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('duration_unit', duration_unit, nullable=False),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
    )
    op.create_index('ix_products_id', 'products', ['id'])
    op.create_index('ix_products_vendor_id', 'products', ['vendor_id'])

    op.create_table(
        'coupons',
        sa.Column('code', sa.String(), primary_key=True),
        sa.Column('kind', discount_kind, nullable=False),
        sa.Column('value', sa.Numeric(12, 2), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('usage_limit', sa.Integer(), nullable=True),
        sa.Column('used_count', sa.Integer(), nullable=False),
    )

    op.create_table(
        'orders',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('number', sa.String(), nullable=False, unique=True),
        sa.Column('customer_id', sa.String(), nullable=False),
        sa.Column('vendor_id', sa.String(), nullable=False),
        sa.Column('status', order_status, nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('tax', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount', sa.Numeric(12, 2), nullable=False),
        sa.Column('shipping', sa.Numeric(12, 2), nullable=False),
        sa.Column('late_fee', sa.Numeric(12, 2), nullable=False),
        sa.Column('grand_total', sa.Numeric(12, 2), nullable=False),
        sa.Column('tax_rate', sa.Numeric(8, 4), nullable=False),
        sa.Column('late_fee_multiplier', sa.Numeric(8, 4), nullable=False),
        sa.Column('coupon_code', sa.String(), sa.ForeignKey('coupons.code'), nullable=True),
        sa.Column('coupon_kind', discount_kind, nullable=True),
        sa.Column('coupon_value', sa.Numeric(12, 2), nullable=True),
        sa.Column('returned_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_orders_id', 'orders', ['id'])
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_vendor_id', 'orders', ['vendor_id'])

    op.create_table(
        'order_lines',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('order_id', sa.String(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.String(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('duration_unit', duration_unit, nullable=False),
        sa.Column('start_at', sa.DateTime(), nullable=False),
        sa.Column('end_at', sa.DateTime(), nullable=False),
        sa.Column('variants', sa.JSON(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_order_lines_quantity_positive'),
        sa.CheckConstraint('end_at > start_at', name='ck_order_lines_window'),
    )
    op.create_index('ix_order_lines_id', 'order_lines', ['id'])
    op.create_index('ix_order_lines_order_id', 'order_lines', ['order_id'])

    op.create_table(
        'reservation_intervals',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('order_line_id', sa.String(), sa.ForeignKey('order_lines.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('order_id', sa.String(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.String(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('start_at', sa.DateTime(), nullable=False),
        sa.Column('end_at', sa.DateTime(), nullable=False),
        sa.Column('level', commitment_level, nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('released_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('quantity > 0', name='ck_reservation_intervals_quantity_positive'),
        sa.CheckConstraint('end_at > start_at', name='ck_reservation_intervals_window'),
    )
    op.create_index('ix_reservation_intervals_id', 'reservation_intervals', ['id'])
    op.create_index('ix_reservation_intervals_order_id', 'reservation_intervals', ['order_id'])
    op.create_index(
        'ix_reservation_intervals_overlap',
        'reservation_intervals',
        ['product_id', 'start_at', 'end_at', 'level'],
    )

    op.create_table(
        'invoices',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('order_id', sa.String(), sa.ForeignKey('orders.id'), nullable=False, unique=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', invoice_status, nullable=False),
        sa.Column('payment_date', sa.DateTime(), nullable=True),
        sa.Column('payment_method', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_invoices_id', 'invoices', ['id'])

    op.create_table(
        'coupon_redemptions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('coupon_code', sa.String(), sa.ForeignKey('coupons.code'), nullable=False),
        sa.Column('order_id', sa.String(), sa.ForeignKey('orders.id'), nullable=False, unique=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_coupon_redemptions_coupon_code', 'coupon_redemptions', ['coupon_code'])


def downgrade() -> None:
    op.drop_table('coupon_redemptions')
    op.drop_table('invoices')
    op.drop_table('reservation_intervals')
    op.drop_table('order_lines')
    op.drop_table('orders')
    op.drop_table('coupons')
    op.drop_table('products')
    for enum_type in (discount_kind, invoice_status, commitment_level, order_status, duration_unit):
        enum_type.drop(op.get_bind(), checkfirst=True)
