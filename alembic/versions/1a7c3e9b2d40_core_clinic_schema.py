"""core clinic schema

Revision ID: 1a7c3e9b2d40
Revises: None
Create Date: 2026-10-17 09:12:31.000000

Staff, patients, catalog, appointments, discounts, quotes/orders, sales with both
payment tracks and laboratory orders with their status history.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '1a7c3e9b2d40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

money = sa.Numeric(12, 2)

role = postgresql.ENUM('ADMIN', 'SPECIALIST', 'RECEPTIONIST', name='role', create_type=False)
appointment_status = postgresql.ENUM('SCHEDULED', 'IN_PROGRESS', 'PAUSED', 'COMPLETED', name='appointmentstatus', create_type=False)
product_category = postgresql.ENUM('LENS', 'FRAME', 'CONTACT_LENS', 'ACCESSORY', 'SERVICE', name='productcategory', create_type=False)
discount_status = postgresql.ENUM('PENDING', 'APPROVED', 'REJECTED', name='discountrequeststatus', create_type=False)
quote_status = postgresql.ENUM('PENDING', 'APPROVED', 'REJECTED', 'EXPIRED', 'CONVERTED', name='quotestatus', create_type=False)
order_status = postgresql.ENUM('PENDING', 'PROCESSING', 'COMPLETED', 'CANCELLED', 'ON_HOLD', name='orderstatus', create_type=False)
payment_status = postgresql.ENUM('PENDING', 'PARTIAL', 'PAID', name='paymentstatus', create_type=False)
sale_status = postgresql.ENUM('PENDING', 'COMPLETED', 'CANCELLED', 'REFUNDED', name='salestatus', create_type=False)
laboratory_status = postgresql.ENUM('ACTIVE', 'INACTIVE', name='laboratorystatus', create_type=False)
lab_order_status = postgresql.ENUM('PENDING', 'IN_PROCESS', 'SENT_TO_LAB', 'READY_FOR_DELIVERY', 'DELIVERED', 'CANCELLED', name='laboratoryorderstatus', create_type=False)
lab_order_priority = postgresql.ENUM('LOW', 'NORMAL', 'HIGH', 'URGENT', name='laboratoryorderpriority', create_type=False)

def timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]

def payment_fact_columns():
    return [
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('sale_id', sa.Integer(), sa.ForeignKey('sales.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('payment_method_id', sa.Integer(), sa.ForeignKey('payment_methods.id'), nullable=False),
        sa.Column('amount', money, nullable=False),
        sa.Column('reference_number', sa.String(), nullable=True),
        sa.Column('payment_date', sa.Date(), nullable=False),
        sa.Column('notes', sa.String(), nullable=True),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('staff_accounts.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]

enums = [
    role, appointment_status, product_category, discount_status, quote_status, order_status,
    payment_status, sale_status, laboratory_status, lab_order_status, lab_order_priority,
]

def upgrade() -> None:
    # Shared by several tables, created once up front
    bind = op.get_bind()
    for enum in enums:
        enum.create(bind, checkfirst=True)

    op.create_table(
        'staff_accounts',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False, unique=True),
        sa.Column('role', role, nullable=False),
        sa.Column('deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        *timestamps(),
    )
    op.create_table(
        'patients',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('first_name', sa.String(), nullable=False),
        sa.Column('last_name', sa.String(), nullable=False),
        sa.Column('identification', sa.String(), nullable=False, index=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        *timestamps(),
    )
    op.create_table(
        'laboratories',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('contact_person', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('status', laboratory_status, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        'payment_methods',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('code', sa.String(), nullable=False, unique=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('internal_code', sa.String(), nullable=False, unique=True),
        sa.Column('identifier', sa.String(), nullable=True),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('price', money, nullable=False),
        sa.Column('category', product_category, nullable=False),
        sa.Column('deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        *timestamps(),
    )
    op.create_table(
        'appointments',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('patient_id', sa.Integer(), sa.ForeignKey('patients.id'), nullable=False, index=True),
        sa.Column('specialist_id', sa.Integer(), sa.ForeignKey('staff_accounts.id'), nullable=False, index=True),
        sa.Column('receptionist_id', sa.Integer(), sa.ForeignKey('staff_accounts.id'), nullable=True),
        sa.Column('taken_by_id', sa.Integer(), sa.ForeignKey('staff_accounts.id'), nullable=True),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column('notes', sa.String(), nullable=True),
        sa.Column('status', appointment_status, nullable=False),
        sa.Column('taken_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paused_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resumed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_billed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('billed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        *timestamps(),
    )
    # At most one appointment in progress per holding specialist
    op.create_index(
        'uq_appointments_active_specialist',
        'appointments',
        ['taken_by_id'],
        unique=True,
        postgresql_where=sa.text("status = 'IN_PROGRESS'"),
    )
    op.create_table(
        'discount_requests',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('staff_accounts.id'), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False, index=True),
        sa.Column('patient_id', sa.Integer(), sa.ForeignKey('patients.id'), nullable=True, index=True),
        sa.Column('status', discount_status, nullable=False, index=True),
        sa.Column('discount_percentage', money, nullable=False),
        sa.Column('original_price', money, nullable=False),
        sa.Column('discounted_price', money, nullable=False),
        sa.Column('reason', sa.String(), nullable=True),
        sa.Column('rejection_reason', sa.String(), nullable=True),
        sa.Column('approval_notes', sa.String(), nullable=True),
        sa.Column('approved_by', sa.Integer(), sa.ForeignKey('staff_accounts.id'), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('is_global', sa.Boolean(), nullable=False, server_default=sa.false()),
        *timestamps(),
    )
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('order_number', sa.String(), nullable=False, unique=True),
        sa.Column('patient_id', sa.Integer(), sa.ForeignKey('patients.id'), nullable=False, index=True),
        sa.Column('appointment_id', sa.Integer(), sa.ForeignKey('appointments.id'), nullable=True),
        sa.Column('laboratory_id', sa.Integer(), sa.ForeignKey('laboratories.id'), nullable=True),
        sa.Column('subtotal', money, nullable=False),
        sa.Column('tax', money, nullable=False),
        sa.Column('discount', money, nullable=False),
        sa.Column('total', money, nullable=False),
        sa.Column('status', order_status, nullable=False),
        sa.Column('payment_status', payment_status, nullable=False),
        sa.Column('notes', sa.String(), nullable=True),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('staff_accounts.id'), nullable=False),
        *timestamps(),
    )
    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False, index=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price', money, nullable=False),
        sa.Column('discount_percentage', money, nullable=False),
        sa.Column('discount_id', sa.Integer(), sa.ForeignKey('discount_requests.id'), nullable=True),
        sa.Column('total', money, nullable=False),
        sa.Column('notes', sa.String(), nullable=True),
    )
    op.create_table(
        'quotes',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('quote_number', sa.String(), nullable=False, unique=True),
        sa.Column('patient_id', sa.Integer(), sa.ForeignKey('patients.id'), nullable=False, index=True),
        sa.Column('subtotal', money, nullable=False),
        sa.Column('tax', money, nullable=False),
        sa.Column('discount', money, nullable=False),
        sa.Column('total', money, nullable=False),
        sa.Column('status', quote_status, nullable=False),
        sa.Column('expiration_date', sa.Date(), nullable=True),
        sa.Column('notes', sa.String(), nullable=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=True),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('staff_accounts.id'), nullable=False),
        *timestamps(),
    )
    op.create_table(
        'quote_items',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('quote_id', sa.Integer(), sa.ForeignKey('quotes.id'), nullable=False, index=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('original_price', money, nullable=False),
        sa.Column('price', money, nullable=False),
        sa.Column('discount_percentage', money, nullable=False),
        sa.Column('discount_id', sa.Integer(), sa.ForeignKey('discount_requests.id'), nullable=True),
        sa.Column('total', money, nullable=False),
    )
    op.create_table(
        'sales',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('sale_number', sa.String(), nullable=False, unique=True),
        sa.Column('patient_id', sa.Integer(), sa.ForeignKey('patients.id'), nullable=False, index=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=True, index=True),
        sa.Column('appointment_id', sa.Integer(), sa.ForeignKey('appointments.id'), nullable=True, index=True),
        sa.Column('subtotal', money, nullable=False),
        sa.Column('tax', money, nullable=False),
        sa.Column('discount', money, nullable=False),
        sa.Column('total', money, nullable=False),
        sa.Column('amount_paid', money, nullable=False),
        sa.Column('balance', money, nullable=False),
        sa.Column('status', sale_status, nullable=False, index=True),
        sa.Column('payment_status', payment_status, nullable=False, index=True),
        sa.Column('notes', sa.String(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('staff_accounts.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table('sale_payments', *payment_fact_columns())
    op.create_table('partial_payments', *payment_fact_columns())
    op.create_table(
        'laboratory_orders',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('order_number', sa.String(), nullable=False, unique=True),
        sa.Column('laboratory_id', sa.Integer(), sa.ForeignKey('laboratories.id'), nullable=False, index=True),
        sa.Column('patient_id', sa.Integer(), sa.ForeignKey('patients.id'), nullable=False, index=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=True),
        sa.Column('sale_id', sa.Integer(), sa.ForeignKey('sales.id', ondelete='SET NULL'), nullable=True, unique=True),
        sa.Column('status', lab_order_status, nullable=False, index=True),
        sa.Column('priority', lab_order_priority, nullable=False),
        sa.Column('estimated_completion_date', sa.Date(), nullable=True),
        sa.Column('completion_date', sa.Date(), nullable=True),
        sa.Column('notes', sa.String(), nullable=True),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('staff_accounts.id'), nullable=False),
        *timestamps(),
    )
    op.create_table(
        'laboratory_order_statuses',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('laboratory_order_id', sa.Integer(), sa.ForeignKey('laboratory_orders.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('status', lab_order_status, nullable=False),
        sa.Column('notes', sa.String(), nullable=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('staff_accounts.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

def downgrade() -> None:
    for table in [
        'laboratory_order_statuses',
        'laboratory_orders',
        'partial_payments',
        'sale_payments',
        'sales',
        'quote_items',
        'quotes',
        'order_items',
        'orders',
        'discount_requests',
    ]:
        op.drop_table(table)
    op.drop_index('uq_appointments_active_specialist', table_name='appointments')
    for table in ['appointments', 'products', 'payment_methods', 'laboratories', 'patients', 'staff_accounts']:
        op.drop_table(table)
    bind = op.get_bind()
    for enum in reversed(enums):
        enum.drop(bind, checkfirst=True)
