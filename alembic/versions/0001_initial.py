"""initial

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-19 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('trips',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('origin', sa.String(length=128), nullable=False),
        sa.Column('destination', sa.String(length=128), nullable=False),
        sa.Column('departure_time', sa.DateTime(), nullable=False),
        sa.Column('arrival_time', sa.DateTime(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='scheduled'),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_seats', sa.Integer(), nullable=False),
        sa.Column('seats_available', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('lock_version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_trips_origin', 'trips', ['origin'])
    op.create_index('ix_trips_destination', 'trips', ['destination'])
    op.create_index('ix_trips_departure_time', 'trips', ['departure_time'])
    op.create_index('ix_trips_status', 'trips', ['status'])

    op.create_table('bookings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('trip_id', sa.Integer(), sa.ForeignKey('trips.id', ondelete='CASCADE'), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('seat_numbers', sa.JSON(), nullable=False),
        sa.Column('passengers', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('bus_fare', sa.Numeric(12, 2), nullable=False),
        sa.Column('convenience_fee', sa.Numeric(12, 2), nullable=False),
        sa.Column('bank_charge', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_pay', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False, server_default='VND'),
        sa.Column('booking_reference', sa.String(length=64), nullable=False),
        sa.Column('pickup_point', sa.String(length=255), nullable=True),
        sa.Column('dropoff_point', sa.String(length=255), nullable=True),
        sa.Column('payment_reference', sa.String(length=128), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('payment_reference', name='bookings_payment_reference_key'),
    )
    op.create_index('ix_bookings_trip_id', 'bookings', ['trip_id'])
    op.create_index('ix_bookings_customer_id', 'bookings', ['customer_id'])
    op.create_index('ix_bookings_status', 'bookings', ['status'])
    op.create_index('ix_bookings_booking_reference', 'bookings', ['booking_reference'], unique=True)

    op.create_table('seat_locks',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('trip_id', sa.Integer(), sa.ForeignKey('trips.id', ondelete='CASCADE'), nullable=False),
        sa.Column('seat_number', sa.String(length=32), nullable=False),
        sa.Column('session_id', sa.String(length=128), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('booking_id', sa.Integer(), sa.ForeignKey('bookings.id', ondelete='SET NULL'), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='held'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_seat_locks_session_id', 'seat_locks', ['session_id'])
    op.create_index('ix_seat_locks_booking_id', 'seat_locks', ['booking_id'])
    op.create_index('ix_seat_locks_trip_seat', 'seat_locks', ['trip_id', 'seat_number'])
    op.create_index('ix_seat_locks_expiry_status', 'seat_locks', ['expires_at', 'status'])

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor', sa.String(length=128), nullable=True),
        sa.Column('action', sa.String(length=255), nullable=False),
        sa.Column('object_type', sa.String(length=128), nullable=True),
        sa.Column('object_id', sa.String(length=128), nullable=True),
        sa.Column('detail', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_audit_logs_actor', 'audit_logs', ['actor'])


def downgrade():
    op.drop_index('ix_audit_logs_actor', table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index('ix_seat_locks_expiry_status', table_name='seat_locks')
    op.drop_index('ix_seat_locks_trip_seat', table_name='seat_locks')
    op.drop_index('ix_seat_locks_booking_id', table_name='seat_locks')
    op.drop_index('ix_seat_locks_session_id', table_name='seat_locks')
    op.drop_table('seat_locks')
    op.drop_index('ix_bookings_booking_reference', table_name='bookings')
    op.drop_index('ix_bookings_status', table_name='bookings')
    op.drop_index('ix_bookings_customer_id', table_name='bookings')
    op.drop_index('ix_bookings_trip_id', table_name='bookings')
    op.drop_table('bookings')
    op.drop_index('ix_trips_status', table_name='trips')
    op.drop_index('ix_trips_departure_time', table_name='trips')
    op.drop_index('ix_trips_destination', table_name='trips')
    op.drop_index('ix_trips_origin', table_name='trips')
    op.drop_table('trips')
