"""Initial booking schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _money(name: str, nullable: bool = False, default: str | None = None) -> sa.Column:
    return sa.Column(name, sa.Numeric(10, 2), nullable=nullable, server_default=default)


def upgrade() -> None:
    """Upgrade database schema."""
    # Create tours table
    op.create_table('tours',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('pricing', sa.JSON(), nullable=False),
        sa.Column('cancellation_policy_id', sa.String(length=64), nullable=False),
        sa.Column('cancellation_window_hours', sa.Integer(), nullable=True),
        sa.Column('provider_account_ref', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('length(currency) = 3', name='ck_tour_currency_length'),
        sa.CheckConstraint(
            'cancellation_window_hours IS NULL OR cancellation_window_hours >= 0',
            name='ck_tour_cancellation_window_non_negative'
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug')
    )
    op.create_index(op.f('ix_tours_name'), 'tours', ['name'], unique=False)
    op.create_index(op.f('ix_tours_slug'), 'tours', ['slug'], unique=False)

    # Create time_slots table
    op.create_table('time_slots',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('tour_id', sa.Uuid(), nullable=False),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('capacity_total', sa.Integer(), nullable=False),
        sa.Column('committed', sa.Integer(), server_default='0', nullable=False),
        sa.Column('version', sa.Integer(), server_default='0', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('capacity_total >= 0', name='ck_time_slot_capacity_total_non_negative'),
        sa.CheckConstraint('committed >= 0', name='ck_time_slot_committed_non_negative'),
        sa.CheckConstraint('committed <= capacity_total', name='ck_time_slot_committed_lte_total'),
        sa.CheckConstraint('ends_at > starts_at', name='ck_time_slot_ends_after_start'),
        sa.ForeignKeyConstraint(['tour_id'], ['tours.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_time_slots_starts_at'), 'time_slots', ['starts_at'], unique=False)
    op.create_index(op.f('ix_time_slots_tour_id'), 'time_slots', ['tour_id'], unique=False)

    # Create bookings table
    op.create_table('bookings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('reference', sa.String(length=16), nullable=False),
        sa.Column('tour_id', sa.Uuid(), nullable=False),
        sa.Column('time_slot_id', sa.Uuid(), nullable=False),
        sa.Column('customer_ref', sa.String(length=128), nullable=False),
        sa.Column('participants', sa.Integer(), nullable=False),
        sa.Column('participants_by_category', sa.JSON(), nullable=True),
        sa.Column('counting_participants', sa.Integer(), nullable=False),
        sa.Column('addon_ids', sa.JSON(), nullable=False),
        _money('original_base_price'),
        _money('group_discount', default='0'),
        _money('base_price'),
        _money('addons_total', default='0'),
        _money('subtotal'),
        _money('processor_fee'),
        _money('total_amount'),
        _money('provider_amount'),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('payment_status', sa.String(length=20), nullable=False),
        sa.Column('charge_ref', sa.String(length=255), nullable=True),
        sa.Column('payment_error', sa.Text(), nullable=True),
        sa.Column('payment_attempts', sa.Integer(), server_default='0', nullable=False),
        sa.Column('charge_idempotency_key', sa.String(length=255), nullable=True),
        sa.Column('cancelled_by', sa.String(length=20), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refund_status', sa.String(length=20), nullable=True),
        _money('refund_amount', nullable=True),
        sa.Column('refund_percentage', sa.Integer(), nullable=True),
        sa.Column('refund_rule', sa.Text(), nullable=True),
        sa.Column('refund_method', sa.String(length=20), nullable=True),
        sa.Column('refund_ref', sa.String(length=255), nullable=True),
        sa.Column('reversal_ref', sa.String(length=255), nullable=True),
        sa.Column('refund_error', sa.Text(), nullable=True),
        sa.Column('payout_state', sa.String(length=20), nullable=False),
        sa.Column('payout_ref', sa.String(length=255), nullable=True),
        sa.Column('paid_out_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('participants > 0', name='ck_booking_participants_positive'),
        sa.CheckConstraint(
            'counting_participants >= 0 AND counting_participants <= participants',
            name='ck_booking_counting_participants_range'
        ),
        sa.CheckConstraint('total_amount >= 0', name='ck_booking_total_non_negative'),
        sa.CheckConstraint('length(customer_ref) > 0', name='ck_booking_customer_ref_not_empty'),
        sa.CheckConstraint(
            "status <> 'pending' OR payment_status IN ('pending', 'failed')",
            name='ck_booking_pending_is_unpaid'
        ),
        sa.CheckConstraint(
            "status NOT IN ('confirmed', 'completed', 'no_show') OR payment_status = 'paid'",
            name='ck_booking_confirmed_is_paid'
        ),
        sa.CheckConstraint(
            "payment_status <> 'refunded' OR status = 'cancelled'",
            name='ck_booking_refunded_is_cancelled'
        ),
        sa.CheckConstraint(
            "payout_state <> 'paid_out' OR payout_ref IS NOT NULL",
            name='ck_booking_payout_has_reference'
        ),
        sa.ForeignKeyConstraint(['tour_id'], ['tours.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['time_slot_id'], ['time_slots.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reference')
    )
    op.create_index(op.f('ix_bookings_reference'), 'bookings', ['reference'], unique=False)
    op.create_index(op.f('ix_bookings_tour_id'), 'bookings', ['tour_id'], unique=False)
    op.create_index(op.f('ix_bookings_time_slot_id'), 'bookings', ['time_slot_id'], unique=False)
    op.create_index(op.f('ix_bookings_customer_ref'), 'bookings', ['customer_ref'], unique=False)
    op.create_index(op.f('ix_bookings_status'), 'bookings', ['status'], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table('bookings')
    op.drop_table('time_slots')
    op.drop_table('tours')
