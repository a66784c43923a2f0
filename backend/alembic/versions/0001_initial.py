# alembic/versions/0001_initial.py
# initial schema for the customer-space marketplace
from alembic import op
import sqlalchemy as sa

revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('users',
        sa.Column('user_id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False, unique=True),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_connect_id', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_table('customer_spaces',
        sa.Column('space_id', sa.Integer(), primary_key=True),
        sa.Column('owner_id', sa.Integer(), sa.ForeignKey('users.user_id', ondelete='CASCADE'), nullable=False),
        sa.Column('space_name', sa.String(length=255), nullable=False),
        sa.Column('space_type', sa.String(length=20), nullable=False),
        sa.Column('address_line1', sa.String(length=255), nullable=False),
        sa.Column('address_line2', sa.String(length=255), nullable=True),
        sa.Column('city', sa.String(length=100), nullable=False),
        sa.Column('postcode', sa.String(length=20), nullable=False),
        sa.Column('latitude', sa.Numeric(10, 8), nullable=True),
        sa.Column('longitude', sa.Numeric(11, 8), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('instructions', sa.Text(), nullable=True),
        sa.Column('amenities', sa.JSON(), nullable=False),
        sa.Column('photos', sa.JSON(), nullable=False),
        sa.Column('price_per_hour', sa.Numeric(10, 2), nullable=False),
        sa.Column('price_per_day', sa.Numeric(10, 2), nullable=True),
        sa.Column('min_booking_hours', sa.Integer(), nullable=False),
        sa.Column('max_booking_days', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('rejection_reason', sa.String(length=500), nullable=True),
        sa.Column('total_earnings', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_bookings', sa.Integer(), nullable=False),
        sa.Column('average_rating', sa.Numeric(3, 2), nullable=True),
        sa.Column('review_count', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_customer_spaces_owner_id', 'customer_spaces', ['owner_id'])
    op.create_index('ix_customer_spaces_city', 'customer_spaces', ['city'])
    op.create_index('ix_customer_spaces_postcode', 'customer_spaces', ['postcode'])
    op.create_index('ix_customer_spaces_status', 'customer_spaces', ['status'])
    op.create_index('ix_customer_spaces_price_per_hour', 'customer_spaces', ['price_per_hour'])

    op.create_table('customer_space_bookings',
        sa.Column('booking_id', sa.Integer(), primary_key=True),
        sa.Column('space_id', sa.Integer(), sa.ForeignKey('customer_spaces.space_id', ondelete='RESTRICT'), nullable=False),
        sa.Column('renter_id', sa.Integer(), sa.ForeignKey('users.user_id', ondelete='RESTRICT'), nullable=False),
        sa.Column('owner_id', sa.Integer(), sa.ForeignKey('users.user_id', ondelete='RESTRICT'), nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('vehicle_reg', sa.String(length=20), nullable=True),
        sa.Column('vehicle_make', sa.String(length=100), nullable=True),
        sa.Column('vehicle_model', sa.String(length=100), nullable=True),
        sa.Column('vehicle_color', sa.String(length=50), nullable=True),
        sa.Column('total_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('platform_fee', sa.Numeric(10, 2), nullable=False),
        sa.Column('owner_payout', sa.Numeric(10, 2), nullable=False),
        sa.Column('booking_status', sa.String(length=20), nullable=False),
        sa.Column('payment_status', sa.String(length=20), nullable=False),
        sa.Column('stripe_payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('cancelled_by', sa.String(length=10), nullable=True),
        sa.Column('cancellation_reason', sa.String(length=500), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('check_in_time', sa.DateTime(), nullable=True),
        sa.Column('check_out_time', sa.DateTime(), nullable=True),
        sa.Column('renter_notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('idx_dates', 'customer_space_bookings', ['start_time', 'end_time'])
    op.create_index('ix_customer_space_bookings_space_id', 'customer_space_bookings', ['space_id'])
    op.create_index('ix_customer_space_bookings_renter_id', 'customer_space_bookings', ['renter_id'])
    op.create_index('ix_customer_space_bookings_owner_id', 'customer_space_bookings', ['owner_id'])
    op.create_index('ix_customer_space_bookings_booking_status', 'customer_space_bookings', ['booking_status'])
    op.create_index('ix_customer_space_bookings_payment_status', 'customer_space_bookings', ['payment_status'])
    op.create_index('ix_customer_space_bookings_stripe_payment_intent_id', 'customer_space_bookings', ['stripe_payment_intent_id'])

    op.create_table('customer_space_reviews',
        sa.Column('review_id', sa.Integer(), primary_key=True),
        sa.Column('space_id', sa.Integer(), sa.ForeignKey('customer_spaces.space_id', ondelete='CASCADE'), nullable=False),
        sa.Column('booking_id', sa.Integer(), sa.ForeignKey('customer_space_bookings.booking_id', ondelete='CASCADE'), nullable=False),
        sa.Column('reviewer_id', sa.Integer(), sa.ForeignKey('users.user_id', ondelete='CASCADE'), nullable=False),
        sa.Column('rating', sa.SmallInteger(), nullable=False),
        sa.Column('review_text', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('booking_id', name='idx_booking_review'),
    )

    op.create_table('payments',
        sa.Column('payment_id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.user_id', ondelete='RESTRICT'), nullable=False),
        sa.Column('booking_type', sa.String(length=20), nullable=False),
        sa.Column('booking_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('stripe_payment_intent_id', sa.String(length=255), nullable=True, unique=True),
        sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('failure_reason', sa.String(length=500), nullable=True),
        sa.Column('refund_amount', sa.Numeric(10, 2), nullable=True),
        sa.Column('refunded_at', sa.DateTime(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('idx_booking', 'payments', ['booking_type', 'booking_id'])
    op.create_index('ix_payments_user_id', 'payments', ['user_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])


def downgrade():
    op.drop_table('payments')
    op.drop_table('customer_space_reviews')
    op.drop_table('customer_space_bookings')
    op.drop_table('customer_spaces')
    op.drop_table('users')
