"""Initial schema with offers, claims, donation timeline

Revision ID: 001_initial_schema
Revises: 
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _window_all_or_none(prefix: str) -> str:
    return (
        f"({prefix}_date IS NULL AND {prefix}_start_time IS NULL AND {prefix}_end_time IS NULL) OR "
        f"({prefix}_date IS NOT NULL AND {prefix}_start_time IS NOT NULL AND {prefix}_end_time IS NOT NULL)"
    )


def upgrade() -> None:
    """Create initial database schema."""
    # Create enum types
    op.execute(
        "CREATE TYPE offerstatus AS ENUM "
        "('AVAILABLE', 'CLAIMED', 'READY_FOR_PICKUP', 'COMPLETED', 'NOT_COMPLETED', 'EXPIRED')"
    )
    op.execute("CREATE TYPE claimstatus AS ENUM ('ACTIVE', 'CANCELLED', 'COMPLETED', 'NOT_COMPLETED')")

    # Create offers table
    op.create_table(
        'offers',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, primary_key=True),
        sa.Column('donor_id', sa.BigInteger(), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('expiry_date', sa.Date(), nullable=False),
        sa.Column('status', postgresql.ENUM('AVAILABLE', 'CLAIMED', 'READY_FOR_PICKUP', 'COMPLETED', 'NOT_COMPLETED', 'EXPIRED', name='offerstatus', create_type=False), nullable=False),
        sa.Column('pickup_date', sa.Date(), nullable=True),
        sa.Column('pickup_start_time', sa.Time(), nullable=True),
        sa.Column('pickup_end_time', sa.Time(), nullable=True),
        sa.Column('pickup_slots', sa.JSON(), nullable=False),
        sa.Column('otp_code', sa.String(length=6), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='check_positive_quantity'),
        sa.CheckConstraint(_window_all_or_none('pickup'), name='check_default_window_complete'),
        sa.CheckConstraint(
            "otp_code IS NULL OR status IN ('READY_FOR_PICKUP', 'COMPLETED', 'NOT_COMPLETED')",
            name='check_otp_only_after_ready',
        ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_offers_donor_id', 'offers', ['donor_id'])
    op.create_index('ix_offers_status', 'offers', ['status'])
    op.create_index('ix_offers_created_at', 'offers', ['created_at'])
    op.create_index('ix_offers_status_created', 'offers', ['status', 'created_at'])
    op.create_index('ix_offers_status_expiry', 'offers', ['status', 'expiry_date'])

    # Create claims table
    op.create_table(
        'claims',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, primary_key=True),
        sa.Column('offer_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('receiver_id', sa.BigInteger(), nullable=False),
        sa.Column('status', postgresql.ENUM('ACTIVE', 'CANCELLED', 'COMPLETED', 'NOT_COMPLETED', name='claimstatus', create_type=False), nullable=False),
        sa.Column('confirmed_pickup_date', sa.Date(), nullable=True),
        sa.Column('confirmed_pickup_start_time', sa.Time(), nullable=True),
        sa.Column('confirmed_pickup_end_time', sa.Time(), nullable=True),
        sa.Column('claimed_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint(_window_all_or_none('confirmed_pickup'), name='check_confirmed_window_complete'),
        sa.ForeignKeyConstraint(['offer_id'], ['offers.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_claims_offer_id', 'claims', ['offer_id'])
    op.create_index('ix_claims_receiver_id', 'claims', ['receiver_id'])
    op.create_index('ix_claims_status', 'claims', ['status'])
    op.create_index('ix_claims_claimed_at', 'claims', ['claimed_at'])
    op.create_index('ix_claims_receiver_claimed', 'claims', ['receiver_id', sa.text('claimed_at DESC')])
    # At most one ACTIVE claim per offer
    op.create_index(
        'uq_claims_offer_active',
        'claims',
        ['offer_id'],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
    )

    # Create donation timeline table
    op.create_table(
        'donation_timeline',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, primary_key=True),
        sa.Column('offer_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('actor', sa.String(length=50), nullable=False),
        sa.Column('actor_user_id', sa.BigInteger(), nullable=True),
        sa.Column('old_status', sa.String(length=50), nullable=True),
        sa.Column('new_status', sa.String(length=50), nullable=True),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('visible_to_users', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['offer_id'], ['offers.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_donation_timeline_offer_id', 'donation_timeline', ['offer_id'])
    op.create_index('ix_donation_timeline_offer_created', 'donation_timeline', ['offer_id', 'created_at'])


def downgrade() -> None:
    """Drop all tables and types."""
    op.drop_table('donation_timeline')
    op.drop_table('claims')
    op.drop_table('offers')

    op.execute('DROP TYPE IF EXISTS claimstatus')
    op.execute('DROP TYPE IF EXISTS offerstatus')
