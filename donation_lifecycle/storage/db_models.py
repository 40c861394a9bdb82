"""SQLAlchemy database models.

Maps domain models to PostgreSQL tables.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, relationship

from donation_lifecycle.models.claim import ClaimStatus
from donation_lifecycle.models.offer import OfferStatus


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


_WINDOW_ALL_OR_NONE = (
    "({p}_date IS NULL AND {p}_start_time IS NULL AND {p}_end_time IS NULL) OR "
    "({p}_date IS NOT NULL AND {p}_start_time IS NOT NULL AND {p}_end_time IS NOT NULL)"
)


class OfferTable(Base):
    """Donation offer table."""

    __tablename__ = "offers"

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    donor_id = Column(BigInteger, nullable=False, index=True)
    title = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False)
    expiry_date = Column(Date, nullable=False)
    status = Column(
        Enum(OfferStatus, native_enum=True),
        nullable=False,
        default=OfferStatus.AVAILABLE,
        index=True,
    )
    pickup_date = Column(Date, nullable=True)
    pickup_start_time = Column(Time, nullable=True)
    pickup_end_time = Column(Time, nullable=True)
    # Ordered candidate slots: [{"pickup_date", "start_time", "end_time"}, ...]
    pickup_slots = Column(JSON, nullable=False, default=list)
    otp_code = Column(String(6), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    claims = relationship("ClaimTable", back_populates="offer", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_positive_quantity"),
        CheckConstraint(_WINDOW_ALL_OR_NONE.format(p="pickup"), name="check_default_window_complete"),
        CheckConstraint(
            "otp_code IS NULL OR status IN ('READY_FOR_PICKUP', 'COMPLETED', 'NOT_COMPLETED')",
            name="check_otp_only_after_ready",
        ),
        Index("ix_offers_status_created", status, created_at),
        Index("ix_offers_status_expiry", status, expiry_date),
    )


class ClaimTable(Base):
    """Claim table."""

    __tablename__ = "claims"

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    offer_id = Column(PG_UUID(as_uuid=True), ForeignKey("offers.id", ondelete="CASCADE"), nullable=False, index=True)
    receiver_id = Column(BigInteger, nullable=False, index=True)
    status = Column(
        Enum(ClaimStatus, native_enum=True),
        nullable=False,
        default=ClaimStatus.ACTIVE,
        index=True,
    )
    confirmed_pickup_date = Column(Date, nullable=True)
    confirmed_pickup_start_time = Column(Time, nullable=True)
    confirmed_pickup_end_time = Column(Time, nullable=True)
    claimed_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    offer = relationship("OfferTable", back_populates="claims")

    __table_args__ = (
        CheckConstraint(
            _WINDOW_ALL_OR_NONE.format(p="confirmed_pickup"),
            name="check_confirmed_window_complete",
        ),
        # At most one ACTIVE claim per offer
        Index(
            "uq_claims_offer_active",
            offer_id,
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
        ),
        Index("ix_claims_receiver_claimed", receiver_id, claimed_at.desc()),
    )


class TimelineEventTable(Base):
    """Append-only donation timeline table."""

    __tablename__ = "donation_timeline"

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    offer_id = Column(PG_UUID(as_uuid=True), ForeignKey("offers.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    actor = Column(String(50), nullable=False)
    actor_user_id = Column(BigInteger, nullable=True)
    old_status = Column(String(50), nullable=True)
    new_status = Column(String(50), nullable=True)
    details = Column(Text, nullable=True)
    visible_to_users = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_donation_timeline_offer_created", offer_id, created_at),
    )
