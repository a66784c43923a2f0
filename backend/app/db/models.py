# app/db/models.py

from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    SmallInteger,
    String,
    DateTime,
    Text,
    ForeignKey,
    Numeric,
    JSON,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import relationship

from app.db.base import Base


# ---------------------------
# Status vocabularies
# ---------------------------
SPACE_STATUSES = ("pending", "active", "paused", "rejected")
SPACE_TYPES = ("driveway", "garage", "parking_spot", "car_park")

BOOKING_STATUSES = ("pending", "confirmed", "active", "completed", "cancelled", "disputed")
# bookings in these states block deleting the space
OPEN_BOOKING_STATUSES = ("pending", "confirmed", "active")
TERMINAL_BOOKING_STATUSES = ("completed", "cancelled")

BOOKING_PAYMENT_STATUSES = ("pending", "paid", "partial_refund", "refunded", "failed")

PAYMENT_BOOKING_TYPES = ("garage", "customer_space", "airport")
PAYMENT_STATUSES = ("pending", "succeeded", "failed", "refunded", "partial_refund")


class User(Base):
    __tablename__ = "users"

    id = Column("user_id", Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(20), nullable=True)

    role = Column(String(20), nullable=False, default="user")

    # Payment provider references
    stripe_customer_id = Column(String(255), nullable=True)
    stripe_connect_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    spaces = relationship(
        "Space",
        back_populates="owner",
        foreign_keys="Space.owner_id",
    )


class Space(Base):
    """A privately listed parking space ("customer space")."""

    __tablename__ = "customer_spaces"

    id = Column("space_id", Integer, primary_key=True, index=True)

    owner_id = Column(
        Integer,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    space_name = Column(String(255), nullable=False)
    space_type = Column(String(20), nullable=False, default="driveway")

    address_line1 = Column(String(255), nullable=False)
    address_line2 = Column(String(255), nullable=True)
    city = Column(String(100), nullable=False, index=True)
    postcode = Column(String(20), nullable=False, index=True)
    latitude = Column(Numeric(10, 8), nullable=True)
    longitude = Column(Numeric(11, 8), nullable=True)

    description = Column(Text, nullable=True)
    instructions = Column(Text, nullable=True)

    # list[str] as JSON in DB
    amenities = Column(JSON, nullable=False, default=list)
    photos = Column(JSON, nullable=False, default=list)

    price_per_hour = Column(Numeric(10, 2), nullable=False, index=True)
    price_per_day = Column(Numeric(10, 2), nullable=True)
    min_booking_hours = Column(Integer, nullable=False, default=1)
    max_booking_days = Column(Integer, nullable=False, default=30)

    # "pending" | "active" | "paused" | "rejected"
    status = Column(String(20), nullable=False, default="pending", index=True)
    rejection_reason = Column(String(500), nullable=True)

    # Stats, mutated on completed bookings and reviews
    total_earnings = Column(Numeric(12, 2), nullable=False, default=0)
    total_bookings = Column(Integer, nullable=False, default=0)
    average_rating = Column(Numeric(3, 2), nullable=True)
    review_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    # listings are soft-deleted; bookings keep referencing them
    deleted_at = Column(DateTime, nullable=True)

    owner = relationship("User", back_populates="spaces", foreign_keys=[owner_id])

    bookings = relationship("SpaceBooking", back_populates="space")


class SpaceBooking(Base):
    __tablename__ = "customer_space_bookings"
    __table_args__ = (
        Index("idx_dates", "start_time", "end_time"),
    )

    id = Column("booking_id", Integer, primary_key=True, index=True)

    space_id = Column(
        Integer,
        ForeignKey("customer_spaces.space_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    renter_id = Column(
        Integer,
        ForeignKey("users.user_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    # denormalized from the space at creation time
    owner_id = Column(
        Integer,
        ForeignKey("users.user_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # UTC instants
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)

    vehicle_reg = Column(String(20), nullable=True)
    vehicle_make = Column(String(100), nullable=True)
    vehicle_model = Column(String(100), nullable=True)
    vehicle_color = Column(String(50), nullable=True)

    # total_price = platform_fee + owner_payout, fixed at creation
    total_price = Column(Numeric(10, 2), nullable=False)
    platform_fee = Column(Numeric(10, 2), nullable=False, default=0)
    owner_payout = Column(Numeric(10, 2), nullable=False, default=0)

    booking_status = Column(String(20), nullable=False, default="pending", index=True)
    payment_status = Column(String(20), nullable=False, default="pending", index=True)
    stripe_payment_intent_id = Column(String(255), nullable=True, index=True)

    cancelled_by = Column(String(10), nullable=True)
    cancellation_reason = Column(String(500), nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    check_in_time = Column(DateTime, nullable=True)
    check_out_time = Column(DateTime, nullable=True)

    renter_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    space = relationship("Space", back_populates="bookings")


class SpaceReview(Base):
    __tablename__ = "customer_space_reviews"
    __table_args__ = (
        UniqueConstraint("booking_id", name="idx_booking_review"),
    )

    id = Column("review_id", Integer, primary_key=True, index=True)
    space_id = Column(
        Integer,
        ForeignKey("customer_spaces.space_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    booking_id = Column(
        Integer,
        ForeignKey("customer_space_bookings.booking_id", ondelete="CASCADE"),
        nullable=False,
    )
    reviewer_id = Column(
        Integer,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    rating = Column(SmallInteger, nullable=False)
    review_text = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Payment(Base):
    """Central payment record for every booking type."""

    __tablename__ = "payments"
    __table_args__ = (
        Index("idx_booking", "booking_type", "booking_id"),
    )

    id = Column("payment_id", Integer, primary_key=True, index=True)
    user_id = Column(
        Integer,
        ForeignKey("users.user_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # "garage" | "customer_space" | "airport"
    booking_type = Column(String(20), nullable=False)
    booking_id = Column(Integer, nullable=False, default=0)

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="GBP")

    stripe_payment_intent_id = Column(String(255), nullable=True, unique=True, index=True)
    stripe_customer_id = Column(String(255), nullable=True)

    status = Column(String(20), nullable=False, default="pending", index=True)
    failure_reason = Column(String(500), nullable=True)
    refund_amount = Column(Numeric(10, 2), nullable=True)
    refunded_at = Column(DateTime, nullable=True)

    # opaque key-value map
    metadata_json = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class GarageReservation(Base):
    """
    Garage reservations are owned by the garage system; only the fields that
    payment reconciliation touches are mapped here.
    """

    __tablename__ = "reservations"

    id = Column("reservation_id", Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False, default="pending")


class AirportBooking(Base):
    """Airport parking bookings, mapped for payment reconciliation only."""

    __tablename__ = "parking_bookings_live"

    id = Column("booking_id", Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    booking_status = Column(String(20), nullable=False, default="pending")
    payment_status = Column(String(20), nullable=False, default="pending")
    stripe_payment_intent_id = Column(String(255), nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
