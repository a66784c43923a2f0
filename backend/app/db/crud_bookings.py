# app/db/crud_bookings.py

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.core.errors import (
    AccessDeniedError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from app.db import crud_spaces
from app.db.models import BOOKING_STATUSES, Space, SpaceBooking, SpaceReview
from app.services.pricing import (
    DEFAULT_FEE_RATE,
    PriceQuote,
    RefundDecision,
    build_quote,
    compute_duration,
    compute_price,
    compute_refund,
    split_platform_fee,
)

logger = logging.getLogger(__name__)

# current status -> statuses a renter or owner may move it to.
# pending -> confirmed only happens through update_payment_status.
ALLOWED_TRANSITIONS = {
    "pending": ("cancelled", "disputed"),
    "confirmed": ("active", "cancelled", "disputed"),
    "active": ("completed", "cancelled", "disputed"),
    "completed": (),
    "cancelled": (),
    # waits for manual intervention
    "disputed": (),
}

NOT_CANCELLABLE = ("cancelled", "completed", "disputed")
# check-in and check-out need a collected payment
REQUIRES_PAYMENT = ("active", "completed")


async def get_booking(db: AsyncSession, booking_id: int, *, for_update: bool = False) -> Optional[SpaceBooking]:
    stmt = select(SpaceBooking).where(SpaceBooking.id == booking_id)
    if for_update:
        stmt = stmt.with_for_update()
    res = await db.execute(stmt)
    return res.scalar_one_or_none()


async def get_booking_for_party(db: AsyncSession, booking_id: int, user_id: int) -> SpaceBooking:
    """Booking visible to its renter or the space owner; anybody else gets AccessDenied."""
    booking = await get_booking(db, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found", "booking_not_found")
    if user_id not in (booking.renter_id, booking.owner_id):
        raise AccessDeniedError()
    return booking


async def quote_booking(
    db: AsyncSession,
    space_id: int,
    start_time: datetime,
    end_time: datetime,
    fee_rate: Decimal = DEFAULT_FEE_RATE,
) -> PriceQuote:
    space = await crud_spaces.get_space(db, space_id)
    if space is None:
        raise NotFoundError("Space not found", "space_not_found")
    return build_quote(start_time, end_time, space.price_per_hour, space.price_per_day, fee_rate)


async def create_booking(
    db: AsyncSession,
    *,
    space_id: int,
    renter_id: int,
    start_time: datetime,
    end_time: datetime,
    vehicle_reg: Optional[str] = None,
    vehicle_make: Optional[str] = None,
    vehicle_model: Optional[str] = None,
    vehicle_color: Optional[str] = None,
    renter_notes: Optional[str] = None,
    now: Optional[datetime] = None,
    fee_rate: Decimal = DEFAULT_FEE_RATE,
) -> SpaceBooking:
    """
    Create a pending booking.

    The space row is locked for the rest of the transaction, so the status
    check, the overlap check and the insert are one unit of work. A second
    booker for the same space waits on the lock and then sees this booking.
    """
    now = now or utcnow()
    hours = compute_duration(start_time, end_time)

    try:
        space = await crud_spaces.get_space(db, space_id, for_update=True)
        if space is None:
            raise NotFoundError("Space not found", "space_not_found")
        if space.status != "active":
            raise ConflictError("Space is not available for booking", "unavailable")
        if space.owner_id == renter_id:
            raise ValidationError("You cannot book your own space")
        if start_time < now:
            raise ValidationError("Start time cannot be in the past")
        if hours < space.min_booking_hours:
            raise ValidationError(f"Minimum booking is {space.min_booking_hours} hour(s)")
        if hours > space.max_booking_days * 24:
            raise ValidationError(f"Maximum booking is {space.max_booking_days} day(s)")

        if not await crud_spaces.is_available(db, space_id, start_time, end_time):
            raise ConflictError("Space is not available for the selected times", "overlap")

        total = compute_price(hours, space.price_per_hour, space.price_per_day)
        platform_fee, owner_payout = split_platform_fee(total, fee_rate)

        booking = SpaceBooking(
            space_id=space.id,
            renter_id=renter_id,
            owner_id=space.owner_id,
            start_time=start_time,
            end_time=end_time,
            vehicle_reg=vehicle_reg.upper() if vehicle_reg else None,
            vehicle_make=vehicle_make,
            vehicle_model=vehicle_model,
            vehicle_color=vehicle_color,
            total_price=total,
            platform_fee=platform_fee,
            owner_payout=owner_payout,
            booking_status="pending",
            payment_status="pending",
            renter_notes=renter_notes,
        )
        db.add(booking)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(booking)
    logger.info("booking created (%s)", total, extra={"booking_id": booking.id, "space_id": space_id})
    return booking


async def list_for_renter(db: AsyncSession, renter_id: int, status: Optional[str] = None) -> List[SpaceBooking]:
    stmt = select(SpaceBooking).where(SpaceBooking.renter_id == renter_id)
    if status:
        stmt = stmt.where(SpaceBooking.booking_status == status)
    res = await db.execute(stmt.order_by(SpaceBooking.start_time.desc()))
    return list(res.scalars().all())


async def list_for_owner(db: AsyncSession, owner_id: int, status: Optional[str] = None) -> List[SpaceBooking]:
    """
    All bookings on spaces owned by owner_id
    """
    stmt = select(SpaceBooking).where(SpaceBooking.owner_id == owner_id)
    if status:
        stmt = stmt.where(SpaceBooking.booking_status == status)
    res = await db.execute(stmt.order_by(SpaceBooking.start_time.desc()))
    return list(res.scalars().all())


async def upcoming_count(db: AsyncSession, user_id: int, role: str = "renter", now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    party = SpaceBooking.owner_id if role == "owner" else SpaceBooking.renter_id
    res = await db.execute(
        select(func.count(SpaceBooking.id)).where(
            party == user_id,
            SpaceBooking.booking_status.in_(("pending", "confirmed")),
            SpaceBooking.start_time > now,
        )
    )
    return res.scalar_one()


def _apply_transition(
    booking: SpaceBooking,
    new_status: str,
    acting_user_id: int,
    reason: Optional[str],
    now: datetime,
) -> None:
    booking.booking_status = new_status
    if new_status == "active":
        booking.check_in_time = now
    elif new_status == "completed":
        booking.check_out_time = now
    elif new_status == "cancelled":
        booking.cancelled_by = "renter" if acting_user_id == booking.renter_id else "owner"
        booking.cancellation_reason = reason
        booking.cancelled_at = now


async def _credit_space(db: AsyncSession, booking: SpaceBooking) -> None:
    res = await db.execute(select(Space).where(Space.id == booking.space_id).with_for_update())
    space = res.scalar_one()
    space.total_earnings = (space.total_earnings or Decimal("0")) + booking.owner_payout
    space.total_bookings = (space.total_bookings or 0) + 1
    db.add(space)


async def update_status(
    db: AsyncSession,
    booking_id: int,
    new_status: str,
    acting_user_id: int,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SpaceBooking:
    """
    Move a booking along its lifecycle.

    Entering ``completed`` credits the space with the owner payout and one
    booking, in the same transaction as the status change.
    """
    if new_status not in BOOKING_STATUSES:
        raise ValidationError(f"Unknown booking status '{new_status}'")
    now = now or utcnow()

    try:
        booking = await get_booking(db, booking_id, for_update=True)
        if booking is None:
            raise NotFoundError("Booking not found", "booking_not_found")
        if acting_user_id not in (booking.renter_id, booking.owner_id):
            raise AccessDeniedError()
        if new_status not in ALLOWED_TRANSITIONS[booking.booking_status]:
            raise ConflictError(
                f"Cannot change booking from {booking.booking_status} to {new_status}",
                "invalid_transition",
            )
        if new_status in REQUIRES_PAYMENT and booking.payment_status != "paid":
            raise ConflictError("Booking has not been paid", "payment_required")

        _apply_transition(booking, new_status, acting_user_id, reason, now)
        if new_status == "completed":
            await _credit_space(db, booking)

        db.add(booking)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(booking)
    return booking


async def cancel_booking(
    db: AsyncSession,
    booking_id: int,
    acting_user_id: int,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
    *,
    full_refund_hours: float = 24,
    partial_refund_hours: float = 6,
) -> tuple[SpaceBooking, RefundDecision]:
    """
    Cancel a booking and work out what the renter gets back.

    Only the status change is made here; issuing the refund with the payment
    provider is up to the caller, after this has committed.
    """
    now = now or utcnow()

    try:
        booking = await get_booking(db, booking_id, for_update=True)
        if booking is None:
            raise NotFoundError("Booking not found", "booking_not_found")
        if acting_user_id not in (booking.renter_id, booking.owner_id):
            raise AccessDeniedError()
        if booking.booking_status in NOT_CANCELLABLE:
            raise ConflictError(f"Booking is already {booking.booking_status}", "not_cancellable")

        decision = compute_refund(
            booking.total_price,
            booking.payment_status,
            booking.start_time,
            now,
            full_refund_hours=full_refund_hours,
            partial_refund_hours=partial_refund_hours,
        )
        _apply_transition(booking, "cancelled", acting_user_id, reason, now)
        db.add(booking)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(booking)
    logger.info(
        "booking cancelled by %s, refund due %s",
        booking.cancelled_by,
        decision.amount,
        extra={"booking_id": booking.id},
    )
    return booking, decision


async def update_payment_status(
    db: AsyncSession,
    booking_id: int,
    payment_status: str,
    payment_intent_id: Optional[str] = None,
) -> Optional[SpaceBooking]:
    """
    Record a payment outcome on a booking.

    ``paid`` confirms a pending booking. It never moves a booking that has
    already gone past pending, and a paid booking is not marked paid twice.
    Returns None when the booking doesn't exist. Caller commits.
    """
    booking = await get_booking(db, booking_id, for_update=True)
    if booking is None:
        return None

    if payment_status == "paid":
        if booking.payment_status != "pending" and booking.payment_status != "failed":
            return booking
        booking.payment_status = "paid"
        if booking.booking_status == "pending":
            booking.booking_status = "confirmed"
    else:
        booking.payment_status = payment_status

    if payment_intent_id:
        booking.stripe_payment_intent_id = payment_intent_id
    db.add(booking)
    return booking


async def attach_payment_intent(db: AsyncSession, booking: SpaceBooking, payment_intent_id: str) -> SpaceBooking:
    booking.stripe_payment_intent_id = payment_intent_id
    db.add(booking)
    await db.commit()
    await db.refresh(booking)
    return booking


# ---------------------------
# Reviews
# ---------------------------

async def add_review(
    db: AsyncSession,
    booking_id: int,
    reviewer_id: int,
    rating: int,
    review_text: Optional[str] = None,
) -> SpaceReview:
    if not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5")

    booking = await get_booking(db, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found", "booking_not_found")
    if booking.renter_id != reviewer_id:
        raise AccessDeniedError("Only the renter can review this booking")
    if booking.booking_status != "completed":
        raise ConflictError("Only completed bookings can be reviewed", "invalid_transition")

    res = await db.execute(select(SpaceReview.id).where(SpaceReview.booking_id == booking_id))
    if res.scalar_one_or_none() is not None:
        raise ConflictError("This booking has already been reviewed", "already_reviewed")

    review = SpaceReview(
        space_id=booking.space_id,
        booking_id=booking.id,
        reviewer_id=reviewer_id,
        rating=rating,
        review_text=review_text,
    )
    db.add(review)
    await db.flush()
    await crud_spaces.refresh_rating(db, booking.space_id)
    await db.commit()
    await db.refresh(review)
    return review


async def list_reviews_for_space(db: AsyncSession, space_id: int, limit: int = 20) -> List[SpaceReview]:
    res = await db.execute(
        select(SpaceReview)
        .where(SpaceReview.space_id == space_id)
        .order_by(SpaceReview.created_at.desc(), SpaceReview.id.desc())
        .limit(limit)
    )
    return list(res.scalars().all())
