from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_current_user
from app.core.config import get_settings
from app.db import crud_bookings
from app.db.session import get_db
from app.schemas.booking import (
    BookingCreate,
    BookingOut,
    CancelRequest,
    ReviewCreate,
    ReviewOut,
    StatusUpdate,
)
from app.services import payments as payment_service
from app.services.payment_gateway import PaymentGateway, get_payment_gateway
from app.services.pricing import fee_rate_from_percent

router = APIRouter()


@router.post("", status_code=201)
async def create_booking(
    body: BookingCreate,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
):
    settings = get_settings()
    booking = await crud_bookings.create_booking(
        db,
        space_id=body.space_id,
        renter_id=current_user.id,
        start_time=body.start_time,
        end_time=body.end_time,
        vehicle_reg=body.vehicle_reg,
        vehicle_make=body.vehicle_make,
        vehicle_model=body.vehicle_model,
        vehicle_color=body.vehicle_color,
        renter_notes=body.renter_notes,
        fee_rate=fee_rate_from_percent(settings.PLATFORM_FEE_PERCENT),
    )
    return {"success": True, "data": BookingOut.model_validate(booking)}


@router.get("")
async def list_bookings(
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
):
    bookings = await crud_bookings.list_for_renter(db, current_user.id, status)
    upcoming = await crud_bookings.upcoming_count(db, current_user.id, role="renter")
    return {
        "success": True,
        "items": [BookingOut.model_validate(b) for b in bookings],
        "upcoming": upcoming,
    }


@router.get("/{booking_id}")
async def get_booking(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
):
    booking = await crud_bookings.get_booking_for_party(db, booking_id, current_user.id)
    return {"success": True, "data": BookingOut.model_validate(booking)}


@router.post("/{booking_id}/cancel")
async def cancel_booking(
    booking_id: int,
    body: CancelRequest,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    result = await payment_service.cancel_booking_with_refund(
        db, gateway, booking_id, current_user, body.reason
    )
    return {
        "success": True,
        "data": BookingOut.model_validate(result["booking"]),
        "refund_amount": result["refund_amount"],
        "refund_eligible": result["refund_eligible"],
        "refund_status": result["refund_status"],
    }


@router.patch("/{booking_id}/status")
async def update_status(
    booking_id: int,
    body: StatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Check-in (active), check-out (completed) or dispute. A cancel sent here
    takes the same refund path as /cancel.
    """
    if body.status == "cancelled":
        result = await payment_service.cancel_booking_with_refund(
            db, gateway, booking_id, current_user, body.reason
        )
        booking = result["booking"]
    else:
        booking = await crud_bookings.update_status(
            db, booking_id, body.status, current_user.id, body.reason
        )
    return {"success": True, "data": BookingOut.model_validate(booking)}


@router.post("/{booking_id}/review", status_code=201)
async def review_booking(
    booking_id: int,
    body: ReviewCreate,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
):
    review = await crud_bookings.add_review(
        db, booking_id, current_user.id, body.rating, body.review_text
    )
    return {"success": True, "data": ReviewOut.model_validate(review)}
