# backend/app/schemas/booking.py
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from app.core.clock import as_utc_naive


class BookingCreate(BaseModel):
    space_id: int
    start_time: datetime
    end_time: datetime
    vehicle_reg: Optional[str] = Field(None, max_length=20)
    vehicle_make: Optional[str] = Field(None, max_length=100)
    vehicle_model: Optional[str] = Field(None, max_length=100)
    vehicle_color: Optional[str] = Field(None, max_length=50)
    renter_notes: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def to_utc(cls, v: datetime) -> datetime:
        return as_utc_naive(v)


class BookingOut(BaseModel):
    id: int
    space_id: int
    renter_id: int
    owner_id: int
    start_time: datetime
    end_time: datetime
    vehicle_reg: Optional[str] = None
    vehicle_make: Optional[str] = None
    vehicle_model: Optional[str] = None
    vehicle_color: Optional[str] = None
    total_price: Decimal
    platform_fee: Decimal
    owner_payout: Decimal
    booking_status: str
    payment_status: str
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    check_in_time: Optional[datetime] = None
    check_out_time: Optional[datetime] = None
    renter_notes: Optional[str] = None
    created_at: datetime

    # Pydantic v2 style – replaces orm_mode=True
    model_config = {"from_attributes": True}


class CalendarSlot(BaseModel):
    """What the public calendar shows of other people's bookings."""

    start_time: datetime
    end_time: datetime
    booking_status: str

    model_config = {"from_attributes": True}


class StatusUpdate(BaseModel):
    status: str
    reason: Optional[str] = Field(None, max_length=500)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review_text: Optional[str] = None


class ReviewOut(BaseModel):
    id: int
    space_id: int
    booking_id: int
    reviewer_id: int
    rating: int
    review_text: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}
