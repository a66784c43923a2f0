# backend/app/schemas/space.py
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from app.db.models import SPACE_TYPES

AMENITIES = (
    "covered",
    "cctv",
    "ev_charging",
    "24_7_access",
    "disabled_access",
    "security_lighting",
)


def _check_amenities(value: Optional[List[str]]) -> Optional[List[str]]:
    if value is None:
        return value
    unknown = [a for a in value if a not in AMENITIES]
    if unknown:
        raise ValueError(f"Unknown amenities: {', '.join(unknown)}")
    # keep order, drop repeats
    return list(dict.fromkeys(value))


class SpaceCreate(BaseModel):
    space_name: str = Field(..., min_length=1, max_length=255)
    space_type: str = "driveway"
    address_line1: str = Field(..., min_length=1, max_length=255)
    address_line2: Optional[str] = None
    city: str = Field(..., min_length=1, max_length=100)
    postcode: str = Field(..., min_length=1, max_length=20)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    description: Optional[str] = None
    instructions: Optional[str] = None
    amenities: List[str] = []
    photos: List[str] = Field(default_factory=list, max_length=6)
    price_per_hour: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    price_per_day: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    min_booking_hours: int = Field(1, ge=1)
    max_booking_days: int = Field(30, ge=1)

    @field_validator("space_type")
    @classmethod
    def known_type(cls, v: str) -> str:
        if v not in SPACE_TYPES:
            raise ValueError(f"space_type must be one of: {', '.join(SPACE_TYPES)}")
        return v

    @field_validator("amenities")
    @classmethod
    def known_amenities(cls, v):
        return _check_amenities(v)


class SpaceUpdate(BaseModel):
    """Partial update; fields left out are not touched."""

    space_name: Optional[str] = Field(None, min_length=1, max_length=255)
    space_type: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    postcode: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    description: Optional[str] = None
    instructions: Optional[str] = None
    amenities: Optional[List[str]] = None
    photos: Optional[List[str]] = Field(None, max_length=6)
    price_per_hour: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    price_per_day: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    min_booking_hours: Optional[int] = Field(None, ge=1)
    max_booking_days: Optional[int] = Field(None, ge=1)

    @field_validator("space_type")
    @classmethod
    def known_type(cls, v):
        if v is not None and v not in SPACE_TYPES:
            raise ValueError(f"space_type must be one of: {', '.join(SPACE_TYPES)}")
        return v

    @field_validator("amenities")
    @classmethod
    def known_amenities(cls, v):
        return _check_amenities(v)


class SpaceOut(BaseModel):
    id: int
    owner_id: int
    space_name: str
    space_type: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    postcode: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    description: Optional[str] = None
    instructions: Optional[str] = None
    amenities: List[str] = []
    photos: List[str] = []
    price_per_hour: Decimal
    price_per_day: Optional[Decimal] = None
    min_booking_hours: int
    max_booking_days: int
    status: str
    rejection_reason: Optional[str] = None
    total_earnings: Decimal
    total_bookings: int
    average_rating: Optional[Decimal] = None
    review_count: int = 0
    created_at: datetime

    model_config = {"from_attributes": True}


class SpaceSearchItem(SpaceOut):
    distance_miles: Optional[float] = None


class PauseRequest(BaseModel):
    paused: bool


class QuoteOut(BaseModel):
    hours: float
    hourly_rate: Decimal
    daily_rate: Decimal
    subtotal: Decimal
    service_fee: Decimal
    total: Decimal


class EarningsOut(BaseModel):
    total_earnings: Decimal
    total_bookings: int
    total_spaces: int
    pending_payout: Decimal
    month_earnings: Decimal


class SpaceEarningsOut(BaseModel):
    space_id: int
    space_name: str
    city: str
    status: str
    total_earnings: Decimal
    total_bookings: int
    average_rating: Optional[Decimal] = None
    month_earnings: Decimal
    active_bookings: int


class PeriodEarningsOut(BaseModel):
    period_label: str
    earnings: Decimal
    bookings: int
    platform_fees: Decimal
