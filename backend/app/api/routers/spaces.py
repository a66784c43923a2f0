from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import as_utc_naive, utcnow
from app.core.config import get_settings
from app.core.errors import NotFoundError, ValidationError
from app.db import crud_bookings, crud_spaces
from app.db.session import get_db
from app.schemas.booking import CalendarSlot, ReviewOut
from app.schemas.space import AMENITIES, QuoteOut, SpaceOut, SpaceSearchItem
from app.services.pricing import compute_duration, fee_rate_from_percent

router = APIRouter()


@router.get("")
async def search_spaces(
    city: Optional[str] = None,
    postcode: Optional[str] = None,
    max_price: Optional[Decimal] = Query(None, gt=0),
    space_type: Optional[str] = None,
    amenities: Optional[str] = Query(None, description="comma separated"),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    radius: float = Query(10, gt=0, le=100),
    limit: int = Query(20, ge=1),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """
    Public search. Only active listings are returned.
    """
    wanted = [a.strip() for a in (amenities or "").split(",") if a.strip()]
    unknown = [a for a in wanted if a not in AMENITIES]
    if unknown:
        raise ValidationError(f"Unknown amenities: {', '.join(unknown)}")

    filters = {
        "city": city,
        "postcode": postcode,
        "max_price_hour": max_price,
        "space_type": space_type,
        "amenities": wanted,
        "latitude": lat,
        "longitude": lng,
        "radius": radius,
        "limit": limit,
        "offset": offset,
    }
    hits = await crud_spaces.search_spaces(db, filters)

    items = []
    for hit in hits:
        item = SpaceSearchItem.model_validate(hit.space)
        item.distance_miles = hit.distance_miles
        items.append(item)
    return {"success": True, "items": items, "count": len(items)}


@router.get("/{space_id}")
async def get_space(space_id: int, db: AsyncSession = Depends(get_db)):
    """Listing detail with its upcoming bookings calendar and latest reviews."""
    space = await crud_spaces.get_space(db, space_id)
    if space is None or space.status != "active":
        raise NotFoundError("Space not found", "space_not_found")

    calendar = await crud_spaces.list_upcoming_for_space(db, space_id, utcnow())
    reviews = await crud_bookings.list_reviews_for_space(db, space_id)
    return {
        "success": True,
        "data": SpaceOut.model_validate(space),
        "calendar": [CalendarSlot.model_validate(b) for b in calendar],
        "reviews": [ReviewOut.model_validate(r) for r in reviews],
    }


@router.get("/{space_id}/quote")
async def quote(
    space_id: int,
    start_time: datetime,
    end_time: datetime,
    db: AsyncSession = Depends(get_db),
):
    settings = get_settings()
    q = await crud_bookings.quote_booking(
        db,
        space_id,
        as_utc_naive(start_time),
        as_utc_naive(end_time),
        fee_rate_from_percent(settings.PLATFORM_FEE_PERCENT),
    )
    return {"success": True, "data": QuoteOut(**q.to_dict())}


@router.get("/{space_id}/availability")
async def availability(
    space_id: int,
    start_time: datetime,
    end_time: datetime,
    db: AsyncSession = Depends(get_db),
):
    start, end = as_utc_naive(start_time), as_utc_naive(end_time)
    compute_duration(start, end)

    if await crud_spaces.get_space(db, space_id) is None:
        raise NotFoundError("Space not found", "space_not_found")
    available = await crud_spaces.is_available(db, space_id, start, end)
    return {"success": True, "available": available}
