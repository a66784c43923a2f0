# app/db/crud_spaces.py
import json
import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from geopy.distance import great_circle
from sqlalchemy import String, and_, cast, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.core.errors import AccessDeniedError, ConflictError, NotFoundError, ValidationError
from app.db.models import (
    OPEN_BOOKING_STATUSES,
    TERMINAL_BOOKING_STATUSES,
    Space,
    SpaceBooking,
    SpaceReview,
)
from app.services.pricing import to_money

MAX_PHOTOS = 6
MAX_SEARCH_LIMIT = 100
DEFAULT_RADIUS_MILES = 10.0
MILES_PER_DEGREE_LAT = 69.0

UPDATABLE_FIELDS = (
    "space_name",
    "space_type",
    "address_line1",
    "address_line2",
    "city",
    "postcode",
    "latitude",
    "longitude",
    "description",
    "amenities",
    "instructions",
    "price_per_hour",
    "price_per_day",
    "min_booking_hours",
    "max_booking_days",
    "photos",
)

# an explicit None clears these; the rest are required columns
CLEARABLE_FIELDS = ("address_line2", "latitude", "longitude", "description", "instructions", "price_per_day")


@dataclass
class SpaceHit:
    space: Space
    distance_miles: Optional[float] = None


def _check_photos(photos: Optional[List[str]]) -> None:
    if photos is not None and len(photos) > MAX_PHOTOS:
        raise ValidationError(f"Maximum {MAX_PHOTOS} photos allowed")


async def get_space(db: AsyncSession, space_id: int, *, for_update: bool = False) -> Space | None:
    stmt = select(Space).where(Space.id == space_id, Space.deleted_at.is_(None))
    if for_update:
        stmt = stmt.with_for_update()
    res = await db.execute(stmt)
    return res.scalar_one_or_none()


async def get_owned_space(db: AsyncSession, space_id: int, owner_id: int) -> Space:
    space = await get_space(db, space_id)
    if space is None:
        raise NotFoundError("Space not found", "space_not_found")
    if space.owner_id != owner_id:
        raise AccessDeniedError()
    return space


async def list_spaces_for_owner(db: AsyncSession, owner_id: int) -> List[Space]:
    """
    Owner dashboard: ALL their listings, regardless of moderation status.
    """
    res = await db.execute(
        select(Space)
        .where(Space.owner_id == owner_id, Space.deleted_at.is_(None))
        .order_by(Space.created_at.desc(), Space.id.desc())
    )
    return list(res.scalars().all())


async def create_space(db: AsyncSession, owner_id: int, **data: Any) -> Space:
    """
    New listings ALWAYS start as status='pending' until moderation activates them.
    """
    _check_photos(data.get("photos"))
    data.pop("status", None)
    space = Space(owner_id=owner_id, status="pending", **data)
    db.add(space)
    await db.commit()
    await db.refresh(space)
    return space


async def update_space(db: AsyncSession, space_id: int, owner_id: int, data: Dict[str, Any]) -> Space:
    space = await get_owned_space(db, space_id, owner_id)

    changes = {k: v for k, v in data.items() if k in UPDATABLE_FIELDS}
    if not changes:
        raise ValidationError("No fields to update")
    required = sorted(k for k, v in changes.items() if v is None and k not in CLEARABLE_FIELDS)
    if required:
        raise ValidationError(f"Cannot clear required fields: {', '.join(required)}")
    _check_photos(changes.get("photos"))

    for k, v in changes.items():
        setattr(space, k, v)
    db.add(space)
    await db.commit()
    await db.refresh(space)
    return space


async def set_paused(db: AsyncSession, space_id: int, owner_id: int, paused: bool) -> Space:
    """Pause or resume an active listing. Moderation states can't be toggled."""
    space = await get_owned_space(db, space_id, owner_id)
    if space.status not in ("active", "paused"):
        raise ConflictError(f"Space is {space.status} and cannot be paused or resumed", "invalid_transition")

    space.status = "paused" if paused else "active"
    db.add(space)
    await db.commit()
    await db.refresh(space)
    return space


async def delete_space(db: AsyncSession, space_id: int, owner_id: int) -> None:
    space = await get_owned_space(db, space_id, owner_id)

    res = await db.execute(
        select(func.count(SpaceBooking.id)).where(
            SpaceBooking.space_id == space_id,
            SpaceBooking.booking_status.in_(OPEN_BOOKING_STATUSES),
        )
    )
    if res.scalar_one() > 0:
        raise ConflictError("Cannot delete space with active bookings", "has_active_bookings")

    space.deleted_at = utcnow()
    db.add(space)
    await db.commit()


# ---------------------------
# Availability
# ---------------------------

async def is_available(
    db: AsyncSession,
    space_id: int,
    start: datetime,
    end: datetime,
    *,
    exclude_booking_id: Optional[int] = None,
) -> bool:
    """
    True iff no booking that still holds a slot overlaps [start, end).
    Two ranges overlap unless one ends at or before the other starts.
    """
    stmt = select(func.count(SpaceBooking.id)).where(
        SpaceBooking.space_id == space_id,
        SpaceBooking.booking_status.notin_(TERMINAL_BOOKING_STATUSES),
        SpaceBooking.end_time > start,
        SpaceBooking.start_time < end,
    )
    if exclude_booking_id is not None:
        stmt = stmt.where(SpaceBooking.id != exclude_booking_id)
    res = await db.execute(stmt)
    return res.scalar_one() == 0


async def list_upcoming_for_space(db: AsyncSession, space_id: int, from_time: datetime) -> List[SpaceBooking]:
    """Calendar view: open bookings that have not finished before ``from_time``."""
    res = await db.execute(
        select(SpaceBooking)
        .where(
            SpaceBooking.space_id == space_id,
            SpaceBooking.booking_status.notin_(TERMINAL_BOOKING_STATUSES),
            SpaceBooking.end_time >= from_time,
        )
        .order_by(SpaceBooking.start_time.asc())
    )
    return list(res.scalars().all())


# ---------------------------
# Search
# ---------------------------

def _bounding_box(lat: float, lng: float, radius: float) -> tuple[float, float, float, float]:
    lat_delta = radius / MILES_PER_DEGREE_LAT
    cos_lat = math.cos(math.radians(lat))
    lng_delta = 180.0 if abs(cos_lat) < 1e-6 else radius / (MILES_PER_DEGREE_LAT * cos_lat)
    return lat - lat_delta, lat + lat_delta, lng - abs(lng_delta), lng + abs(lng_delta)


def _has_amenity(db: AsyncSession, amenity: str):
    if db.get_bind().dialect.name == "mysql":
        return func.json_contains(Space.amenities, json.dumps(amenity)) == 1
    # SQLite and others: the JSON array text contains the quoted token
    return cast(Space.amenities, String).like(f'%"{amenity}"%')


async def search_spaces(db: AsyncSession, filters: dict | None = None) -> List[SpaceHit]:
    """
    Public search: ALWAYS active listings only.

    With latitude/longitude the results are the spaces within ``radius``
    miles, nearest first. Otherwise they are ranked by rating, then by
    number of completed bookings.
    """
    filters = filters or {}
    where_clauses = [
        Space.status == "active",
        Space.deleted_at.is_(None),
    ]

    if filters.get("city"):
        where_clauses.append(Space.city.ilike(f"%{filters['city']}%"))
    if filters.get("postcode"):
        where_clauses.append(Space.postcode.ilike(f"{filters['postcode']}%"))
    if filters.get("max_price_hour") is not None:
        where_clauses.append(Space.price_per_hour <= Decimal(str(filters["max_price_hour"])))
    if filters.get("space_type"):
        where_clauses.append(Space.space_type == filters["space_type"])
    for amenity in filters.get("amenities") or []:
        where_clauses.append(_has_amenity(db, amenity))

    limit = min(int(filters.get("limit") or 20), MAX_SEARCH_LIMIT)
    offset = max(int(filters.get("offset") or 0), 0)

    lat, lng = filters.get("latitude"), filters.get("longitude")
    if lat is not None and lng is not None:
        lat, lng = float(lat), float(lng)
        radius = float(filters.get("radius") or DEFAULT_RADIUS_MILES)
        min_lat, max_lat, min_lng, max_lng = _bounding_box(lat, lng, radius)
        where_clauses += [
            Space.latitude.isnot(None),
            Space.longitude.isnot(None),
            Space.latitude.between(min_lat, max_lat),
            Space.longitude.between(min_lng, max_lng),
        ]
        res = await db.execute(select(Space).where(and_(*where_clauses)))

        hits = []
        for space in res.scalars().all():
            miles = great_circle((lat, lng), (float(space.latitude), float(space.longitude))).miles
            if miles <= radius:
                hits.append(SpaceHit(space=space, distance_miles=round(miles, 2)))
        hits.sort(key=lambda h: h.distance_miles)
        return hits[offset:offset + limit]

    stmt = (
        select(Space)
        .where(and_(*where_clauses))
        .order_by(Space.average_rating.desc(), Space.total_bookings.desc(), Space.id.desc())
        .offset(offset)
        .limit(limit)
    )
    res = await db.execute(stmt)
    return [SpaceHit(space=s) for s in res.scalars().all()]


# ---------------------------
# Earnings
# ---------------------------

def _month_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


async def get_owner_earnings(db: AsyncSession, owner_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    month_start, month_end = _month_bounds(now)

    totals = (
        await db.execute(
            select(
                func.coalesce(func.sum(Space.total_earnings), 0),
                func.coalesce(func.sum(Space.total_bookings), 0),
                func.count(Space.id),
            ).where(Space.owner_id == owner_id, Space.deleted_at.is_(None))
        )
    ).one()

    pending = (
        await db.execute(
            select(func.coalesce(func.sum(SpaceBooking.owner_payout), 0)).where(
                SpaceBooking.owner_id == owner_id,
                SpaceBooking.payment_status == "paid",
                SpaceBooking.booking_status.in_(("completed", "active")),
            )
        )
    ).scalar_one()

    month = (
        await db.execute(
            select(func.coalesce(func.sum(SpaceBooking.owner_payout), 0)).where(
                SpaceBooking.owner_id == owner_id,
                SpaceBooking.payment_status == "paid",
                SpaceBooking.created_at >= month_start,
                SpaceBooking.created_at < month_end,
            )
        )
    ).scalar_one()

    return {
        "total_earnings": to_money(totals[0]),
        "total_bookings": int(totals[1]),
        "total_spaces": int(totals[2]),
        "pending_payout": to_money(pending),
        "month_earnings": to_money(month),
    }


async def get_earnings_by_space(db: AsyncSession, owner_id: int, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    now = now or utcnow()
    month_start, month_end = _month_bounds(now)

    month_sq = (
        select(func.coalesce(func.sum(SpaceBooking.owner_payout), 0))
        .where(
            SpaceBooking.space_id == Space.id,
            SpaceBooking.payment_status == "paid",
            SpaceBooking.created_at >= month_start,
            SpaceBooking.created_at < month_end,
        )
        .scalar_subquery()
    )
    open_sq = (
        select(func.count(SpaceBooking.id))
        .where(
            SpaceBooking.space_id == Space.id,
            SpaceBooking.booking_status.in_(OPEN_BOOKING_STATUSES),
        )
        .scalar_subquery()
    )

    res = await db.execute(
        select(Space, month_sq.label("month_earnings"), open_sq.label("active_bookings"))
        .where(Space.owner_id == owner_id, Space.deleted_at.is_(None))
        .order_by(Space.total_earnings.desc())
    )
    return [
        {
            "space_id": space.id,
            "space_name": space.space_name,
            "city": space.city,
            "status": space.status,
            "total_earnings": to_money(space.total_earnings),
            "total_bookings": space.total_bookings,
            "average_rating": space.average_rating,
            "month_earnings": to_money(month_earnings),
            "active_bookings": int(active_bookings),
        }
        for space, month_earnings, active_bookings in res.all()
    ]


def _period_key(created_at: datetime, period: str) -> tuple[tuple[int, int], str]:
    if period == "week":
        year, week, _ = created_at.isocalendar()
        return (year, week), f"{year} W{week:02d}"
    if period == "year":
        return (created_at.year, 0), str(created_at.year)
    return (created_at.year, created_at.month), created_at.strftime("%b %Y")


async def get_earnings_by_period(db: AsyncSession, owner_id: int, period: str = "month") -> List[Dict[str, Any]]:
    """
    Paid owner payouts bucketed by week / month / year: last 12 buckets, oldest first.
    """
    if period not in ("week", "month", "year"):
        raise ValidationError("Period must be one of: week, month, year")

    res = await db.execute(
        select(SpaceBooking.created_at, SpaceBooking.owner_payout, SpaceBooking.platform_fee).where(
            SpaceBooking.owner_id == owner_id,
            SpaceBooking.payment_status == "paid",
        )
    )

    buckets: Dict[tuple[int, int], Dict[str, Any]] = {}
    for created_at, payout, fee in res.all():
        key, label = _period_key(created_at, period)
        bucket = buckets.setdefault(
            key,
            {"period_label": label, "earnings": Decimal("0.00"), "bookings": 0, "platform_fees": Decimal("0.00")},
        )
        bucket["earnings"] += to_money(payout)
        bucket["platform_fees"] += to_money(fee)
        bucket["bookings"] += 1

    latest = sorted(buckets)[-12:]
    return [buckets[k] for k in latest]


# ---------------------------
# Ratings
# ---------------------------

async def refresh_rating(db: AsyncSession, space_id: int) -> None:
    """Recompute average_rating / review_count from the reviews table. Caller commits."""
    avg, count = (
        await db.execute(
            select(func.avg(SpaceReview.rating), func.count(SpaceReview.id)).where(
                SpaceReview.space_id == space_id
            )
        )
    ).one()

    res = await db.execute(select(Space).where(Space.id == space_id))
    space = res.scalar_one_or_none()
    if space is None:
        return
    space.average_rating = to_money(avg) if avg is not None else None
    space.review_count = int(count)
    db.add(space)
