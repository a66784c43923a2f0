from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.db import crud_bookings, crud_spaces
from app.services.pricing import InvalidRange
from factories import later, make_booking, make_space, make_user

DAY = datetime(2030, 3, 4)


def at(hour: int) -> datetime:
    return DAY + timedelta(hours=hour)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "start,end,free",
    [
        (9, 11, False),   # covers the existing start
        (11, 14, False),  # covers the existing end
        (10, 13, False),  # identical
        (11, 12, False),  # inside
        (8, 14, False),   # around
        (7, 10, True),    # ends where it starts
        (13, 15, True),   # starts where it ends
    ],
)
async def test_overlap_relationships(db, start, end, free):
    owner = await make_user(db)
    renter = await make_user(db)
    space = await make_space(db, owner)
    await make_booking(db, space, renter, at(10), at(13), booking_status="confirmed")

    assert await crud_spaces.is_available(db, space.id, at(start), at(end)) is free


@pytest.mark.asyncio
@pytest.mark.parametrize("status,blocks", [
    ("pending", True),
    ("confirmed", True),
    ("active", True),
    ("disputed", True),
    ("cancelled", False),
    ("completed", False),
])
async def test_only_live_bookings_block(db, status, blocks):
    owner = await make_user(db)
    renter = await make_user(db)
    space = await make_space(db, owner)
    await make_booking(db, space, renter, at(10), at(12), booking_status=status)

    assert await crud_spaces.is_available(db, space.id, at(10), at(12)) is (not blocks)


@pytest.mark.asyncio
async def test_other_spaces_do_not_block(db):
    owner = await make_user(db)
    renter = await make_user(db)
    a = await make_space(db, owner)
    b = await make_space(db, owner)
    await make_booking(db, a, renter, at(10), at(12), booking_status="confirmed")

    assert await crud_spaces.is_available(db, b.id, at(10), at(12))


@pytest.mark.asyncio
async def test_exclude_booking_id(db):
    owner = await make_user(db)
    renter = await make_user(db)
    space = await make_space(db, owner)
    booking = await make_booking(db, space, renter, at(10), at(12), booking_status="confirmed")

    assert await crud_spaces.is_available(db, space.id, at(10), at(12), exclude_booking_id=booking.id)


# ---------------------------
# create_booking
# ---------------------------

@pytest.mark.asyncio
async def test_create_rejects_overlap_with_confirmed_booking(db):
    owner = await make_user(db)
    renter = await make_user(db)
    other = await make_user(db)
    space = await make_space(db, owner)
    start = later(48)
    await make_booking(db, space, other, start + timedelta(hours=1), start + timedelta(hours=3), booking_status="confirmed")

    with pytest.raises(ConflictError) as exc:
        await crud_bookings.create_booking(
            db, space_id=space.id, renter_id=renter.id,
            start_time=start, end_time=start + timedelta(hours=2),
        )
    assert exc.value.code == "overlap"


@pytest.mark.asyncio
async def test_create_prices_and_splits(db):
    owner = await make_user(db)
    renter = await make_user(db)
    space = await make_space(db, owner, price_per_hour=Decimal("5.00"))
    start = later(48)

    booking = await crud_bookings.create_booking(
        db, space_id=space.id, renter_id=renter.id,
        start_time=start, end_time=start + timedelta(hours=3),
        vehicle_reg="ab12 cde",
    )
    assert booking.total_price == Decimal("15.00")
    assert booking.platform_fee == Decimal("2.25")
    assert booking.owner_payout == Decimal("12.75")
    assert booking.owner_id == owner.id
    assert booking.booking_status == "pending"
    assert booking.payment_status == "pending"
    assert booking.vehicle_reg == "AB12 CDE"


@pytest.mark.asyncio
async def test_quote_and_create_agree(db):
    owner = await make_user(db)
    renter = await make_user(db)
    space = await make_space(db, owner, price_per_hour=Decimal("4.20"), price_per_day=Decimal("28.00"))
    start = later(72)
    end = start + timedelta(hours=11, minutes=15)

    quote = await crud_bookings.quote_booking(db, space.id, start, end)
    booking = await crud_bookings.create_booking(
        db, space_id=space.id, renter_id=renter.id, start_time=start, end_time=end
    )
    assert quote.booking_total_price == booking.total_price


@pytest.mark.asyncio
async def test_second_booking_after_first_is_rejected(db):
    owner = await make_user(db)
    r1 = await make_user(db)
    r2 = await make_user(db)
    space = await make_space(db, owner)
    owner_id, space_id, r2_id = owner.id, space.id, r2.id
    start = later(24)

    await crud_bookings.create_booking(
        db, space_id=space.id, renter_id=r1.id, start_time=start, end_time=start + timedelta(hours=2)
    )
    with pytest.raises(ConflictError):
        await crud_bookings.create_booking(
            db, space_id=space_id, renter_id=r2_id,
            start_time=start + timedelta(hours=1), end_time=start + timedelta(hours=4),
        )

    live = await crud_bookings.list_for_owner(db, owner_id)
    assert len(live) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["pending", "paused", "rejected"])
async def test_create_requires_active_space(db, status):
    owner = await make_user(db)
    renter = await make_user(db)
    space = await make_space(db, owner, status=status)
    start = later(24)

    with pytest.raises(ConflictError) as exc:
        await crud_bookings.create_booking(
            db, space_id=space.id, renter_id=renter.id, start_time=start, end_time=start + timedelta(hours=2)
        )
    assert exc.value.code == "unavailable"


@pytest.mark.asyncio
async def test_create_unknown_space(db):
    renter = await make_user(db)
    start = later(24)
    with pytest.raises(NotFoundError) as exc:
        await crud_bookings.create_booking(
            db, space_id=999, renter_id=renter.id, start_time=start, end_time=start + timedelta(hours=2)
        )
    assert exc.value.code == "space_not_found"


@pytest.mark.asyncio
async def test_create_validations(db):
    owner = await make_user(db)
    renter = await make_user(db)
    space = await make_space(db, owner, min_booking_hours=2, max_booking_days=1)
    start = later(24)
    # failed creates roll back and expire loaded rows
    space_id, owner_id, renter_id = space.id, owner.id, renter.id

    with pytest.raises(InvalidRange):
        await crud_bookings.create_booking(db, space_id=space_id, renter_id=renter_id, start_time=start, end_time=start)
    with pytest.raises(ValidationError, match="own space"):
        await crud_bookings.create_booking(
            db, space_id=space_id, renter_id=owner_id, start_time=start, end_time=start + timedelta(hours=3)
        )
    with pytest.raises(ValidationError, match="past"):
        await crud_bookings.create_booking(
            db, space_id=space_id, renter_id=renter_id,
            start_time=later(-5), end_time=later(-1),
        )
    with pytest.raises(ValidationError, match="Minimum"):
        await crud_bookings.create_booking(
            db, space_id=space_id, renter_id=renter_id, start_time=start, end_time=start + timedelta(hours=1)
        )
    with pytest.raises(ValidationError, match="Maximum"):
        await crud_bookings.create_booking(
            db, space_id=space_id, renter_id=renter_id, start_time=start, end_time=start + timedelta(hours=25)
        )


@pytest.mark.asyncio
async def test_calendar_lists_live_bookings_from_a_point(db):
    owner = await make_user(db)
    renter = await make_user(db)
    space = await make_space(db, owner)
    await make_booking(db, space, renter, at(1), at(2), booking_status="completed")
    await make_booking(db, space, renter, at(3), at(4), booking_status="cancelled")
    early = await make_booking(db, space, renter, at(5), at(6), booking_status="confirmed")
    late = await make_booking(db, space, renter, at(8), at(9), booking_status="pending")
    await make_booking(db, space, renter, at(-5), at(-4), booking_status="confirmed")

    slots = await crud_spaces.list_upcoming_for_space(db, space.id, at(0))
    assert [b.id for b in slots] == [early.id, late.id]
