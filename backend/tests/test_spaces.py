from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy.dialects import mysql

from app.core.errors import AccessDeniedError, ConflictError, NotFoundError, ValidationError
from app.db import crud_spaces
from factories import later, make_booking, make_space, make_user

NOW = datetime(2025, 6, 16, 12, 0)


def _listing(**kw):
    data = dict(
        space_name="Quiet driveway",
        space_type="driveway",
        address_line1="2 Acacia Avenue",
        city="Bristol",
        postcode="BS1 4DJ",
        price_per_hour=Decimal("3.00"),
        amenities=["cctv"],
        photos=[],
    )
    data.update(kw)
    return data


class TestOwnerListing:
    @pytest.mark.asyncio
    async def test_new_listing_is_pending(self, db):
        owner = await make_user(db)
        space = await crud_spaces.create_space(db, owner.id, **_listing(status="active"))
        assert space.status == "pending"
        assert space.owner_id == owner.id
        assert space.min_booking_hours == 1
        assert space.max_booking_days == 30

    @pytest.mark.asyncio
    async def test_too_many_photos(self, db):
        owner = await make_user(db)
        with pytest.raises(ValidationError):
            await crud_spaces.create_space(db, owner.id, **_listing(photos=[f"p{i}.jpg" for i in range(7)]))

    @pytest.mark.asyncio
    async def test_update_by_owner_only(self, db):
        owner = await make_user(db)
        other = await make_user(db)
        space = await make_space(db, owner)

        updated = await crud_spaces.update_space(
            db, space.id, owner.id, {"price_per_hour": Decimal("6.50"), "status": "active", "owner_id": other.id}
        )
        assert updated.price_per_hour == Decimal("6.50")
        assert updated.owner_id == owner.id

        with pytest.raises(AccessDeniedError):
            await crud_spaces.update_space(db, space.id, other.id, {"city": "Leeds"})
        with pytest.raises(ValidationError):
            await crud_spaces.update_space(db, space.id, owner.id, {"status": "paused"})

    @pytest.mark.asyncio
    async def test_optional_fields_can_be_cleared(self, db):
        owner = await make_user(db)
        space = await make_space(db, owner, price_per_day=Decimal("30.00"), address_line2="Flat 2")

        updated = await crud_spaces.update_space(
            db, space.id, owner.id, {"price_per_day": None, "address_line2": None, "city": "Leeds"}
        )
        assert updated.price_per_day is None
        assert updated.address_line2 is None
        assert updated.city == "Leeds"

    @pytest.mark.asyncio
    async def test_required_fields_cannot_be_cleared(self, db):
        owner = await make_user(db)
        space = await make_space(db, owner)
        space_id, owner_id = space.id, owner.id

        with pytest.raises(ValidationError) as exc:
            await crud_spaces.update_space(db, space_id, owner_id, {"price_per_hour": None, "city": None})
        assert exc.value.message == "Cannot clear required fields: city, price_per_hour"

        fresh = await crud_spaces.get_space(db, space_id)
        assert fresh.price_per_hour == Decimal("5.00")

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, db):
        owner = await make_user(db)
        space = await make_space(db, owner)

        space = await crud_spaces.set_paused(db, space.id, owner.id, True)
        assert space.status == "paused"
        space = await crud_spaces.set_paused(db, space.id, owner.id, False)
        assert space.status == "active"

    @pytest.mark.asyncio
    async def test_pending_listing_cannot_be_paused(self, db):
        owner = await make_user(db)
        space = await make_space(db, owner, status="pending")
        with pytest.raises(ConflictError):
            await crud_spaces.set_paused(db, space.id, owner.id, True)


class TestDelete:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["pending", "confirmed", "active"])
    async def test_open_bookings_block_delete(self, db, status):
        owner = await make_user(db)
        renter = await make_user(db)
        space = await make_space(db, owner)
        await make_booking(db, space, renter, later(24), later(26), booking_status=status)

        with pytest.raises(ConflictError) as exc:
            await crud_spaces.delete_space(db, space.id, owner.id)
        assert exc.value.code == "has_active_bookings"

    @pytest.mark.asyncio
    async def test_soft_delete_keeps_history(self, db):
        owner = await make_user(db)
        renter = await make_user(db)
        space = await make_space(db, owner)
        await make_booking(db, space, renter, later(-30), later(-28), booking_status="completed")

        await crud_spaces.delete_space(db, space.id, owner.id)
        assert space.deleted_at is not None
        assert await crud_spaces.get_space(db, space.id) is None
        assert await crud_spaces.list_spaces_for_owner(db, owner.id) == []

    @pytest.mark.asyncio
    async def test_delete_checks_owner(self, db):
        owner = await make_user(db)
        other = await make_user(db)
        space = await make_space(db, owner)
        with pytest.raises(AccessDeniedError):
            await crud_spaces.delete_space(db, space.id, other.id)
        with pytest.raises(NotFoundError):
            await crud_spaces.delete_space(db, 9999, owner.id)


class TestSearch:
    @pytest.mark.asyncio
    async def test_filters(self, db):
        owner = await make_user(db)
        cheap = await make_space(db, owner, city="London", postcode="SW1A 1AA", price_per_hour=Decimal("2.00"),
                                 amenities=["cctv", "covered"], space_type="garage")
        await make_space(db, owner, city="London", postcode="E1 6AN", price_per_hour=Decimal("9.00"), amenities=["cctv"])
        await make_space(db, owner, city="Leeds", postcode="LS1 1UR", price_per_hour=Decimal("1.00"))
        await make_space(db, owner, city="London", postcode="SW1A 2AA", status="paused")

        hits = await crud_spaces.search_spaces(db, {"city": "lond"})
        assert len(hits) == 2

        hits = await crud_spaces.search_spaces(db, {"postcode": "SW1A"})
        assert [h.space.id for h in hits] == [cheap.id]

        hits = await crud_spaces.search_spaces(db, {"city": "London", "max_price_hour": Decimal("5")})
        assert [h.space.id for h in hits] == [cheap.id]

        hits = await crud_spaces.search_spaces(db, {"amenities": ["cctv", "covered"]})
        assert [h.space.id for h in hits] == [cheap.id]

        hits = await crud_spaces.search_spaces(db, {"space_type": "garage"})
        assert [h.space.id for h in hits] == [cheap.id]

    def test_amenity_filter_uses_json_contains_on_mysql(self):
        fake_db = SimpleNamespace(get_bind=lambda: SimpleNamespace(dialect=SimpleNamespace(name="mysql")))
        clause = crud_spaces._has_amenity(fake_db, "ev_charging")
        compiled = clause.compile(dialect=mysql.dialect())
        assert "json_contains(customer_spaces.amenities" in str(compiled).lower()
        assert '"ev_charging"' in compiled.params.values()

    @pytest.mark.asyncio
    async def test_default_order_by_rating_then_bookings(self, db):
        owner = await make_user(db)
        a = await make_space(db, owner, average_rating=Decimal("4.00"), total_bookings=50)
        b = await make_space(db, owner, average_rating=Decimal("4.80"), total_bookings=2)
        c = await make_space(db, owner, average_rating=Decimal("4.00"), total_bookings=80)

        hits = await crud_spaces.search_spaces(db)
        assert [h.space.id for h in hits] == [b.id, c.id, a.id]

    @pytest.mark.asyncio
    async def test_radius_search_nearest_first(self, db):
        owner = await make_user(db)
        # around Trafalgar Square
        near = await make_space(db, owner, latitude=Decimal("51.5080"), longitude=Decimal("-0.1281"))
        nearer = await make_space(db, owner, latitude=Decimal("51.5074"), longitude=Decimal("-0.1278"))
        await make_space(db, owner, latitude=Decimal("53.4808"), longitude=Decimal("-2.2426"))  # Manchester
        await make_space(db, owner)  # no coordinates

        hits = await crud_spaces.search_spaces(
            db, {"latitude": 51.5074, "longitude": -0.1278, "radius": 5}
        )
        assert [h.space.id for h in hits] == [nearer.id, near.id]
        assert hits[0].distance_miles == 0.0
        assert 0 < hits[1].distance_miles < 1

    @pytest.mark.asyncio
    async def test_pagination_and_limit_cap(self, db):
        owner = await make_user(db)
        for i in range(5):
            await make_space(db, owner, total_bookings=i)

        first = await crud_spaces.search_spaces(db, {"limit": 2})
        second = await crud_spaces.search_spaces(db, {"limit": 2, "offset": 2})
        assert len(first) == 2 and len(second) == 2
        assert {h.space.id for h in first}.isdisjoint(h.space.id for h in second)

        capped = await crud_spaces.search_spaces(db, {"limit": 1000})
        assert len(capped) == 5


class TestEarnings:
    @pytest.mark.asyncio
    async def test_owner_summary(self, db):
        owner = await make_user(db)
        renter = await make_user(db)
        space = await make_space(db, owner, total_earnings=Decimal("100.00"), total_bookings=3)
        await make_space(db, owner, total_earnings=Decimal("20.00"), total_bookings=1)

        # paid and completed: pending payout and this month
        await make_booking(db, space, renter, NOW, NOW + timedelta(hours=2), total="40.00",
                           booking_status="completed", payment_status="paid", created_at=NOW - timedelta(days=1))
        # paid and active, created last month
        await make_booking(db, space, renter, NOW, NOW + timedelta(hours=2), total="20.00",
                           booking_status="active", payment_status="paid", created_at=datetime(2025, 5, 20))
        # paid but only confirmed: this month, not pending payout
        await make_booking(db, space, renter, NOW, NOW + timedelta(hours=2), total="10.00",
                           booking_status="confirmed", payment_status="paid", created_at=NOW)
        # unpaid
        await make_booking(db, space, renter, NOW, NOW + timedelta(hours=2), total="99.00",
                           booking_status="pending", payment_status="pending", created_at=NOW)

        summary = await crud_spaces.get_owner_earnings(db, owner.id, now=NOW)
        assert summary == {
            "total_earnings": Decimal("120.00"),
            "total_bookings": 4,
            "total_spaces": 2,
            "pending_payout": Decimal("51.00"),   # 34.00 + 17.00
            "month_earnings": Decimal("42.50"),   # 34.00 + 8.50
        }

    @pytest.mark.asyncio
    async def test_by_space(self, db):
        owner = await make_user(db)
        renter = await make_user(db)
        busy = await make_space(db, owner, space_name="Busy", total_earnings=Decimal("300.00"))
        quiet = await make_space(db, owner, space_name="Quiet", total_earnings=Decimal("5.00"))
        await make_booking(db, busy, renter, NOW, NOW + timedelta(hours=1), total="40.00",
                           booking_status="confirmed", payment_status="paid", created_at=NOW)
        await make_booking(db, busy, renter, NOW, NOW + timedelta(hours=1), total="40.00",
                           booking_status="pending", created_at=NOW)

        rows = await crud_spaces.get_earnings_by_space(db, owner.id, now=NOW)
        assert [r["space_id"] for r in rows] == [busy.id, quiet.id]
        assert rows[0]["month_earnings"] == Decimal("34.00")
        assert rows[0]["active_bookings"] == 2
        assert rows[1]["month_earnings"] == Decimal("0.00")
        assert rows[1]["active_bookings"] == 0

    @pytest.mark.asyncio
    async def test_by_month_oldest_first(self, db):
        owner = await make_user(db)
        renter = await make_user(db)
        space = await make_space(db, owner)
        for created, total in [
            (datetime(2025, 4, 3), "20.00"),
            (datetime(2025, 6, 1), "40.00"),
            (datetime(2025, 6, 9), "40.00"),
        ]:
            await make_booking(db, space, renter, NOW, NOW + timedelta(hours=1), total=total,
                               booking_status="completed", payment_status="paid", created_at=created)

        rows = await crud_spaces.get_earnings_by_period(db, owner.id, "month")
        assert [r["period_label"] for r in rows] == ["Apr 2025", "Jun 2025"]
        assert rows[1]["earnings"] == Decimal("68.00")
        assert rows[1]["platform_fees"] == Decimal("12.00")
        assert rows[1]["bookings"] == 2

    @pytest.mark.asyncio
    async def test_period_is_validated(self, db):
        owner = await make_user(db)
        with pytest.raises(ValidationError):
            await crud_spaces.get_earnings_by_period(db, owner.id, "decade")
