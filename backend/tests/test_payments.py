from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.errors import AccessDeniedError, ConflictError, ExternalFailureError, ValidationError
from app.db.models import Payment
from app.services import payments
from factories import FakeGateway, later, make_booking, make_payment, make_space, make_user


async def _awaiting_payment(db, owner_kw=None):
    owner = await make_user(db, **(owner_kw or {}))
    renter = await make_user(db)
    space = await make_space(db, owner)
    booking = await make_booking(db, space, renter, later(48), later(52), total="40.00")
    return owner, renter, booking


async def _paid_booking(db, hours_ahead=48, intent_id="pi_paid"):
    owner = await make_user(db)
    renter = await make_user(db)
    space = await make_space(db, owner)
    booking = await make_booking(
        db, space, renter, later(hours_ahead), later(hours_ahead + 4), total="40.00",
        booking_status="confirmed", payment_status="paid", stripe_payment_intent_id=intent_id,
    )
    payment = await make_payment(db, renter, intent_id, booking_id=booking.id, status="succeeded")
    return renter, booking, payment


class TestCreateIntent:
    @pytest.mark.asyncio
    async def test_records_pending_payment_and_customer(self, db):
        user = await make_user(db)
        gateway = FakeGateway()

        out = await payments.create_payment_intent(db, gateway, user, Decimal("12.5"), "garage", booking_id=3)

        assert out["payment_intent_id"] == "pi_fake_1"
        assert out["client_secret"] == "pi_fake_1_secret"
        assert out["amount"] == Decimal("12.50")
        assert out["currency"] == "GBP"
        assert user.stripe_customer_id == "cus_fake"

        payment = await db.get(Payment, out["payment_id"])
        assert payment.status == "pending"
        assert payment.booking_type == "garage"
        assert payment.booking_id == 3
        assert payment.metadata_json == {"user_id": user.id, "booking_type": "garage", "booking_id": 3}

    @pytest.mark.asyncio
    async def test_existing_customer_is_reused(self, db):
        user = await make_user(db, stripe_customer_id="cus_existing")
        gateway = FakeGateway()
        await payments.create_payment_intent(db, gateway, user, Decimal("5"), "airport")
        assert [c[0] for c in gateway.calls] == ["create_intent"]
        assert gateway.calls[0][3] == "cus_existing"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount,booking_type", [(Decimal("0"), "garage"), (Decimal("5"), "boat")])
    async def test_rejects_bad_input(self, db, amount, booking_type):
        user = await make_user(db)
        with pytest.raises(ValidationError):
            await payments.create_payment_intent(db, FakeGateway(), user, amount, booking_type)

    @pytest.mark.asyncio
    async def test_provider_failure_records_nothing(self, db):
        user = await make_user(db)
        with pytest.raises(ExternalFailureError) as exc:
            await payments.create_payment_intent(db, FakeGateway("failure"), user, Decimal("5"), "garage")
        assert exc.value.status_code == 502
        assert await db.scalar(select(func.count(Payment.id))) == 0


class TestSpacePayment:
    @pytest.mark.asyncio
    async def test_plain_intent_without_connected_owner(self, db):
        owner, renter, booking = await _awaiting_payment(db)
        gateway = FakeGateway()

        out = await payments.create_space_payment(db, gateway, renter, booking.id)

        assert "create_intent" in [c[0] for c in gateway.calls]
        assert out["amount"] == Decimal("40.00")
        assert out["platform_fee"] == Decimal("6.00")
        assert out["owner_payout"] == Decimal("34.00")
        await db.refresh(booking)
        assert booking.stripe_payment_intent_id == out["payment_intent_id"]

    @pytest.mark.asyncio
    async def test_connected_owner_gets_destination_charge(self, db):
        owner, renter, booking = await _awaiting_payment(db, {"stripe_connect_id": "acct_owner"})
        gateway = FakeGateway()

        await payments.create_space_payment(db, gateway, renter, booking.id)

        connect = [c for c in gateway.calls if c[0] == "create_connect_intent"]
        assert len(connect) == 1
        assert connect[0][1] == Decimal("40.00")
        assert connect[0][2] == "acct_owner"

    @pytest.mark.asyncio
    async def test_only_renter_pays(self, db):
        owner, renter, booking = await _awaiting_payment(db)
        with pytest.raises(AccessDeniedError):
            await payments.create_space_payment(db, FakeGateway(), owner, booking.id)

    @pytest.mark.asyncio
    async def test_paid_booking_cannot_be_charged_again(self, db):
        renter, booking, payment = await _paid_booking(db)
        with pytest.raises(ConflictError):
            await payments.create_space_payment(db, FakeGateway(), renter, booking.id)


class TestConfirm:
    @pytest.mark.asyncio
    async def test_succeeded_intent_confirms_booking(self, db):
        owner, renter, booking = await _awaiting_payment(db)
        gateway = FakeGateway()
        out = await payments.create_space_payment(db, gateway, renter, booking.id)

        result = await payments.confirm_payment(db, gateway, renter, out["payment_intent_id"])

        assert result["payment_status"] == "succeeded"
        assert result["booking_id"] == booking.id
        await db.refresh(booking)
        assert (booking.payment_status, booking.booking_status) == ("paid", "confirmed")

    @pytest.mark.asyncio
    async def test_unfinished_intent_changes_nothing(self, db):
        owner, renter, booking = await _awaiting_payment(db)
        gateway = FakeGateway(intent_status="requires_payment_method")
        out = await payments.create_space_payment(db, gateway, renter, booking.id)

        result = await payments.confirm_payment(db, gateway, renter, out["payment_intent_id"])

        assert result["intent_status"] == "requires_payment_method"
        assert result["payment_status"] == "pending"
        await db.refresh(booking)
        assert booking.booking_status == "pending"

    @pytest.mark.asyncio
    async def test_someone_elses_payment(self, db):
        renter, booking, payment = await _paid_booking(db)
        stranger = await make_user(db)
        with pytest.raises(AccessDeniedError):
            await payments.confirm_payment(db, FakeGateway(), stranger, "pi_paid")


class TestRefund:
    @pytest.mark.asyncio
    async def test_partial_then_remaining(self, db):
        user = await make_user(db)
        payment = await make_payment(db, user, "pi_r", status="succeeded")
        gateway = FakeGateway()

        first = await payments.refund_payment(db, gateway, user, payment_id=payment.id, amount=Decimal("15.00"))
        assert (first["amount"], first["payment_status"]) == (Decimal("15.00"), "partial_refund")

        second = await payments.refund_payment(db, gateway, user, intent_id="pi_r")
        assert (second["amount"], second["payment_status"]) == (Decimal("25.00"), "refunded")
        await db.refresh(payment)
        assert payment.refund_amount == Decimal("40.00")

        with pytest.raises(ConflictError) as exc:
            await payments.refund_payment(db, gateway, user, payment_id=payment.id)
        assert exc.value.code == "already_refunded"

    @pytest.mark.asyncio
    async def test_amount_over_remaining(self, db):
        user = await make_user(db)
        payment = await make_payment(db, user, "pi_r", status="succeeded")
        with pytest.raises(ValidationError):
            await payments.refund_payment(db, FakeGateway(), user, payment_id=payment.id, amount=Decimal("40.01"))

    @pytest.mark.asyncio
    async def test_pending_payment_cannot_be_refunded(self, db):
        user = await make_user(db)
        payment = await make_payment(db, user, "pi_r")
        with pytest.raises(ConflictError):
            await payments.refund_payment(db, FakeGateway(), user, payment_id=payment.id)

    @pytest.mark.asyncio
    async def test_provider_failure_leaves_payment_untouched(self, db):
        user = await make_user(db)
        payment = await make_payment(db, user, "pi_r", status="succeeded")
        with pytest.raises(ExternalFailureError):
            await payments.refund_payment(db, FakeGateway("timeout"), user, payment_id=payment.id)
        await db.refresh(payment)
        assert payment.status == "succeeded"
        assert payment.refund_amount is None


class TestCancelWithRefund:
    @pytest.mark.asyncio
    async def test_full_refund(self, db):
        renter, booking, payment = await _paid_booking(db, hours_ahead=48)
        gateway = FakeGateway()

        out = await payments.cancel_booking_with_refund(db, gateway, booking.id, renter, "plans changed")

        assert out["refund_status"] == "succeeded"
        assert out["refund_amount"] == Decimal("40.00")
        assert ("refund", "pi_paid", Decimal("40.00"), "requested_by_customer") in gateway.calls
        assert out["booking"].booking_status == "cancelled"
        assert out["booking"].payment_status == "refunded"
        await db.refresh(payment)
        assert payment.status == "refunded"

    @pytest.mark.asyncio
    async def test_half_refund_marks_partial(self, db):
        renter, booking, payment = await _paid_booking(db, hours_ahead=10)
        out = await payments.cancel_booking_with_refund(db, FakeGateway(), booking.id, renter)
        assert out["refund_amount"] == Decimal("20.00")
        assert out["booking"].payment_status == "partial_refund"

    @pytest.mark.asyncio
    async def test_gateway_failure_keeps_cancellation(self, db):
        renter, booking, payment = await _paid_booking(db, hours_ahead=48)

        out = await payments.cancel_booking_with_refund(db, FakeGateway("failure"), booking.id, renter)

        assert out["refund_status"] == "failed"
        assert out["booking"].booking_status == "cancelled"
        assert out["booking"].payment_status == "paid"
        await db.refresh(payment)
        assert payment.status == "succeeded"

    @pytest.mark.asyncio
    async def test_no_refund_close_to_start(self, db):
        renter, booking, payment = await _paid_booking(db, hours_ahead=2)
        gateway = FakeGateway()

        out = await payments.cancel_booking_with_refund(db, gateway, booking.id, renter)

        assert out["refund_status"] == "none"
        assert out["refund_eligible"] is False
        assert gateway.calls == []


@pytest.mark.asyncio
async def test_history_with_stats(db):
    user = await make_user(db)
    other = await make_user(db)
    await make_payment(db, user, "pi_1", amount="10.00", status="succeeded")
    await make_payment(db, user, "pi_2", amount="20.00", status="failed")
    await make_payment(db, user, "pi_3", amount="30.00", status="partial_refund", refund_amount=Decimal("5.00"))
    await make_payment(db, other, "pi_4", amount="99.00", status="succeeded")

    out = await payments.payment_history(db, user, limit=2)

    assert len(out["payments"]) == 2
    assert out["stats"] == {
        "total_payments": 3,
        "total_spent": Decimal("40.00"),
        "total_refunded": Decimal("5.00"),
        "successful_payments": 2,
        "failed_payments": 1,
    }
