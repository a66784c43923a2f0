# app/services/payments.py
"""
Payment flows that span the database and the payment gateway.

Local state is committed before any gateway call and reconciled after it,
so no transaction is held open across the network.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.core.config import Settings, get_settings
from app.core.errors import (
    AccessDeniedError,
    ConflictError,
    ExternalFailureError,
    NotFoundError,
    ValidationError,
)
from app.db import crud_bookings, crud_payments, crud_users
from app.db.models import PAYMENT_BOOKING_TYPES, Payment, User
from app.services.payment_gateway import PaymentGateway
from app.services.pricing import to_money
from app.services.webhooks import WebhookReconciler

logger = logging.getLogger(__name__)

DESCRIPTIONS = {
    "garage": "Garage parking reservation",
    "customer_space": "Private parking space booking",
    "airport": "Airport parking booking",
}


async def get_or_create_customer(db: AsyncSession, gateway: PaymentGateway, user: User) -> Optional[str]:
    """
    Provider customer id for ``user``, created on first use.
    A provider failure is not fatal: the intent is created without a customer.
    """
    if user.stripe_customer_id:
        return user.stripe_customer_id

    result = await gateway.create_customer(user.email, user.name, {"user_id": user.id})
    if not result.success:
        logger.warning(
            "could not create payment customer: %s", result.error, extra={"user_id": user.id}
        )
        return None

    await crud_users.set_stripe_customer_id(db, user, result.customer_id)
    return result.customer_id


async def create_payment_intent(
    db: AsyncSession,
    gateway: PaymentGateway,
    user: User,
    amount: Decimal,
    booking_type: str,
    booking_id: Optional[int] = None,
    space_id: Optional[int] = None,
) -> Dict[str, Any]:
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero")
    if booking_type not in PAYMENT_BOOKING_TYPES:
        raise ValidationError(f"booking_type must be one of: {', '.join(PAYMENT_BOOKING_TYPES)}")

    customer_id = await get_or_create_customer(db, gateway, user)
    metadata = {
        "user_id": user.id,
        "booking_type": booking_type,
        "booking_id": booking_id or "",
        "space_id": space_id or "",
    }

    result = await gateway.create_intent(amount, metadata, customer_id, DESCRIPTIONS[booking_type])
    if not result.success:
        raise ExternalFailureError(result.error or "Failed to create payment")

    payment = await crud_payments.create_payment(
        db,
        user_id=user.id,
        booking_type=booking_type,
        booking_id=booking_id,
        amount=amount,
        currency=gateway.currency,
        stripe_payment_intent_id=result.intent_id,
        stripe_customer_id=customer_id,
        metadata={k: v for k, v in metadata.items() if v != ""},
    )
    return {
        "client_secret": result.client_secret,
        "payment_intent_id": result.intent_id,
        "payment_id": payment.id,
        "amount": amount,
        "currency": payment.currency,
        "test_mode": result.test_mode,
    }


async def create_space_payment(
    db: AsyncSession,
    gateway: PaymentGateway,
    user: User,
    booking_id: int,
) -> Dict[str, Any]:
    """
    Charge a pending customer-space booking.

    Owners with a connected account are paid through a destination charge,
    the platform keeping the booking's fee. Otherwise it is a plain intent and
    the payout is settled outside the provider.
    """
    booking = await crud_bookings.get_booking(db, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found", "booking_not_found")
    if booking.renter_id != user.id:
        raise AccessDeniedError()
    if booking.booking_status != "pending" or booking.payment_status not in ("pending", "failed"):
        raise ConflictError("Booking is not awaiting payment", "invalid_transition")

    owner = await crud_users.get_user(db, booking.owner_id)
    customer_id = await get_or_create_customer(db, gateway, user)
    metadata = {
        "user_id": user.id,
        "booking_type": "customer_space",
        "booking_id": booking.id,
        "space_id": booking.space_id,
    }

    if owner is not None and owner.stripe_connect_id:
        result = await gateway.create_connect_intent(
            booking.total_price, owner.stripe_connect_id, metadata, DESCRIPTIONS["customer_space"]
        )
    else:
        result = await gateway.create_intent(
            booking.total_price, metadata, customer_id, DESCRIPTIONS["customer_space"]
        )
    if not result.success:
        raise ExternalFailureError(result.error or "Failed to create payment")

    payment = await crud_payments.create_payment(
        db,
        user_id=user.id,
        booking_type="customer_space",
        booking_id=booking.id,
        amount=booking.total_price,
        currency=gateway.currency,
        stripe_payment_intent_id=result.intent_id,
        stripe_customer_id=customer_id,
        metadata=metadata,
    )
    await crud_bookings.attach_payment_intent(db, booking, result.intent_id)

    return {
        "client_secret": result.client_secret,
        "payment_intent_id": result.intent_id,
        "payment_id": payment.id,
        "amount": to_money(booking.total_price),
        "platform_fee": to_money(booking.platform_fee),
        "owner_payout": to_money(booking.owner_payout),
        "currency": payment.currency,
        "test_mode": result.test_mode,
    }


async def _owned_payment(
    db: AsyncSession,
    user: User,
    payment_id: Optional[int] = None,
    intent_id: Optional[str] = None,
) -> Payment:
    if payment_id is not None:
        payment = await crud_payments.get_payment(db, payment_id)
    elif intent_id:
        payment = await crud_payments.get_by_intent_id(db, intent_id)
    else:
        raise ValidationError("payment_id or payment_intent_id is required")

    if payment is None:
        raise NotFoundError("Payment not found", "payment_not_found")
    if payment.user_id != user.id:
        raise AccessDeniedError()
    return payment


async def confirm_payment(
    db: AsyncSession,
    gateway: PaymentGateway,
    user: User,
    intent_id: str,
) -> Dict[str, Any]:
    """
    Manual confirm after the client-side payment step. Applies the same
    guarded reconciliation as the webhook, so either may arrive first.
    """
    payment = await _owned_payment(db, user, intent_id=intent_id)

    result = await gateway.get_intent(intent_id)
    if not result.success:
        raise ExternalFailureError(result.error or "Could not check payment status")

    if result.status == "succeeded":
        reconciler = WebhookReconciler(db)
        try:
            await reconciler.reconcile_success(intent_id, payment.metadata_json or {})
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        await db.refresh(payment)

    return {
        "payment_intent_id": intent_id,
        "intent_status": result.status,
        "payment_status": payment.status,
        "booking_type": payment.booking_type,
        "booking_id": payment.booking_id or None,
    }


async def refund_payment(
    db: AsyncSession,
    gateway: PaymentGateway,
    user: User,
    *,
    payment_id: Optional[int] = None,
    intent_id: Optional[str] = None,
    amount: Optional[Decimal] = None,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    payment = await _owned_payment(db, user, payment_id, intent_id)
    if payment.status == "refunded":
        raise ConflictError("Payment has already been refunded", "already_refunded")
    if payment.status not in ("succeeded", "partial_refund"):
        raise ConflictError("Only successful payments can be refunded", "invalid_transition")

    already = to_money(payment.refund_amount)
    remaining = to_money(payment.amount) - already
    if amount is not None:
        amount = to_money(amount)
        if amount <= 0 or amount > remaining:
            raise ValidationError(f"Refund amount must be between 0.01 and {remaining}")
    refund_amount = amount if amount is not None else remaining

    result = await gateway.refund(payment.stripe_payment_intent_id, amount, reason)
    if not result.success:
        raise ExternalFailureError(result.error or "Refund failed")

    await _record_refund(db, payment, already + refund_amount)

    return {
        "refund_id": result.refund_id,
        "amount": refund_amount,
        "payment_status": payment.status,
    }


async def _record_refund(db: AsyncSession, payment: Payment, total_refunded: Decimal) -> None:
    try:
        await crud_payments.record_refund(db, payment, total_refunded, utcnow())
        if payment.booking_type == "customer_space" and payment.booking_id:
            await crud_bookings.update_payment_status(db, payment.booking_id, payment.status)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(payment)


async def cancel_booking_with_refund(
    db: AsyncSession,
    gateway: PaymentGateway,
    booking_id: int,
    user: User,
    reason: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    """
    Cancel, then refund what the cancellation policy allows.

    The cancellation is committed first. If the provider refund fails the
    booking stays cancelled and ``refund_status`` is ``failed`` so the refund
    can be followed up by hand.
    """
    settings = settings or get_settings()
    booking, decision = await crud_bookings.cancel_booking(
        db,
        booking_id,
        user.id,
        reason,
        full_refund_hours=settings.REFUND_FULL_HOURS,
        partial_refund_hours=settings.REFUND_PARTIAL_HOURS,
    )

    refund_status = "none"
    if decision.eligible:
        if not booking.stripe_payment_intent_id:
            logger.warning("refund due but no payment intent", extra={"booking_id": booking.id})
            refund_status = "failed"
        else:
            result = await gateway.refund(booking.stripe_payment_intent_id, decision.amount, "requested_by_customer")
            if not result.success:
                logger.error(
                    "refund failed: %s",
                    result.error,
                    extra={"booking_id": booking.id, "payment_intent_id": booking.stripe_payment_intent_id},
                )
                refund_status = "failed"
            else:
                await _apply_booking_refund(db, booking, decision.amount)
                refund_status = "succeeded"

    return {
        "booking": booking,
        "refund_amount": decision.amount,
        "refund_eligible": decision.eligible,
        "refund_status": refund_status,
    }


async def _apply_booking_refund(db: AsyncSession, booking, refund_amount: Decimal) -> None:
    payment = await crud_payments.get_by_intent_id(db, booking.stripe_payment_intent_id)
    if payment is not None:
        await _record_refund(db, payment, to_money(payment.refund_amount) + refund_amount)
    else:
        status = "refunded" if refund_amount >= to_money(booking.total_price) else "partial_refund"
        await crud_bookings.update_payment_status(db, booking.id, status)
        await db.commit()
    await db.refresh(booking)


async def payment_history(db: AsyncSession, user: User, limit: int = 20, offset: int = 0) -> Dict[str, Any]:
    limit = max(1, min(limit, 100))
    payments = await crud_payments.list_for_user(db, user.id, limit=limit, offset=max(offset, 0))
    stats = await crud_payments.user_stats(db, user.id)
    return {"payments": payments, "stats": stats}
