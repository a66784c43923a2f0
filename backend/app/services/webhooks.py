# app/services/webhooks.py
"""
Signed payment-provider events.

``verify_signature`` authenticates a raw delivery, ``WebhookReconciler``
applies it. Deliveries are at-least-once and can race the manual confirm
call, so every update is guarded on the current state and keyed by the
payment intent id: replaying an event leaves the rows as they are.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

import stripe
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.core.errors import ValidationError
from app.db import crud_bookings, crud_payments
from app.db.models import AirportBooking, GarageReservation
from app.services.pricing import from_minor_units

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300

class InvalidSignatureError(ValidationError):
    default_code = "invalid_signature"


class ExpiredSignatureError(InvalidSignatureError):
    default_code = "expired_signature"


@dataclass
class WebhookEvent:
    id: str
    type: str
    data: Dict[str, Any] = field(default_factory=dict)
    created: Optional[int] = None

    @property
    def object(self) -> Dict[str, Any]:
        return self.data.get("object") or {}

    @classmethod
    def from_payload(cls, payload: bytes) -> "WebhookEvent":
        try:
            body = json.loads(payload)
        except (ValueError, UnicodeDecodeError):
            raise ValidationError("Malformed event payload", "invalid_payload")
        if not isinstance(body, dict) or "type" not in body:
            raise ValidationError("Malformed event payload", "invalid_payload")
        return cls(
            id=str(body.get("id") or ""),
            type=str(body["type"]),
            data=body.get("data") or {},
            created=body.get("created"),
        )


def _header_timestamp(header: str) -> int:
    # first t= component, read the same way the provider library reads it
    for item in header.split(","):
        parts = item.split("=", 2)
        if parts[0] == "t":
            return int(parts[1])
    raise InvalidSignatureError("Invalid signature header")


def verify_signature(
    payload: bytes,
    header: str,
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> WebhookEvent:
    """
    Authenticate a delivery and parse it.

    The ``t=...,v1=...`` header is checked with ``stripe.WebhookSignature``.
    Raises InvalidSignatureError when it does not match, ExpiredSignatureError
    when ``t`` is further than ``tolerance`` seconds from now in either
    direction.
    """
    if not header or not header.isascii():
        raise InvalidSignatureError("Invalid signature header")
    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError:
        raise ValidationError("Malformed event payload", "invalid_payload")

    try:
        stripe.WebhookSignature.verify_header(body, header, secret)
    except stripe.SignatureVerificationError as e:
        raise InvalidSignatureError(e.user_message or "No matching signature")

    now = time.time() if now is None else now
    if abs(now - _header_timestamp(header)) > tolerance:
        raise ExpiredSignatureError("Signature timestamp outside tolerance")

    return WebhookEvent.from_payload(payload)


def _metadata_booking(metadata: Dict[str, Any]) -> tuple[Optional[str], Optional[int]]:
    booking_type = metadata.get("booking_type")
    try:
        booking_id = int(metadata.get("booking_id") or 0) or None
    except (TypeError, ValueError):
        booking_id = None
    return booking_type, booking_id


class WebhookReconciler:
    """Applies verified events to payments and the three booking types."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def apply(self, event: WebhookEvent) -> Dict[str, Any]:
        handler = {
            "payment_intent.succeeded": self._on_succeeded,
            "payment_intent.payment_failed": self._on_failed,
            "charge.refunded": self._on_refunded,
        }.get(event.type)

        if handler is None:
            logger.info("ignoring webhook event", extra={"event_id": event.id, "event_type": event.type})
            return {"handled": False, "type": event.type, "changed": False}

        try:
            changed = await handler(event.object)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "webhook applied (changed=%s)", changed, extra={"event_id": event.id, "event_type": event.type}
        )
        return {"handled": True, "type": event.type, "changed": changed}

    async def _on_succeeded(self, intent: Dict[str, Any]) -> bool:
        return await self.reconcile_success(intent.get("id"), intent.get("metadata") or {})

    async def reconcile_success(self, intent_id: Optional[str], metadata: Dict[str, Any]) -> bool:
        """
        Mark the payment succeeded and the booking it pays for as paid.
        Shared by the webhook and the manual confirm path. Caller commits.
        """
        if not intent_id:
            raise ValidationError("Event has no payment intent id", "invalid_payload")

        payment, changed = await crud_payments.mark_status_by_intent(
            self.db, intent_id, "succeeded", from_statuses=("pending", "failed")
        )

        booking_type, booking_id = _metadata_booking(metadata)
        if (booking_type is None or booking_id is None) and payment is not None:
            booking_type, booking_id = payment.booking_type, payment.booking_id or None

        if booking_id is None:
            return changed
        if booking_type == "customer_space":
            changed = await self._space_paid(booking_id, intent_id) or changed
        elif booking_type == "garage":
            changed = await self._garage_paid(booking_id) or changed
        elif booking_type == "airport":
            changed = await self._airport_paid(booking_id, intent_id) or changed
        else:
            logger.warning("unknown booking_type %r", booking_type, extra={"payment_intent_id": intent_id})
        return changed

    async def _space_paid(self, booking_id: int, intent_id: str) -> bool:
        booking = await crud_bookings.get_booking(self.db, booking_id)
        if booking is None:
            logger.warning(
                "payment for a missing space booking", extra={"booking_id": booking_id, "payment_intent_id": intent_id}
            )
            return False
        if booking.stripe_payment_intent_id not in (None, intent_id):
            logger.warning(
                "intent does not match booking (has %s)",
                booking.stripe_payment_intent_id,
                extra={"booking_id": booking_id, "payment_intent_id": intent_id},
            )
            return False

        before = (booking.payment_status, booking.booking_status)
        booking = await crud_bookings.update_payment_status(self.db, booking_id, "paid", intent_id)
        return (booking.payment_status, booking.booking_status) != before

    async def _garage_paid(self, reservation_id: int) -> bool:
        res = await self.db.execute(
            select(GarageReservation).where(GarageReservation.id == reservation_id).with_for_update()
        )
        reservation = res.scalar_one_or_none()
        if reservation is None or reservation.status != "pending":
            return False
        reservation.status = "active"
        self.db.add(reservation)
        return True

    async def _airport_paid(self, booking_id: int, intent_id: str) -> bool:
        res = await self.db.execute(
            select(AirportBooking).where(AirportBooking.id == booking_id).with_for_update()
        )
        booking = res.scalar_one_or_none()
        if booking is None or booking.payment_status == "paid":
            return False
        booking.payment_status = "paid"
        if booking.booking_status == "pending":
            booking.booking_status = "confirmed"
        booking.stripe_payment_intent_id = intent_id
        self.db.add(booking)
        return True

    async def _on_failed(self, intent: Dict[str, Any]) -> bool:
        error = intent.get("last_payment_error") or {}
        _, changed = await crud_payments.mark_status_by_intent(
            self.db,
            intent.get("id") or "",
            "failed",
            from_statuses=("pending",),
            failure_reason=error.get("message") or "Payment failed",
        )
        return changed

    async def _on_refunded(self, charge: Dict[str, Any], now: Optional[datetime] = None) -> bool:
        intent_id = charge.get("payment_intent")
        if not intent_id:
            return False
        payment = await crud_payments.get_by_intent_id(self.db, intent_id, for_update=True)
        if payment is None:
            return False

        refunded = from_minor_units(charge.get("amount_refunded") or 0)
        status = "refunded" if charge.get("refunded") else "partial_refund"
        if payment.status == status and payment.refund_amount == refunded:
            return False

        payment.status = status
        payment.refund_amount = refunded
        payment.refunded_at = payment.refunded_at or now or utcnow()
        self.db.add(payment)
        return True
