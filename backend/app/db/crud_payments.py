# app/db/crud_payments.py

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Payment
from app.services.pricing import to_money


async def create_payment(
    db: AsyncSession,
    *,
    user_id: int,
    booking_type: str,
    booking_id: Optional[int],
    amount: Decimal,
    currency: str,
    stripe_payment_intent_id: str,
    stripe_customer_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Payment:
    payment = Payment(
        user_id=user_id,
        booking_type=booking_type,
        booking_id=booking_id or 0,
        amount=to_money(amount),
        currency=currency.upper(),
        stripe_payment_intent_id=stripe_payment_intent_id,
        stripe_customer_id=stripe_customer_id,
        status="pending",
        metadata_json=metadata or {},
    )
    db.add(payment)
    await db.commit()
    await db.refresh(payment)
    return payment


async def get_payment(db: AsyncSession, payment_id: int) -> Optional[Payment]:
    res = await db.execute(select(Payment).where(Payment.id == payment_id))
    return res.scalar_one_or_none()


async def get_by_intent_id(db: AsyncSession, intent_id: str, *, for_update: bool = False) -> Optional[Payment]:
    stmt = select(Payment).where(Payment.stripe_payment_intent_id == intent_id)
    if for_update:
        stmt = stmt.with_for_update()
    res = await db.execute(stmt)
    return res.scalar_one_or_none()


async def list_for_user(db: AsyncSession, user_id: int, limit: int = 20, offset: int = 0) -> List[Payment]:
    res = await db.execute(
        select(Payment)
        .where(Payment.user_id == user_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(res.scalars().all())


async def mark_status_by_intent(
    db: AsyncSession,
    intent_id: str,
    new_status: str,
    *,
    from_statuses: Iterable[str],
    failure_reason: Optional[str] = None,
) -> tuple[Optional[Payment], bool]:
    """
    Move the payment for ``intent_id`` to ``new_status`` if it currently sits
    in one of ``from_statuses``.

    Returns (payment, changed). A payment already in ``new_status`` (or any
    state not listed) is left untouched, which makes redelivered events
    harmless. Caller commits.
    """
    payment = await get_by_intent_id(db, intent_id, for_update=True)
    if payment is None:
        return None, False
    if payment.status not in tuple(from_statuses):
        return payment, False

    payment.status = new_status
    if failure_reason is not None:
        payment.failure_reason = failure_reason[:500]
    db.add(payment)
    return payment, True


async def record_refund(
    db: AsyncSession,
    payment: Payment,
    refund_amount: Decimal,
    refunded_at: datetime,
) -> Payment:
    """Full when the refund covers the whole amount, partial_refund otherwise. Caller commits."""
    refund_amount = to_money(refund_amount)
    payment.refund_amount = refund_amount
    payment.refunded_at = refunded_at
    payment.status = "refunded" if refund_amount >= to_money(payment.amount) else "partial_refund"
    db.add(payment)
    return payment


async def user_stats(db: AsyncSession, user_id: int) -> Dict[str, Any]:
    succeeded = Payment.status.in_(("succeeded", "partial_refund", "refunded"))
    row = (
        await db.execute(
            select(
                func.count(Payment.id),
                func.coalesce(func.sum(case((succeeded, Payment.amount), else_=0)), 0),
                func.coalesce(func.sum(Payment.refund_amount), 0),
                func.coalesce(func.sum(case((succeeded, 1), else_=0)), 0),
                func.coalesce(func.sum(case((Payment.status == "failed", 1), else_=0)), 0),
            ).where(Payment.user_id == user_id)
        )
    ).one()

    return {
        "total_payments": int(row[0]),
        "total_spent": to_money(row[1]),
        "total_refunded": to_money(row[2]),
        "successful_payments": int(row[3]),
        "failed_payments": int(row[4]),
    }
