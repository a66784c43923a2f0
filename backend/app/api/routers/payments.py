from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_current_user
from app.core.config import get_settings
from app.db.session import get_db
from app.schemas.payment import (
    PaymentConfirm,
    PaymentIntentCreate,
    PaymentOut,
    PaymentStats,
    RefundRequest,
    SpacePaymentCreate,
)
from app.services import payments as payment_service
from app.services.payment_gateway import PaymentGateway, get_payment_gateway

router = APIRouter()


@router.get("/config")
async def payment_config():
    """Publishable settings for the checkout page. Never includes secrets."""
    return {"success": True, "data": get_settings().public_payment_config()}


@router.post("/intent")
async def create_intent(
    body: PaymentIntentCreate,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    data = await payment_service.create_payment_intent(
        db,
        gateway,
        current_user,
        body.amount,
        body.booking_type,
        booking_id=body.booking_id,
        space_id=body.space_id,
    )
    return {"success": True, "data": data}


@router.post("/space-intent")
async def create_space_intent(
    body: SpacePaymentCreate,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    data = await payment_service.create_space_payment(db, gateway, current_user, body.booking_id)
    return {"success": True, "data": data}


@router.post("/confirm")
async def confirm(
    body: PaymentConfirm,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    data = await payment_service.confirm_payment(db, gateway, current_user, body.payment_intent_id)
    return {"success": True, "data": data}


@router.post("/refund")
async def refund(
    body: RefundRequest,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    data = await payment_service.refund_payment(
        db,
        gateway,
        current_user,
        payment_id=body.payment_id,
        intent_id=body.payment_intent_id,
        amount=body.amount,
        reason=body.reason,
    )
    return {"success": True, "data": data}


@router.get("/history")
async def history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
):
    result = await payment_service.payment_history(db, current_user, limit, offset)
    return {
        "success": True,
        "items": [PaymentOut.model_validate(p) for p in result["payments"]],
        "stats": PaymentStats(**result["stats"]),
    }
