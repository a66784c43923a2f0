import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import ValidationError
from app.db.session import get_db
from app.services.webhooks import WebhookReconciler, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/stripe")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Payment provider events. Rejected deliveries get a bare 400; the reason is
    only logged.
    """
    settings = get_settings()
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    if not signature:
        logger.warning("stripe webhook without signature header")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Bad request")

    try:
        event = verify_signature(
            payload,
            signature,
            settings.STRIPE_WEBHOOK_SECRET,
            tolerance=settings.WEBHOOK_TOLERANCE_SECONDS,
        )
    except ValidationError as e:
        logger.warning("stripe webhook rejected: %s (%s)", e.message, e.code)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Bad request")

    result = await WebhookReconciler(db).apply(event)
    return {"received": True, **result}
