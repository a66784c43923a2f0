# backend/app/schemas/payment.py
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator


class PaymentIntentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    booking_type: str
    booking_id: Optional[int] = None
    space_id: Optional[int] = None


class SpacePaymentCreate(BaseModel):
    booking_id: int


class PaymentConfirm(BaseModel):
    payment_intent_id: str


class RefundRequest(BaseModel):
    payment_id: Optional[int] = None
    payment_intent_id: Optional[str] = None
    amount: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    reason: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def one_reference(self):
        if self.payment_id is None and not self.payment_intent_id:
            raise ValueError("payment_id or payment_intent_id is required")
        return self


class PaymentOut(BaseModel):
    id: int
    booking_type: str
    booking_id: int
    amount: Decimal
    currency: str
    stripe_payment_intent_id: Optional[str] = None
    status: str
    failure_reason: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    refunded_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="metadata_json")
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentStats(BaseModel):
    total_payments: int
    total_spent: Decimal
    total_refunded: Decimal
    successful_payments: int
    failed_payments: int
