# app/services/payment_gateway.py
"""
Card processing behind a small provider-agnostic interface.

Gateways never raise for provider problems: every call returns a
``GatewayResult`` and a failure is ``success=False`` with an ``error``
message, so callers decide how to degrade. Each provider call is bounded by
``PAYMENT_TIMEOUT_SECONDS``.
"""

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import stripe
from starlette.concurrency import run_in_threadpool

from app.core.config import Settings, get_settings
from app.services.pricing import (
    DEFAULT_FEE_RATE,
    fee_rate_from_percent,
    from_minor_units,
    split_platform_fee,
    to_minor_units,
    to_money,
)

logger = logging.getLogger(__name__)

STATEMENT_DESCRIPTOR_MAX = 22
# provider-side refund reasons; anything else travels in metadata
PROVIDER_REFUND_REASONS = ("duplicate", "fraudulent", "requested_by_customer")


@dataclass
class GatewayResult:
    success: bool
    intent_id: Optional[str] = None
    client_secret: Optional[str] = None
    amount: Optional[Decimal] = None
    status: Optional[str] = None
    refund_id: Optional[str] = None
    customer_id: Optional[str] = None
    platform_fee: Optional[Decimal] = None
    owner_payout: Optional[Decimal] = None
    test_mode: bool = False
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> "GatewayResult":
        return cls(success=False, error=error)


def _string_metadata(metadata: Optional[Dict[str, Any]]) -> Dict[str, str]:
    return {str(k): str(v) for k, v in (metadata or {}).items() if v is not None}


class PaymentGateway(ABC):
    """What the booking flows need from a card processor."""

    currency: str = "gbp"

    @abstractmethod
    async def create_intent(
        self,
        amount: Decimal,
        metadata: Optional[Dict[str, Any]] = None,
        customer_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> GatewayResult: ...

    @abstractmethod
    async def create_connect_intent(
        self,
        amount: Decimal,
        destination_account_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> GatewayResult: ...

    @abstractmethod
    async def refund(
        self,
        intent_id: str,
        amount: Optional[Decimal] = None,
        reason: Optional[str] = None,
    ) -> GatewayResult:
        """Refund ``amount``, or the whole charge when amount is None."""

    @abstractmethod
    async def get_intent(self, intent_id: str) -> GatewayResult: ...

    @abstractmethod
    async def create_customer(
        self,
        email: str,
        name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> GatewayResult: ...


class StripeGateway(PaymentGateway):
    """
    Stripe implementation.

    The stripe library is synchronous; calls run in the threadpool under a
    request-scoped timeout.
    """

    def __init__(self, settings: Settings, fee_rate: Optional[Decimal] = None) -> None:
        self.settings = settings
        self.currency = settings.STRIPE_CURRENCY.lower()
        self.timeout = settings.PAYMENT_TIMEOUT_SECONDS
        self.fee_rate = fee_rate if fee_rate is not None else fee_rate_from_percent(settings.PLATFORM_FEE_PERCENT)
        self.test_mode = settings.stripe_test_mode

        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout)
        stripe.max_network_retries = 1

    async def _guarded(self, action: str, fn: Callable[..., Any], **kwargs: Any) -> tuple[Any, Optional[str]]:
        try:
            return await asyncio.wait_for(run_in_threadpool(fn, **kwargs), timeout=self.timeout), None
        except asyncio.TimeoutError:
            logger.warning("stripe %s timed out after %ss", action, self.timeout)
            return None, "Payment provider timed out"
        except stripe.StripeError as e:
            logger.warning("stripe %s failed: %s", action, e.user_message or str(e))
            return None, e.user_message or "Payment provider error"

    def _descriptor(self) -> str:
        return self.settings.STRIPE_STATEMENT_DESCRIPTOR[:STATEMENT_DESCRIPTOR_MAX]

    def _intent_result(self, intent: Any, **extra: Any) -> GatewayResult:
        return GatewayResult(
            success=True,
            intent_id=intent.id,
            client_secret=getattr(intent, "client_secret", None),
            amount=from_minor_units(intent.amount),
            status=intent.status,
            test_mode=self.test_mode,
            **extra,
        )

    async def create_intent(self, amount, metadata=None, customer_id=None, description=None) -> GatewayResult:
        if to_money(amount) <= 0:
            return GatewayResult.failed("Invalid amount")

        params: Dict[str, Any] = {
            "amount": to_minor_units(amount),
            "currency": self.currency,
            "metadata": _string_metadata(metadata),
            "automatic_payment_methods": {"enabled": True},
            "statement_descriptor_suffix": self._descriptor(),
        }
        if customer_id:
            params["customer"] = customer_id
        if description:
            params["description"] = description

        intent, error = await self._guarded("create_intent", stripe.PaymentIntent.create, **params)
        if error:
            return GatewayResult.failed(error)
        return self._intent_result(intent)

    async def create_connect_intent(self, amount, destination_account_id, metadata=None, description=None) -> GatewayResult:
        if to_money(amount) <= 0:
            return GatewayResult.failed("Invalid amount")

        platform_fee, owner_payout = split_platform_fee(amount, self.fee_rate)
        meta = _string_metadata(metadata)
        meta.update({"platform_fee": str(platform_fee), "owner_payout": str(owner_payout)})

        params: Dict[str, Any] = {
            "amount": to_minor_units(amount),
            "currency": self.currency,
            "application_fee_amount": to_minor_units(platform_fee),
            "transfer_data": {"destination": destination_account_id},
            "metadata": meta,
            "automatic_payment_methods": {"enabled": True},
        }
        if description:
            params["description"] = description

        intent, error = await self._guarded("create_connect_intent", stripe.PaymentIntent.create, **params)
        if error:
            return GatewayResult.failed(error)
        return self._intent_result(intent, platform_fee=platform_fee, owner_payout=owner_payout)

    async def refund(self, intent_id, amount=None, reason=None) -> GatewayResult:
        params: Dict[str, Any] = {"payment_intent": intent_id}
        if amount is not None:
            params["amount"] = to_minor_units(amount)
        if reason in PROVIDER_REFUND_REASONS:
            params["reason"] = reason
        elif reason:
            params["metadata"] = {"reason": reason[:500]}

        refund, error = await self._guarded("refund", stripe.Refund.create, **params)
        if error:
            return GatewayResult.failed(error)
        return GatewayResult(
            success=True,
            refund_id=refund.id,
            intent_id=intent_id,
            amount=from_minor_units(refund.amount),
            status=refund.status,
            test_mode=self.test_mode,
        )

    async def get_intent(self, intent_id) -> GatewayResult:
        intent, error = await self._guarded("get_intent", stripe.PaymentIntent.retrieve, id=intent_id)
        if error:
            return GatewayResult.failed(error)
        return self._intent_result(intent)

    async def create_customer(self, email, name=None, metadata=None) -> GatewayResult:
        customer, error = await self._guarded(
            "create_customer",
            stripe.Customer.create,
            email=email,
            name=name,
            metadata=_string_metadata(metadata),
        )
        if error:
            return GatewayResult.failed(error)
        return GatewayResult(success=True, customer_id=customer.id, test_mode=self.test_mode)


class MockGateway(PaymentGateway):
    """
    Demo mode, used while no real provider keys are configured. Every intent
    reports as succeeded so the whole booking flow can be exercised locally.
    """

    def __init__(self, currency: str = "gbp", fee_rate: Decimal = DEFAULT_FEE_RATE) -> None:
        self.currency = currency.lower()
        self.fee_rate = fee_rate

    async def create_intent(self, amount, metadata=None, customer_id=None, description=None) -> GatewayResult:
        if to_money(amount) <= 0:
            return GatewayResult.failed("Invalid amount")
        intent_id = f"pi_mock_{uuid.uuid4().hex[:24]}"
        return GatewayResult(
            success=True,
            intent_id=intent_id,
            client_secret=f"{intent_id}_secret_mock",
            amount=to_money(amount),
            status="requires_payment_method",
            test_mode=True,
        )

    async def create_connect_intent(self, amount, destination_account_id, metadata=None, description=None) -> GatewayResult:
        result = await self.create_intent(amount, metadata, description=description)
        if result.success:
            result.platform_fee, result.owner_payout = split_platform_fee(amount, self.fee_rate)
        return result

    async def refund(self, intent_id, amount=None, reason=None) -> GatewayResult:
        return GatewayResult(
            success=True,
            refund_id=f"re_mock_{int(time.time())}",
            intent_id=intent_id,
            amount=to_money(amount) if amount is not None else None,
            status="succeeded",
            test_mode=True,
        )

    async def get_intent(self, intent_id) -> GatewayResult:
        return GatewayResult(success=True, intent_id=intent_id, status="succeeded", test_mode=True)

    async def create_customer(self, email, name=None, metadata=None) -> GatewayResult:
        return GatewayResult(success=True, customer_id=f"cus_mock_{uuid.uuid4().hex[:14]}", test_mode=True)


def build_gateway(settings: Settings) -> PaymentGateway:
    fee_rate = fee_rate_from_percent(settings.PLATFORM_FEE_PERCENT)
    if settings.stripe_configured:
        return StripeGateway(settings, fee_rate=fee_rate)
    logger.info("stripe keys not configured, using mock payment gateway")
    return MockGateway(currency=settings.STRIPE_CURRENCY, fee_rate=fee_rate)


_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency; one gateway per process."""
    global _gateway
    if _gateway is None:
        _gateway = build_gateway(get_settings())
    return _gateway
