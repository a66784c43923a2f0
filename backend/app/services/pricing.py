# app/services/pricing.py
"""
Booking price, platform fee and cancellation refund rules.

Everything here is pure: no database, no clock. Callers pass ``now`` in.
Money is handled as ``Decimal`` and rounded half-up to pennies, the way the
amounts are stored (NUMERIC(10, 2)).
"""

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from app.core.errors import ValidationError

Number = Union[Decimal, float, int, str]

PENNY = Decimal("0.01")
DEFAULT_FEE_RATE = Decimal("0.15")

# daily-rate threshold: bookings of at least this many hours may use the day rate
DAILY_RATE_MIN_HOURS = 8


class InvalidRange(ValidationError):
    default_code = "invalid_range"


def to_money(value: Optional[Number]) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(PENNY, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Number) -> int:
    """Major currency units to the provider's smallest unit (pounds -> pence)."""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return to_money(Decimal(int(amount)) / 100)


def fee_rate_from_percent(percent: Number) -> Decimal:
    return Decimal(str(percent)) / Decimal(100)


def compute_duration(start: datetime, end: datetime) -> float:
    """Booking length in hours. Raises InvalidRange unless end > start."""
    if end <= start:
        raise InvalidRange("End time must be after start time")
    return (end - start).total_seconds() / 3600


def compute_price(hours: float, hourly_rate: Number, daily_rate: Optional[Number] = None) -> Decimal:
    """
    Total price for ``hours`` of parking.

    Bookings of 8+ hours on a space with a day rate are charged per started
    day when either more than 8 hours spill into the last day or the day rate
    undercuts eight hourly slots. Anything else is charged by the hour.
    The spill-over is counted in whole hours.
    """
    hourly = Decimal(str(hourly_rate))
    daily = Decimal(str(daily_rate)) if daily_rate else Decimal(0)

    if daily > 0 and hours >= DAILY_RATE_MIN_HOURS:
        days = math.ceil(hours / 24)
        remaining_hours = int(hours) % 24

        if remaining_hours > DAILY_RATE_MIN_HOURS or daily < hourly * DAILY_RATE_MIN_HOURS:
            return to_money(days * daily)

    return to_money(Decimal(str(hours)) * hourly)


def split_platform_fee(total: Number, fee_rate: Decimal = DEFAULT_FEE_RATE) -> tuple[Decimal, Decimal]:
    """
    (platform_fee, owner_payout) for a booking total.

    The fee is taken out of the total, so fee + payout == total.
    """
    total = to_money(total)
    fee = to_money(total * fee_rate)
    payout = to_money(total - fee)
    return fee, payout


@dataclass(frozen=True)
class RefundDecision:
    amount: Decimal
    eligible: bool
    hours_until_start: float


def compute_refund(
    total_price: Number,
    payment_status: str,
    start_time: datetime,
    now: datetime,
    *,
    full_refund_hours: float = 24,
    partial_refund_hours: float = 6,
) -> RefundDecision:
    hours_until_start = (start_time - now).total_seconds() / 3600

    refund = Decimal("0.00")
    if payment_status == "paid":
        if hours_until_start >= full_refund_hours:
            refund = to_money(total_price)
        elif hours_until_start >= partial_refund_hours:
            refund = to_money(to_money(total_price) * Decimal("0.5"))
        # under the partial window: nothing back

    return RefundDecision(amount=refund, eligible=refund > 0, hours_until_start=hours_until_start)


@dataclass(frozen=True)
class PriceQuote:
    """
    Pre-booking price preview.

    ``booking_total_price`` is what a booking stores as ``total_price`` (the
    platform fee is later deducted from it). ``quoted_renter_total`` adds the
    service fee on top, which is what the checkout preview shows the renter.
    """

    hours: float
    hourly_rate: Decimal
    daily_rate: Decimal
    booking_total_price: Decimal
    service_fee: Decimal
    quoted_renter_total: Decimal

    def to_dict(self) -> dict:
        return {
            "hours": self.hours,
            "hourly_rate": self.hourly_rate,
            "daily_rate": self.daily_rate,
            "subtotal": self.booking_total_price,
            "service_fee": self.service_fee,
            "total": self.quoted_renter_total,
        }


def build_quote(
    start: datetime,
    end: datetime,
    hourly_rate: Number,
    daily_rate: Optional[Number] = None,
    fee_rate: Decimal = DEFAULT_FEE_RATE,
) -> PriceQuote:
    hours = compute_duration(start, end)
    subtotal = compute_price(hours, hourly_rate, daily_rate)
    return PriceQuote(
        hours=round(hours, 2),
        hourly_rate=to_money(hourly_rate),
        daily_rate=to_money(daily_rate),
        booking_total_price=subtotal,
        service_fee=to_money(subtotal * fee_rate),
        quoted_renter_total=to_money(subtotal * (1 + fee_rate)),
    )
