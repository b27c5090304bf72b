"""Booking price arithmetic.

Amounts are whole currency units. Each step rounds half-up on its own, so
the fee and the tax are rounded before they are summed into the final
amount.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from ticketing.exceptions import ValidationError

CONVENIENCE_FEE_RATE = Decimal("0.02")
TAX_RATE = Decimal("0.18")
CANCELLATION_CHARGE_RATE = Decimal("0.10")
MAX_CANCELLATION_CHARGE = 200


def round_half_up(value) -> int:
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: int
    convenience_fee: int
    taxes: int
    final_amount: int

    def to_dict(self):
        return {
            "subtotal": self.subtotal,
            "convenienceFee": self.convenience_fee,
            "taxes": self.taxes,
            "finalAmount": self.final_amount,
        }


@dataclass(frozen=True)
class CancellationQuote:
    cancellation_charge: int
    refund_amount: int

    def to_dict(self):
        return {
            "cancellationCharge": self.cancellation_charge,
            "refundAmount": self.refund_amount,
        }


def _seat_price(seat):
    if isinstance(seat, dict):
        return seat.get("price")
    return getattr(seat, "price", seat)


def calculate_pricing(seats) -> PriceBreakdown:
    """Price a list of seats (dicts with a ``price`` key or bare amounts)."""
    if not seats:
        raise ValidationError("At least one seat is required")

    subtotal = 0
    for seat in seats:
        price = _seat_price(seat)
        if isinstance(price, bool) or not isinstance(price, int):
            raise ValidationError(f"Seat price must be a whole amount, got {price!r}")
        if price < 0:
            raise ValidationError("Seat price cannot be negative")
        subtotal += price

    convenience_fee = round_half_up(subtotal * CONVENIENCE_FEE_RATE)
    taxes = round_half_up((subtotal + convenience_fee) * TAX_RATE)
    return PriceBreakdown(
        subtotal=subtotal,
        convenience_fee=convenience_fee,
        taxes=taxes,
        final_amount=subtotal + convenience_fee + taxes,
    )


def calculate_cancellation(final_amount: int) -> CancellationQuote:
    if final_amount < 0:
        raise ValidationError("Final amount cannot be negative")
    charge = min(round_half_up(final_amount * CANCELLATION_CHARGE_RATE), MAX_CANCELLATION_CHARGE)
    return CancellationQuote(cancellation_charge=charge, refund_amount=final_amount - charge)
