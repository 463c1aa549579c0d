"""Booking fee and deposit pricing."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from booking.models import Facility

ZERO = Decimal("0")
CENT = Decimal("0.01")
ONE_MICROSECOND = timedelta(microseconds=1)
MICROSECONDS_PER_HOUR = Decimal(3600 * 10**6)


def to_money(amount: Decimal) -> Decimal:
    """Round an exact amount to the cent precision bookings are stored with."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FeeQuote:
    fee: Decimal
    deposit: Decimal


def _as_decimal(value) -> Decimal | None:
    if value is None:
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))


class FeeCalculator:
    @staticmethod
    def compute(facility: Facility, start_time: datetime, end_time: datetime) -> FeeQuote:
        """Price an interval at the facility's hourly rate.

        The fee uses the exact fractional hour count with no rounding, so it is
        additive over contiguous intervals. The deposit is a flat amount.
        """
        hourly_fee = _as_decimal(facility.hourly_fee)
        deposit = _as_decimal(facility.deposit_amount)

        fee = ZERO
        if hourly_fee is not None:
            micros = Decimal((end_time - start_time) // ONE_MICROSECOND)
            fee = hourly_fee * micros / MICROSECONDS_PER_HOUR

        return FeeQuote(fee=fee, deposit=deposit if deposit is not None else ZERO)
