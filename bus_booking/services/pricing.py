import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from bus_booking.config import settings

logger = logging.getLogger(__name__)

FULL_REFUND_HOURS = 24
PARTIAL_REFUND_HOURS = 12


@dataclass
class PriceQuote:
    price_per_seat: Decimal
    num_seats: int
    base_fare: Decimal
    discount: Decimal
    bus_fare: Decimal
    convenience_fee: Decimal
    bank_charge: Decimal
    total_pay: Decimal
    currency: str


@dataclass
class RefundQuote:
    total_pay: Decimal
    refund_rate: Decimal
    refund_amount: Decimal
    cancellation_fee: Decimal
    hours_before_departure: float
    currency: str


def round_price(value) -> Decimal:
    value = Decimal(value)
    if not settings.ROUND_TO_THOUSAND:
        return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return (value / 1000).quantize(Decimal("1"), rounding=ROUND_HALF_UP) * 1000


def validate_price(price) -> Decimal:
    """Fall back to the default fare for missing input and clamp into range."""
    try:
        value = Decimal(str(price)) if price is not None else None
    except InvalidOperation:
        value = None
    if value is None or not value.is_finite() or value <= 0:
        logger.warning("Invalid seat price %r, using default", price)
        return Decimal(settings.DEFAULT_PRICE_PER_SEAT)
    if value < settings.MIN_PRICE:
        logger.warning("Seat price %s below minimum, using %s", value, settings.MIN_PRICE)
        return Decimal(settings.MIN_PRICE)
    if value > settings.MAX_PRICE:
        logger.warning("Seat price %s above maximum, using %s", value, settings.MAX_PRICE)
        return Decimal(settings.MAX_PRICE)
    return value


def calculate_booking_price(price_per_seat, num_seats: int, discount: float = 0) -> PriceQuote:
    price = validate_price(price_per_seat)
    seats = max(1, int(num_seats or 1))

    base_fare = price * seats
    bus_fare = base_fare
    discount_amount = Decimal(0)
    if discount and 0 < discount < 1:
        discount_amount = base_fare * Decimal(str(discount))
        bus_fare = base_fare - discount_amount

    convenience_fee = bus_fare * Decimal(str(settings.CONVENIENCE_FEE_RATE))
    bank_charge = bus_fare * Decimal(str(settings.BANK_CHARGE_RATE))
    total = round_price(bus_fare + convenience_fee + bank_charge)
    if total < settings.MIN_TOTAL:
        logger.warning("Booking total %s below minimum, adjusting to %s", total, settings.MIN_TOTAL)
        total = Decimal(settings.MIN_TOTAL)

    return PriceQuote(
        price_per_seat=round_price(price),
        num_seats=seats,
        base_fare=round_price(base_fare),
        discount=round_price(discount_amount),
        bus_fare=round_price(bus_fare),
        convenience_fee=round_price(convenience_fee),
        bank_charge=round_price(bank_charge),
        total_pay=total,
        currency=settings.CURRENCY,
    )


def calculate_cancellation_fee(total_pay, hours_before_departure: float) -> RefundQuote:
    if hours_before_departure >= FULL_REFUND_HOURS:
        rate = Decimal("1")
    elif hours_before_departure >= PARTIAL_REFUND_HOURS:
        rate = Decimal("0.5")
    else:
        rate = Decimal("0")
    total = Decimal(str(total_pay))
    refund = round_price(total * rate)
    return RefundQuote(
        total_pay=round_price(total),
        refund_rate=rate,
        refund_amount=refund,
        cancellation_fee=round_price(total - refund),
        hours_before_departure=hours_before_departure,
        currency=settings.CURRENCY,
    )
