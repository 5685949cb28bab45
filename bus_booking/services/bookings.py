"""Booking lifecycle: pending -> confirmed -> completed, with cancel and expiry.

Status changes are conditional UPDATEs on the current status, so a sweep and
a request racing on the same booking can never both win. The trip capacity
counter moves only together with a status change, in the same transaction.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bus_booking.config import settings
from bus_booking.metrics import BOOKING_TRANSITIONS
from bus_booking.models.models import Booking, BookingStatus, SeatLock, SeatLockStatus, Trip
from bus_booking.services.audit import log_audit
from bus_booking.services.availability import active_booked_seats, active_locks
from bus_booking.services.clock import utcnow
from bus_booking.services.errors import (
    ConcurrencyError,
    ExpiredError,
    IllegalStateTransition,
    LockMismatchError,
    NotFoundError,
    SeatConflictError,
    ValidationError,
)
from bus_booking.services.pricing import RefundQuote, calculate_booking_price, calculate_cancellation_fee
from bus_booking.services.references import generate_booking_reference, is_valid_booking_reference
from bus_booking.services.seat_lock import ensure_trip_open, normalize_seat_numbers
from bus_booking.services.transactions import lock_trip, run_in_transaction

logger = logging.getLogger(__name__)

DEFAULT_CANCELLATION_REASON = "Cancelled by user"
SYSTEM_ACTOR = "system"


@dataclass
class BookingDraft:
    trip_id: int
    seat_numbers: List
    passengers: List[Dict]
    session_id: str
    customer_id: int
    pickup_point: Optional[str] = None
    dropoff_point: Optional[str] = None


@dataclass
class CancellationResult:
    booking: Booking
    refund: Optional[RefundQuote] = None


def customer_actor(customer_id) -> str:
    return f"customer:{customer_id}" if customer_id is not None else SYSTEM_ACTOR


def is_past_expiry(booking: Booking, now) -> bool:
    return (
        booking.status == BookingStatus.PENDING
        and booking.expires_at is not None
        and booking.expires_at <= now
    )


async def load_booking(db: AsyncSession, booking_id: int) -> Booking:
    booking = await db.get(Booking, booking_id, populate_existing=True)
    if booking is None:
        raise NotFoundError(f"Booking {booking_id} not found", bookingId=booking_id)
    return booking


async def transition_booking(db: AsyncSession, booking: Booking, current: BookingStatus, target: BookingStatus, *criteria, **values) -> bool:
    """Move ``booking`` from ``current`` to ``target`` if nobody else moved it first."""
    res = await db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == current, *criteria)
        .values(status=target, **values)
        .execution_options(synchronize_session="fetch")
    )
    if res.rowcount != 1:
        return False
    BOOKING_TRANSITIONS.labels(status=target.value).inc()
    return True


async def release_booking_locks(db: AsyncSession, booking: Booking) -> int:
    res = await db.execute(
        update(SeatLock)
        .where(
            SeatLock.booking_id == booking.id,
            SeatLock.status.in_([SeatLockStatus.HELD, SeatLockStatus.ATTACHED]),
        )
        .values(status=SeatLockStatus.RELEASED)
        .execution_options(synchronize_session=False)
    )
    released = res.rowcount
    if released:
        return released
    # nothing linked: fall back to unlinked attached rows that predate the booking
    fallback = await db.execute(
        update(SeatLock)
        .where(
            SeatLock.trip_id == booking.trip_id,
            SeatLock.seat_number.in_(list(booking.seat_numbers or [])),
            SeatLock.status == SeatLockStatus.ATTACHED,
            SeatLock.booking_id.is_(None),
            SeatLock.created_at <= booking.created_at,
        )
        .values(status=SeatLockStatus.RELEASED)
        .execution_options(synchronize_session=False)
    )
    return fallback.rowcount


async def expire_booking(db: AsyncSession, booking: Booking, now, actor: str = SYSTEM_ACTOR) -> bool:
    """Flip a pending booking past its expiry to ``expired`` and free its seats.

    The capacity counter is untouched; a pending booking never consumed it.
    """
    expired = await transition_booking(
        db,
        booking,
        BookingStatus.PENDING,
        BookingStatus.EXPIRED,
        Booking.expires_at <= now,
    )
    if not expired:
        return False
    released = await release_booking_locks(db, booking)
    log_audit(
        db,
        actor,
        "booking.expired",
        object_type="booking",
        object_id=booking.id,
        detail={"seatNumbers": booking.seat_numbers, "releasedLocks": released},
    )
    logger.info("Booking expired", extra={"booking_id": booking.id, "trip_id": booking.trip_id})
    return True


async def expire_if_due(db: AsyncSession, booking: Booking, now=None) -> Booking:
    now = now or utcnow()
    if is_past_expiry(booking, now):
        await expire_booking(db, booking, now)
    return booking


async def create_booking(db: AsyncSession, draft: BookingDraft) -> Booking:
    """Turn the session's held locks into a pending booking.

    Every requested seat must be covered by exactly one unexpired lock held by
    ``draft.session_id``; those locks become ``attached`` to the new booking.
    """
    if not draft.session_id:
        raise ValidationError("Session ID required")
    if draft.customer_id is None:
        raise ValidationError("Customer ID required")
    raw_seats = list(draft.seat_numbers or [])
    seats = normalize_seat_numbers(raw_seats)
    if not seats:
        raise ValidationError("At least one seat is required")
    if len(seats) != len(raw_seats):
        raise ValidationError("Duplicate seat numbers in request", seatNumbers=[str(s).strip() for s in raw_seats])
    passengers = list(draft.passengers or [])
    if len(passengers) != len(seats):
        raise ValidationError(
            "Number of passengers must match number of seats",
            seats=len(seats),
            passengers=len(passengers),
        )

    async def _create() -> Booking:
        trip = await lock_trip(db, draft.trip_id)
        ensure_trip_open(trip)
        now = utcnow()

        booked = set(await active_booked_seats(db, trip.id, now))
        taken = [seat for seat in seats if seat in booked]
        if taken:
            raise SeatConflictError("Some seats are already booked", booked_seats=taken)

        locks = await active_locks(db, trip.id, now, seat_numbers=seats, session_id=draft.session_id)
        per_seat = {}
        for lock in locks:
            per_seat.setdefault(lock.seat_number, []).append(lock)
        if len(per_seat) != len(seats) or any(len(rows) != 1 for rows in per_seat.values()):
            raise LockMismatchError(expected=len(seats), found=len(locks))

        quote = calculate_booking_price(trip.price, len(seats))
        booking = Booking(
            trip_id=trip.id,
            customer_id=draft.customer_id,
            seat_numbers=seats,
            passengers=passengers,
            status=BookingStatus.PENDING,
            bus_fare=quote.bus_fare,
            convenience_fee=quote.convenience_fee,
            bank_charge=quote.bank_charge,
            total_pay=quote.total_pay,
            currency=quote.currency,
            booking_reference=generate_booking_reference(),
            pickup_point=draft.pickup_point,
            dropoff_point=draft.dropoff_point,
            expires_at=now + timedelta(minutes=settings.BOOKING_TTL_MINUTES),
            created_at=now,
        )
        db.add(booking)
        await db.flush()

        await db.execute(
            update(SeatLock)
            .where(SeatLock.id.in_([lock.id for lock in locks]))
            .values(status=SeatLockStatus.ATTACHED, booking_id=booking.id)
            .execution_options(synchronize_session=False)
        )
        log_audit(
            db,
            customer_actor(draft.customer_id),
            "booking.created",
            object_type="booking",
            object_id=booking.id,
            detail={"tripId": trip.id, "seatNumbers": seats, "sessionId": draft.session_id},
        )
        return booking

    booking = await run_in_transaction(db, _create, label="booking creation")
    BOOKING_TRANSITIONS.labels(status=BookingStatus.PENDING.value).inc()
    logger.info(
        "Booking created",
        extra={
            "booking_id": booking.id,
            "booking_reference": booking.booking_reference,
            "trip_id": booking.trip_id,
            "seats": booking.seat_numbers,
        },
    )
    return booking


async def confirm_booking(db: AsyncSession, booking_id: int, payment_reference: str, gateway) -> Booking:
    """Confirm a pending booking once ``gateway`` vouches for the payment.

    A booking found past its expiry is expired (and that is committed) before
    ExpiredError is raised.
    """
    if not payment_reference:
        raise ValidationError("Payment reference required")
    await gateway.verify(payment_reference, booking_id)

    async def _confirm() -> Optional[Booking]:
        booking = await load_booking(db, booking_id)
        trip = await lock_trip(db, booking.trip_id)
        booking = await load_booking(db, booking_id)
        now = utcnow()
        if booking.status != BookingStatus.PENDING:
            raise IllegalStateTransition("booking", booking.status.value, BookingStatus.CONFIRMED.value)
        if is_past_expiry(booking, now):
            await expire_booking(db, booking, now, actor=customer_actor(booking.customer_id))
            return None
        ensure_trip_open(trip)

        confirmed = await transition_booking(
            db,
            booking,
            BookingStatus.PENDING,
            BookingStatus.CONFIRMED,
            expires_at=None,
            payment_reference=payment_reference,
            confirmed_at=now,
        )
        if not confirmed:
            raise ConcurrencyError()
        await db.execute(
            update(SeatLock)
            .where(SeatLock.booking_id == booking.id, SeatLock.status == SeatLockStatus.HELD)
            .values(status=SeatLockStatus.ATTACHED)
            .execution_options(synchronize_session=False)
        )
        seats = booking.seat_count
        if trip.seats_available < seats:
            logger.warning(
                "Capacity counter below confirmed seat count, flooring at zero",
                extra={"trip_id": trip.id, "seats_available": trip.seats_available, "seats": seats},
            )
        trip.seats_available = max(0, trip.seats_available - seats)
        log_audit(
            db,
            customer_actor(booking.customer_id),
            "booking.confirmed",
            object_type="booking",
            object_id=booking.id,
            detail={"paymentReference": payment_reference, "seatNumbers": booking.seat_numbers},
        )
        await db.flush()
        return booking

    booking = await run_in_transaction(db, _confirm, label="booking confirmation")
    if booking is None:
        raise ExpiredError("Booking has expired. Please create a new booking.", bookingId=booking_id)
    logger.info(
        "Booking confirmed",
        extra={"booking_id": booking.id, "payment_reference": payment_reference},
    )
    return booking


async def cancel_booking(
    db: AsyncSession,
    booking_id: int,
    reason: Optional[str] = None,
    customer_id: Optional[int] = None,
) -> CancellationResult:
    reason = reason or DEFAULT_CANCELLATION_REASON

    async def _cancel() -> Optional[CancellationResult]:
        booking = await load_booking(db, booking_id)
        if customer_id is not None and booking.customer_id != customer_id:
            raise NotFoundError(f"Booking {booking_id} not found", bookingId=booking_id)
        trip = await lock_trip(db, booking.trip_id)
        booking = await load_booking(db, booking_id)
        now = utcnow()
        current = booking.status
        if current not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            raise IllegalStateTransition("booking", current.value, BookingStatus.CANCELLED.value)
        if is_past_expiry(booking, now):
            await expire_booking(db, booking, now, actor=customer_actor(booking.customer_id))
            return None

        cancelled = await transition_booking(
            db,
            booking,
            current,
            BookingStatus.CANCELLED,
            cancelled_at=now,
            cancellation_reason=reason,
        )
        if not cancelled:
            raise ConcurrencyError()
        released = await release_booking_locks(db, booking)

        refund = None
        if current == BookingStatus.CONFIRMED:
            restore_capacity(trip, booking.seat_count)
            hours = (trip.departure_time - now).total_seconds() / 3600
            refund = calculate_cancellation_fee(booking.total_pay, hours)

        log_audit(
            db,
            customer_actor(booking.customer_id),
            "booking.cancelled",
            object_type="booking",
            object_id=booking.id,
            detail={"from": current.value, "reason": reason, "releasedLocks": released},
        )
        await db.flush()
        return CancellationResult(booking=booking, refund=refund)

    result = await run_in_transaction(db, _cancel, label="booking cancellation")
    if result is None:
        raise ExpiredError("Booking has already expired", bookingId=booking_id)
    logger.info("Booking cancelled", extra={"booking_id": booking_id, "reason": reason})
    return result


def restore_capacity(trip: Trip, seats: int) -> None:
    restored = trip.seats_available + seats
    if restored > trip.total_seats:
        logger.error(
            "Capacity counter would exceed total seats, capping",
            extra={"trip_id": trip.id, "seats_available": trip.seats_available, "seats": seats, "total_seats": trip.total_seats},
        )
        restored = trip.total_seats
    trip.seats_available = restored


async def get_booking(db: AsyncSession, booking_id: int) -> Booking:
    async def _get() -> Booking:
        booking = await load_booking(db, booking_id)
        return await expire_if_due(db, booking)

    return await run_in_transaction(db, _get, label="booking lookup")


async def get_booking_by_reference(db: AsyncSession, reference: str) -> Booking:
    if not is_valid_booking_reference(reference):
        raise ValidationError("Invalid booking reference format", bookingReference=reference)

    async def _get() -> Booking:
        res = await db.execute(
            select(Booking)
            .where(Booking.booking_reference == reference)
            .execution_options(populate_existing=True)
        )
        booking = res.scalar_one_or_none()
        if booking is None:
            raise NotFoundError("Booking not found", bookingReference=reference)
        return await expire_if_due(db, booking)

    return await run_in_transaction(db, _get, label="booking lookup")


async def list_customer_bookings(db: AsyncSession, customer_id: int) -> List[Booking]:
    async def _list() -> List[Booking]:
        res = await db.execute(
            select(Booking)
            .where(Booking.customer_id == customer_id)
            .order_by(Booking.created_at.desc(), Booking.id.desc())
            .execution_options(populate_existing=True)
        )
        bookings = list(res.scalars().all())
        now = utcnow()
        for booking in bookings:
            await expire_if_due(db, booking, now)
        return bookings

    return await run_in_transaction(db, _list, label="booking listing")


async def expire_pending_bookings(db: AsyncSession) -> int:
    """Expire every pending booking whose hold has run out. Returns the count."""

    async def _sweep() -> int:
        now = utcnow()
        res = await db.execute(
            select(Booking).where(
                Booking.status == BookingStatus.PENDING,
                Booking.expires_at <= now,
            )
        )
        count = 0
        for booking in res.scalars().all():
            if await expire_booking(db, booking, now):
                count += 1
        return count

    count = await run_in_transaction(db, _sweep, label="booking expiry sweep")
    if count:
        logger.info("Expired pending bookings", extra={"count": count})
    return count
