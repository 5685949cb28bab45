import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bus_booking.models.models import Booking, BookingStatus, SeatLock, SeatLockStatus, Trip, TripStatus
from bus_booking.services.audit import log_audit
from bus_booking.services.bookings import SYSTEM_ACTOR, release_booking_locks, restore_capacity, transition_booking
from bus_booking.services.clock import utcnow
from bus_booking.services.errors import IllegalStateTransition, NotFoundError, ValidationError
from bus_booking.services.transactions import lock_trip, run_in_transaction

logger = logging.getLogger(__name__)

TRIP_CANCELLED_REASON = "Trip cancelled by operator"


@dataclass
class TripDraft:
    origin: str
    destination: str
    departure_time: datetime
    price: Decimal
    total_seats: int
    arrival_time: Optional[datetime] = None


async def create_trip(db: AsyncSession, draft: TripDraft) -> Trip:
    if draft.total_seats is None or draft.total_seats <= 0:
        raise ValidationError("totalSeats must be positive")
    if draft.price is None or Decimal(str(draft.price)) <= 0:
        raise ValidationError("price must be positive")
    if draft.arrival_time is not None and draft.arrival_time <= draft.departure_time:
        raise ValidationError("arrivalTime must be after departureTime")

    trip = Trip(
        origin=draft.origin,
        destination=draft.destination,
        departure_time=draft.departure_time,
        arrival_time=draft.arrival_time,
        status=TripStatus.SCHEDULED,
        price=draft.price,
        total_seats=draft.total_seats,
        seats_available=draft.total_seats,
        lock_version=0,
    )
    async with db.begin():
        db.add(trip)
        await db.flush()
        log_audit(db, SYSTEM_ACTOR, "trip.created", object_type="trip", object_id=trip.id)
    logger.info("Trip created", extra={"trip_id": trip.id, "total_seats": trip.total_seats})
    return trip


async def get_trip(db: AsyncSession, trip_id: int) -> Trip:
    async with db.begin():
        trip = await db.get(Trip, trip_id, populate_existing=True)
    if trip is None:
        raise NotFoundError(f"Trip {trip_id} not found", tripId=trip_id)
    return trip


async def _release_held_locks(db: AsyncSession, trip_id: int) -> int:
    res = await db.execute(
        update(SeatLock)
        .where(SeatLock.trip_id == trip_id, SeatLock.status == SeatLockStatus.HELD)
        .values(status=SeatLockStatus.RELEASED)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount


async def complete_trip(db: AsyncSession, trip_id: int) -> Trip:
    """Close the trip and mark every confirmed booking on it completed."""

    async def _complete() -> Trip:
        trip = await lock_trip(db, trip_id)
        if trip.status in (TripStatus.COMPLETED, TripStatus.CANCELLED):
            raise IllegalStateTransition("trip", trip.status.value, TripStatus.COMPLETED.value)
        now = utcnow()
        res = await db.execute(
            select(Booking).where(Booking.trip_id == trip_id, Booking.status == BookingStatus.CONFIRMED)
        )
        completed = 0
        for booking in res.scalars().all():
            if await transition_booking(db, booking, BookingStatus.CONFIRMED, BookingStatus.COMPLETED):
                completed += 1
        await _release_held_locks(db, trip_id)
        trip.status = TripStatus.COMPLETED
        trip.completed_at = now
        log_audit(db, SYSTEM_ACTOR, "trip.completed", object_type="trip", object_id=trip.id, detail={"completedBookings": completed})
        await db.flush()
        return trip

    trip = await run_in_transaction(db, _complete, label="trip completion")
    logger.info("Trip completed", extra={"trip_id": trip_id})
    return trip


async def cancel_trip(db: AsyncSession, trip_id: int, reason: Optional[str] = None) -> Trip:
    """Cancel the trip together with all of its pending and confirmed bookings.

    Capacity is given back only for bookings that had been confirmed.
    """
    reason = reason or TRIP_CANCELLED_REASON

    async def _cancel() -> Trip:
        trip = await lock_trip(db, trip_id)
        if trip.status in (TripStatus.COMPLETED, TripStatus.CANCELLED):
            raise IllegalStateTransition("trip", trip.status.value, TripStatus.CANCELLED.value)
        now = utcnow()
        res = await db.execute(
            select(Booking).where(
                Booking.trip_id == trip_id,
                Booking.status.in_([BookingStatus.PENDING, BookingStatus.CONFIRMED]),
            )
        )
        cancelled = []
        for booking in res.scalars().all():
            current = booking.status
            ok = await transition_booking(
                db,
                booking,
                current,
                BookingStatus.CANCELLED,
                cancelled_at=now,
                cancellation_reason=reason,
            )
            if not ok:
                continue
            await release_booking_locks(db, booking)
            if current == BookingStatus.CONFIRMED:
                restore_capacity(trip, booking.seat_count)
            cancelled.append(booking.id)
        await _release_held_locks(db, trip_id)
        trip.status = TripStatus.CANCELLED
        trip.cancelled_at = now
        trip.cancellation_reason = reason
        log_audit(
            db,
            SYSTEM_ACTOR,
            "trip.cancelled",
            object_type="trip",
            object_id=trip.id,
            detail={"reason": reason, "cancelledBookings": cancelled},
        )
        await db.flush()
        return trip

    trip = await run_in_transaction(db, _cancel, label="trip cancellation")
    logger.info("Trip cancelled", extra={"trip_id": trip_id, "reason": reason})
    return trip
