"""Seat availability for a trip, recomputed from the lock and booking tables.

The ``seats_available`` counter on the trip is only a display cache; nothing in
here trusts it. A pending booking or a held lock stops counting the moment its
``expires_at`` passes, whether or not a sweep has run yet.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from bus_booking.models.models import Booking, BookingStatus, SeatLock, SeatLockStatus, Trip
from bus_booking.services.clock import utcnow
from bus_booking.services.errors import NotFoundError


@dataclass
class LockView:
    seat_number: str
    session_id: str
    expires_at: datetime


@dataclass
class SeatAvailability:
    trip_id: int
    total_seats: int
    seats_available: int
    booked_seats: List[str] = field(default_factory=list)
    locked_seats: List[LockView] = field(default_factory=list)

    @property
    def available_count(self) -> int:
        return max(0, self.total_seats - len(self.booked_seats) - len(self.locked_seats))


def active_booking_clause(now: datetime):
    return or_(
        Booking.status.in_([BookingStatus.CONFIRMED, BookingStatus.COMPLETED]),
        and_(Booking.status == BookingStatus.PENDING, Booking.expires_at > now),
    )


async def active_booked_seats(db: AsyncSession, trip_id: int, now: Optional[datetime] = None) -> List[str]:
    """Seats held by active bookings on the trip, deduplicated, in booking order."""
    now = now or utcnow()
    stmt = (
        select(Booking.seat_numbers)
        .where(Booking.trip_id == trip_id)
        .where(active_booking_clause(now))
        .order_by(Booking.id)
    )
    res = await db.execute(stmt)
    seen = {}
    for seats in res.scalars().all():
        for seat in seats or []:
            seen.setdefault(str(seat), None)
    return list(seen)


async def active_locks(
    db: AsyncSession,
    trip_id: int,
    now: Optional[datetime] = None,
    seat_numbers: Optional[Iterable[str]] = None,
    session_id: Optional[str] = None,
    exclude_session: Optional[str] = None,
) -> List[SeatLock]:
    now = now or utcnow()
    stmt = select(SeatLock).where(
        SeatLock.trip_id == trip_id,
        SeatLock.status == SeatLockStatus.HELD,
        SeatLock.expires_at > now,
    )
    if seat_numbers is not None:
        stmt = stmt.where(SeatLock.seat_number.in_(list(seat_numbers)))
    if session_id is not None:
        stmt = stmt.where(SeatLock.session_id == session_id)
    if exclude_session is not None:
        stmt = stmt.where(SeatLock.session_id != exclude_session)
    res = await db.execute(stmt.order_by(SeatLock.id))
    return list(res.scalars().all())


async def get_seat_availability(db: AsyncSession, trip_id: int) -> SeatAvailability:
    async with db.begin():
        trip = await db.get(Trip, trip_id, populate_existing=True)
        if trip is None:
            raise NotFoundError(f"Trip {trip_id} not found", tripId=trip_id)
        now = utcnow()
        booked = await active_booked_seats(db, trip_id, now)
        locks = await active_locks(db, trip_id, now)
        return SeatAvailability(
            trip_id=trip.id,
            total_seats=trip.total_seats,
            seats_available=trip.seats_available,
            booked_seats=booked,
            locked_seats=[LockView(l.seat_number, l.session_id, l.expires_at) for l in locks],
        )
