"""Seat locks: the transient claim a checkout session holds on seats of a trip.

A session always owns exactly the seat set it last asked for. Every request
re-reconciles that set against active bookings and other sessions' locks and
renews the expiry of all surviving locks together.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bus_booking.config import settings
from bus_booking.metrics import SEAT_LOCK_ATTEMPTS, SEAT_LOCK_LATENCY, SEAT_LOCKS_EXPIRED
from bus_booking.models.models import SeatLock, SeatLockStatus, Trip, TripStatus
from bus_booking.services.availability import active_booked_seats, active_locks
from bus_booking.services.clock import utcnow
from bus_booking.services.errors import (
    NotFoundError,
    SeatConflictError,
    ValidationError,
)
from bus_booking.services.transactions import lock_trip, run_in_transaction

logger = logging.getLogger(__name__)


def normalize_seat_numbers(values: Optional[Iterable]) -> List[str]:
    """Seat identifiers as stripped strings, duplicates dropped, order kept."""
    seats = {}
    for value in values or []:
        if value is None or isinstance(value, bool):
            raise ValidationError(f"Invalid seat number: {value!r}")
        seat = str(value).strip()
        if not seat:
            raise ValidationError("Seat numbers must not be blank")
        seats.setdefault(seat, None)
    return list(seats)


def ensure_trip_open(trip: Trip) -> None:
    if trip.status != TripStatus.SCHEDULED:
        raise ValidationError(
            f"Trip {trip.id} is {trip.status.value} and no longer open for booking",
            tripId=trip.id,
            tripStatus=trip.status.value,
        )


@dataclass
class LockGrant:
    trip_id: int
    session_id: str
    expires_at: datetime
    seat_numbers: List[str] = field(default_factory=list)
    created: List[str] = field(default_factory=list)
    kept: List[str] = field(default_factory=list)
    released: List[str] = field(default_factory=list)


async def reconcile_locks(
    db: AsyncSession,
    trip_id: int,
    seat_numbers: Iterable,
    session_id: str,
    customer_id: Optional[int] = None,
) -> LockGrant:
    """Make the session's held locks on the trip match ``seat_numbers`` exactly.

    Rejects the whole request when any desired seat is in an active booking or
    held by another session; nothing is written in that case.
    """
    desired = normalize_seat_numbers(seat_numbers)
    if not desired:
        raise ValidationError("Missing required fields: tripId, seatNumbers array")
    if not session_id:
        raise ValidationError("Session ID required")

    async def _reconcile() -> LockGrant:
        trip = await lock_trip(db, trip_id)
        ensure_trip_open(trip)
        now = utcnow()

        booked = set(await active_booked_seats(db, trip_id, now))
        already_booked = [s for s in desired if s in booked]
        if already_booked:
            raise SeatConflictError("Some seats are already booked", booked_seats=already_booked)

        others = await active_locks(db, trip_id, now, seat_numbers=desired, exclude_session=session_id)
        if others:
            raise SeatConflictError(
                "Some seats are already locked by another user",
                locked_seats=[{"seatNumber": l.seat_number, "sessionId": l.session_id} for l in others],
            )

        mine = {}
        duplicates = []
        for lock in await active_locks(db, trip_id, now, session_id=session_id):
            if lock.seat_number in mine:
                duplicates.append(lock.id)
            else:
                mine[lock.seat_number] = lock

        desired_set = set(desired)
        to_release = [seat for seat in mine if seat not in desired_set]
        to_keep = [seat for seat in desired if seat in mine]
        to_lock = [seat for seat in desired if seat not in mine]
        expires_at = now + timedelta(minutes=settings.SEAT_LOCK_TTL_MINUTES)

        release_ids = [mine[seat].id for seat in to_release] + duplicates
        if release_ids:
            await db.execute(
                update(SeatLock)
                .where(SeatLock.id.in_(release_ids), SeatLock.status == SeatLockStatus.HELD)
                .values(status=SeatLockStatus.RELEASED)
                .execution_options(synchronize_session=False)
            )
        if to_keep:
            await db.execute(
                update(SeatLock)
                .where(SeatLock.id.in_([mine[seat].id for seat in to_keep]))
                .values(expires_at=expires_at)
                .execution_options(synchronize_session=False)
            )
        db.add_all(
            SeatLock(
                trip_id=trip_id,
                seat_number=seat,
                session_id=session_id,
                customer_id=customer_id,
                status=SeatLockStatus.HELD,
                created_at=now,
                expires_at=expires_at,
            )
            for seat in to_lock
        )
        await db.flush()

        return LockGrant(
            trip_id=trip_id,
            session_id=session_id,
            expires_at=expires_at,
            seat_numbers=list(desired),
            created=to_lock,
            kept=to_keep,
            released=to_release,
        )

    start = time.perf_counter()
    try:
        grant = await run_in_transaction(db, _reconcile, label="seat lock reconciliation")
    except SeatConflictError as exc:
        SEAT_LOCK_ATTEMPTS.labels(result="conflict").inc()
        logger.info(
            "Seat lock rejected",
            extra={"trip_id": trip_id, "session_id": session_id, "booked": exc.booked_seats, "locked": exc.locked_seats},
        )
        raise
    SEAT_LOCK_ATTEMPTS.labels(result="success").inc()
    SEAT_LOCK_LATENCY.observe(time.perf_counter() - start)
    logger.info(
        "Seat locks reconciled",
        extra={
            "trip_id": trip_id,
            "session_id": session_id,
            "created_seats": grant.created,
            "kept_seats": grant.kept,
            "released_seats": grant.released,
        },
    )
    return grant


async def sweep_expired_locks(db: AsyncSession, trip_id: Optional[int] = None) -> int:
    """Move held locks whose expiry has passed to ``expired``.

    The conditional UPDATE only touches rows that are still held and still past
    expiry, so overlapping sweeps never double count.
    """

    async def _sweep() -> int:
        stmt = update(SeatLock).where(
            SeatLock.status == SeatLockStatus.HELD,
            SeatLock.expires_at < utcnow(),
        )
        if trip_id is not None:
            stmt = stmt.where(SeatLock.trip_id == trip_id)
        res = await db.execute(
            stmt.values(status=SeatLockStatus.EXPIRED).execution_options(synchronize_session=False)
        )
        return res.rowcount

    count = await run_in_transaction(db, _sweep, label="lock sweep")
    if count:
        SEAT_LOCKS_EXPIRED.inc(count)
        logger.info("Expired seat locks cleaned up", extra={"count": count, "trip_id": trip_id})
    return count


async def release_seats(
    db: AsyncSession,
    session_id: str,
    trip_id: Optional[int] = None,
    seat_numbers: Optional[Iterable] = None,
) -> int:
    if not session_id:
        raise ValidationError("Session ID required")

    async def _release() -> int:
        stmt = update(SeatLock).where(
            SeatLock.session_id == session_id,
            SeatLock.status == SeatLockStatus.HELD,
        )
        if trip_id is not None:
            stmt = stmt.where(SeatLock.trip_id == trip_id)
        if seat_numbers is not None:
            stmt = stmt.where(SeatLock.seat_number.in_(normalize_seat_numbers(seat_numbers)))
        res = await db.execute(
            stmt.values(status=SeatLockStatus.RELEASED).execution_options(synchronize_session=False)
        )
        return res.rowcount

    count = await run_in_transaction(db, _release, label="seat release")
    logger.info("Seats released", extra={"session_id": session_id, "trip_id": trip_id, "count": count})
    return count


async def confirm_seats(
    db: AsyncSession,
    trip_id: int,
    session_id: str,
    seat_numbers: Optional[Iterable] = None,
) -> int:
    """Attach the session's held, unexpired locks without creating a booking."""
    if not trip_id or not session_id:
        raise ValidationError("Trip ID and Session ID required")

    async def _confirm() -> int:
        await lock_trip(db, trip_id)
        stmt = update(SeatLock).where(
            SeatLock.trip_id == trip_id,
            SeatLock.session_id == session_id,
            SeatLock.status == SeatLockStatus.HELD,
            SeatLock.expires_at > utcnow(),
        )
        if seat_numbers is not None:
            stmt = stmt.where(SeatLock.seat_number.in_(normalize_seat_numbers(seat_numbers)))
        res = await db.execute(
            stmt.values(status=SeatLockStatus.ATTACHED).execution_options(synchronize_session=False)
        )
        return res.rowcount

    return await run_in_transaction(db, _confirm, label="seat confirm")


async def extend_locks(db: AsyncSession, trip_id: int, session_id: str, additional_minutes: Optional[int] = None) -> datetime:
    """Push the expiry of the session's active locks to now + ``additional_minutes``.

    Locks that already expired stay expired; another session may own the seat
    by now.
    """
    if not trip_id or not session_id:
        raise ValidationError("Trip ID and Session ID required")
    if additional_minutes is None:
        additional_minutes = settings.LOCK_EXTENSION_DEFAULT_MINUTES
    if additional_minutes <= 0:
        raise ValidationError("additionalMinutes must be positive")

    async def _extend() -> datetime:
        await lock_trip(db, trip_id)
        now = utcnow()
        locks = await active_locks(db, trip_id, now, session_id=session_id)
        if not locks:
            raise NotFoundError("No active locks found", tripId=trip_id, sessionId=session_id)
        expires_at = now + timedelta(minutes=additional_minutes)
        await db.execute(
            update(SeatLock)
            .where(SeatLock.id.in_([l.id for l in locks]))
            .values(expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        return expires_at

    return await run_in_transaction(db, _extend, label="lock extension")


async def list_session_locks(db: AsyncSession, session_id: str) -> List[SeatLock]:
    if not session_id:
        raise ValidationError("Session ID required")
    async with db.begin():
        stmt = (
            select(SeatLock)
            .options(selectinload(SeatLock.trip))
            .where(
                SeatLock.session_id == session_id,
                SeatLock.status == SeatLockStatus.HELD,
                SeatLock.expires_at > utcnow(),
            )
            .order_by(SeatLock.created_at.desc(), SeatLock.id.desc())
        )
        res = await db.execute(stmt)
        return list(res.scalars().all())
