from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from bus_booking.db.session import get_session
from bus_booking.schemas.seat_lock import (
    CleanupResponse,
    LockedSeat,
    LockExtendRequest,
    LockExtendResponse,
    SeatAvailabilityResponse,
    SeatConfirmRequest,
    SeatConfirmResponse,
    SeatLockRequest,
    SeatLockResponse,
    SeatReleaseRequest,
    SeatReleaseResponse,
    SessionLock,
)
from bus_booking.services.availability import get_seat_availability
from bus_booking.services.seat_lock import (
    confirm_seats,
    extend_locks,
    list_session_locks,
    reconcile_locks,
    release_seats,
    sweep_expired_locks,
)

router = APIRouter()


@router.get("/availability/{trip_id}", response_model=SeatAvailabilityResponse)
async def seat_availability(trip_id: int, db: AsyncSession = Depends(get_session)):
    """Booked and locked seats of a trip, recomputed on every call."""
    view = await get_seat_availability(db, trip_id)
    return SeatAvailabilityResponse.model_validate(view)


@router.post("/lock", response_model=SeatLockResponse, status_code=status.HTTP_201_CREATED)
async def lock_seats(req: SeatLockRequest, db: AsyncSession = Depends(get_session)):
    """Make the session's locks on the trip exactly ``seatNumbers``.

    Seats the session held before but no longer asks for are released; all
    remaining locks share the returned expiry.
    """
    grant = await reconcile_locks(db, req.trip_id, req.seat_numbers, req.session_id, req.customer_id)
    return SeatLockResponse(
        trip_id=grant.trip_id,
        session_id=grant.session_id,
        expires_at=grant.expires_at,
        locked_seats=[LockedSeat(seat_number=seat, expires_at=grant.expires_at) for seat in grant.seat_numbers],
        created=grant.created,
        kept=grant.kept,
        released=grant.released,
    )


@router.post("/release", response_model=SeatReleaseResponse)
async def release(req: SeatReleaseRequest, db: AsyncSession = Depends(get_session)):
    count = await release_seats(db, req.session_id, trip_id=req.trip_id, seat_numbers=req.seat_numbers)
    return SeatReleaseResponse(released_count=count)


@router.post("/confirm", response_model=SeatConfirmResponse)
async def confirm(req: SeatConfirmRequest, db: AsyncSession = Depends(get_session)):
    count = await confirm_seats(db, req.trip_id, req.session_id, seat_numbers=req.seat_numbers)
    return SeatConfirmResponse(confirmed_count=count)


@router.post("/extend", response_model=LockExtendResponse)
async def extend(req: LockExtendRequest, db: AsyncSession = Depends(get_session)):
    expires_at = await extend_locks(db, req.trip_id, req.session_id, req.additional_minutes)
    return LockExtendResponse(trip_id=req.trip_id, session_id=req.session_id, expires_at=expires_at)


@router.get("/my-locks", response_model=List[SessionLock])
async def my_locks(session_id: str = Query(..., alias="sessionId"), db: AsyncSession = Depends(get_session)):
    locks = await list_session_locks(db, session_id)
    return [
        SessionLock(
            id=lock.id,
            trip_id=lock.trip_id,
            seat_number=lock.seat_number,
            expires_at=lock.expires_at,
            origin=lock.trip.origin,
            destination=lock.trip.destination,
            departure_time=lock.trip.departure_time,
        )
        for lock in locks
    ]


@router.post("/cleanup-expired", response_model=CleanupResponse)
async def cleanup_expired(db: AsyncSession = Depends(get_session)):
    count = await sweep_expired_locks(db)
    return CleanupResponse(updated_count=count)
