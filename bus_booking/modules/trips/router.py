from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from bus_booking.db.session import get_session
from bus_booking.schemas.trip import TripCancelRequest, TripCreateRequest, TripResponse
from bus_booking.services.trips import TripDraft, cancel_trip, complete_trip, create_trip, get_trip

router = APIRouter()


@router.post("", response_model=TripResponse, status_code=status.HTTP_201_CREATED)
async def create(req: TripCreateRequest, db: AsyncSession = Depends(get_session)):
    trip = await create_trip(
        db,
        TripDraft(
            origin=req.origin,
            destination=req.destination,
            departure_time=req.departure_time,
            arrival_time=req.arrival_time,
            price=req.price,
            total_seats=req.total_seats,
        ),
    )
    return TripResponse.model_validate(trip)


@router.get("/{trip_id}", response_model=TripResponse)
async def retrieve(trip_id: int, db: AsyncSession = Depends(get_session)):
    trip = await get_trip(db, trip_id)
    return TripResponse.model_validate(trip)


@router.post("/{trip_id}/complete", response_model=TripResponse)
async def complete(trip_id: int, db: AsyncSession = Depends(get_session)):
    trip = await complete_trip(db, trip_id)
    return TripResponse.model_validate(trip)


@router.post("/{trip_id}/cancel", response_model=TripResponse)
async def cancel(trip_id: int, req: TripCancelRequest = None, db: AsyncSession = Depends(get_session)):
    """Cancel the trip and every pending or confirmed booking on it."""
    trip = await cancel_trip(db, trip_id, reason=req.reason if req else None)
    return TripResponse.model_validate(trip)
