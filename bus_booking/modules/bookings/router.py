from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from bus_booking.db.session import get_session
from bus_booking.schemas.booking import (
    BookingCancelRequest,
    BookingCancelResponse,
    BookingConfirmRequest,
    BookingCreateRequest,
    BookingResponse,
    ExpireResponse,
    RefundResponse,
)
from bus_booking.services.bookings import (
    BookingDraft,
    cancel_booking,
    confirm_booking,
    create_booking,
    expire_pending_bookings,
    get_booking,
    get_booking_by_reference,
    list_customer_bookings,
)
from bus_booking.services.payment_gateway import PaymentGateway, get_payment_gateway

router = APIRouter()


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create(req: BookingCreateRequest, db: AsyncSession = Depends(get_session)):
    """Create a pending booking from the seats the session has locked."""
    draft = BookingDraft(
        trip_id=req.trip_id,
        seat_numbers=req.seat_numbers,
        passengers=[p.model_dump(exclude_none=True) for p in req.passengers],
        session_id=req.session_id,
        customer_id=req.customer_id,
        pickup_point=req.pickup_point,
        dropoff_point=req.dropoff_point,
    )
    booking = await create_booking(db, draft)
    return BookingResponse.model_validate(booking)


@router.get("", response_model=List[BookingResponse])
async def list_bookings(customer_id: int = Query(..., alias="customerId"), db: AsyncSession = Depends(get_session)):
    bookings = await list_customer_bookings(db, customer_id)
    return [BookingResponse.model_validate(b) for b in bookings]


@router.post("/expire-pending", response_model=ExpireResponse)
async def expire_pending(db: AsyncSession = Depends(get_session)):
    count = await expire_pending_bookings(db)
    return ExpireResponse(count=count)


@router.get("/reference/{reference}", response_model=BookingResponse)
async def by_reference(reference: str, db: AsyncSession = Depends(get_session)):
    booking = await get_booking_by_reference(db, reference)
    return BookingResponse.model_validate(booking)


@router.get("/{booking_id}", response_model=BookingResponse)
async def retrieve(booking_id: int, db: AsyncSession = Depends(get_session)):
    booking = await get_booking(db, booking_id)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm(
    booking_id: int,
    req: BookingConfirmRequest,
    db: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Confirm a pending booking against a successful payment reference."""
    booking = await confirm_booking(db, booking_id, req.payment_reference, gateway)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/cancel", response_model=BookingCancelResponse)
async def cancel(booking_id: int, req: BookingCancelRequest = None, db: AsyncSession = Depends(get_session)):
    req = req or BookingCancelRequest()
    result = await cancel_booking(db, booking_id, reason=req.reason, customer_id=req.customer_id)
    return BookingCancelResponse(
        booking=BookingResponse.model_validate(result.booking),
        refund=RefundResponse.model_validate(result.refund) if result.refund else None,
    )
