"""Shortcuts shared by the service and API tests."""
from datetime import timedelta

from sqlalchemy import func, select, update

from bus_booking.models.models import Booking, SeatLock
from bus_booking.services.bookings import BookingDraft, create_booking
from bus_booking.services.clock import utcnow
from bus_booking.services.seat_lock import reconcile_locks

VALID_CARD = {
    "card_number": "4111111111111111",
    "card_type": "visa",
    "expiry_month": "12",
    "expiry_year": "2030",
    "cvv": "123",
}


def passengers_for(seats):
    return [{"name": f"Passenger {seat}", "age": 30} for seat in seats]


async def lock_and_book(db, trip_id, seats, session_id="sess-a", customer_id=1):
    await reconcile_locks(db, trip_id, seats, session_id, customer_id)
    return await create_booking(
        db,
        BookingDraft(
            trip_id=trip_id,
            seat_numbers=list(seats),
            passengers=passengers_for(seats),
            session_id=session_id,
            customer_id=customer_id,
        ),
    )


async def pay(gateway, db, booking_id) -> str:
    session = await gateway.create_session(db, booking_id)
    paid = await gateway.process(db, session["paymentId"], **VALID_CARD)
    return paid["paymentReference"]


async def reload(db, model, pk):
    async with db.begin():
        return await db.get(model, pk, populate_existing=True)


async def locks_for(db, trip_id, session_id=None, status=None):
    async with db.begin():
        stmt = select(SeatLock).where(SeatLock.trip_id == trip_id).order_by(SeatLock.id)
        if session_id is not None:
            stmt = stmt.where(SeatLock.session_id == session_id)
        if status is not None:
            stmt = stmt.where(SeatLock.status == status)
        return list((await db.execute(stmt.execution_options(populate_existing=True))).scalars().all())


async def count_rows(db, model, *criteria):
    async with db.begin():
        return (await db.execute(select(func.count()).select_from(model).where(*criteria))).scalar_one()


async def age_locks(db, trip_id, session_id=None, minutes=1):
    """Push lock expiry into the past without running a sweep."""
    async with db.begin():
        stmt = update(SeatLock).where(SeatLock.trip_id == trip_id)
        if session_id is not None:
            stmt = stmt.where(SeatLock.session_id == session_id)
        await db.execute(stmt.values(expires_at=utcnow() - timedelta(minutes=minutes)))


async def age_booking(db, booking_id, minutes=1):
    async with db.begin():
        await db.execute(
            update(Booking)
            .where(Booking.id == booking_id)
            .values(expires_at=utcnow() - timedelta(minutes=minutes))
        )
