from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from bus_booking.models.models import AuditLog, Booking, BookingStatus, SeatLock, SeatLockStatus, Trip, TripStatus
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
from bus_booking.services.clock import utcnow
from bus_booking.services.errors import (
    ExpiredError,
    IllegalStateTransition,
    LockMismatchError,
    NotFoundError,
    PaymentVerificationError,
    SeatConflictError,
    ValidationError,
)
from bus_booking.services.references import is_valid_booking_reference
from bus_booking.services.seat_lock import confirm_seats, reconcile_locks
from bus_booking.services.trips import cancel_trip, complete_trip
from helpers import age_booking, age_locks, count_rows, lock_and_book, locks_for, passengers_for, pay, reload


def draft(trip_id, seats, session_id="sess-a", customer_id=1, passengers=None):
    return BookingDraft(
        trip_id=trip_id,
        seat_numbers=seats,
        passengers=passengers if passengers is not None else passengers_for(seats),
        session_id=session_id,
        customer_id=customer_id,
    )


@pytest.mark.asyncio
async def test_create_booking_attaches_locks(db, trip):
    before = utcnow()
    booking = await lock_and_book(db, trip.id, ["1", "2"])

    assert booking.status == BookingStatus.PENDING
    assert is_valid_booking_reference(booking.booking_reference)
    assert booking.seat_numbers == ["1", "2"]
    assert len(booking.passengers) == 2
    assert before + timedelta(minutes=14) < booking.expires_at <= utcnow() + timedelta(minutes=15)
    assert booking.bus_fare == Decimal("400000")
    assert booking.convenience_fee == Decimal("20000")
    assert booking.bank_charge == Decimal("8000")
    assert booking.total_pay == Decimal("428000")

    attached = await locks_for(db, trip.id, "sess-a", SeatLockStatus.ATTACHED)
    assert [l.booking_id for l in attached] == [booking.id, booking.id]
    stored_trip = await reload(db, Trip, trip.id)
    assert stored_trip.seats_available == 10
    assert await count_rows(db, AuditLog, AuditLog.action == "booking.created") == 1


@pytest.mark.asyncio
async def test_create_booking_validation(db, trip):
    await reconcile_locks(db, trip.id, ["1", "2"], "sess-a")

    with pytest.raises(ValidationError):
        await create_booking(db, draft(trip.id, ["1", "2"], passengers=passengers_for(["1"])))
    with pytest.raises(ValidationError):
        await create_booking(db, draft(trip.id, ["1", "1"], passengers=passengers_for(["1", "1"])))
    with pytest.raises(ValidationError):
        await create_booking(db, draft(trip.id, ["1"], session_id=""))
    with pytest.raises(ValidationError):
        await create_booking(db, draft(trip.id, []))
    assert await count_rows(db, Booking) == 0


@pytest.mark.asyncio
async def test_create_booking_requires_own_active_locks(db, trip):
    await reconcile_locks(db, trip.id, ["1"], "sess-b")

    with pytest.raises(LockMismatchError) as exc:
        await create_booking(db, draft(trip.id, ["1"]))
    assert exc.value.to_detail()["code"] == "seats_not_locked"

    await reconcile_locks(db, trip.id, ["2", "3"], "sess-a")
    await age_locks(db, trip.id, "sess-a")
    with pytest.raises(LockMismatchError):
        await create_booking(db, draft(trip.id, ["2", "3"]))


@pytest.mark.asyncio
async def test_create_booking_rejects_partially_locked_request(db, trip):
    await reconcile_locks(db, trip.id, ["1"], "sess-a")

    with pytest.raises(LockMismatchError) as exc:
        await create_booking(db, draft(trip.id, ["1", "2"]))
    assert exc.value.extra == {"expected": 2, "found": 1}


@pytest.mark.asyncio
async def test_create_booking_rejects_seats_booked_meanwhile(db, trip):
    await reconcile_locks(db, trip.id, ["1"], "sess-b")
    await age_locks(db, trip.id, "sess-b")
    await lock_and_book(db, trip.id, ["1"], session_id="sess-a")

    with pytest.raises(SeatConflictError) as exc:
        await create_booking(db, draft(trip.id, ["1"], session_id="sess-b"))
    assert exc.value.booked_seats == ["1"]


@pytest.mark.asyncio
async def test_confirm_booking(db, trip, gateway):
    booking = await lock_and_book(db, trip.id, ["1", "2"])
    reference = await pay(gateway, db, booking.id)

    confirmed = await confirm_booking(db, booking.id, reference, gateway)

    assert confirmed.status == BookingStatus.CONFIRMED
    assert confirmed.payment_reference == reference
    assert confirmed.expires_at is None
    assert confirmed.confirmed_at is not None
    stored_trip = await reload(db, Trip, trip.id)
    assert stored_trip.seats_available == 8
    assert len(await locks_for(db, trip.id, "sess-a", SeatLockStatus.ATTACHED)) == 2
    assert await count_rows(db, AuditLog, AuditLog.action == "booking.confirmed") == 1


@pytest.mark.asyncio
async def test_confirm_attaches_locks_still_held(db, trip, gateway):
    booking = await lock_and_book(db, trip.id, ["1"])
    locks = await locks_for(db, trip.id, "sess-a")
    async with db.begin():
        locks[0].status = SeatLockStatus.HELD

    await confirm_booking(db, booking.id, await pay(gateway, db, booking.id), gateway)

    assert len(await locks_for(db, trip.id, "sess-a", SeatLockStatus.ATTACHED)) == 1


@pytest.mark.asyncio
async def test_confirm_rejects_unverified_payments(db, trip, gateway):
    booking = await lock_and_book(db, trip.id, ["1"])
    other = await lock_and_book(db, trip.id, ["2"], session_id="sess-b", customer_id=2)
    other_reference = await pay(gateway, db, other.id)
    failed = await gateway.create_session(db, booking.id)

    with pytest.raises(PaymentVerificationError) as exc:
        await confirm_booking(db, booking.id, "PAYR-0-NOPE", gateway)
    assert exc.value.reason == PaymentVerificationError.NOT_FOUND

    with pytest.raises(PaymentVerificationError) as exc:
        await confirm_booking(db, booking.id, failed["paymentId"], gateway)
    assert exc.value.reason == PaymentVerificationError.NOT_SUCCESSFUL

    with pytest.raises(PaymentVerificationError) as exc:
        await confirm_booking(db, booking.id, other_reference, gateway)
    assert exc.value.reason == PaymentVerificationError.BOOKING_MISMATCH

    assert (await reload(db, Booking, booking.id)).status == BookingStatus.PENDING
    assert (await reload(db, Trip, trip.id)).seats_available == 10


@pytest.mark.asyncio
async def test_confirm_twice_is_illegal(db, trip, gateway):
    booking = await lock_and_book(db, trip.id, ["1"])
    reference = await pay(gateway, db, booking.id)
    await confirm_booking(db, booking.id, reference, gateway)

    with pytest.raises(IllegalStateTransition):
        await confirm_booking(db, booking.id, reference, gateway)
    assert (await reload(db, Trip, trip.id)).seats_available == 9


@pytest.mark.asyncio
async def test_confirm_after_expiry_expires_booking(db, trip, gateway):
    booking = await lock_and_book(db, trip.id, ["1", "2"])
    reference = await pay(gateway, db, booking.id)
    await age_booking(db, booking.id)

    with pytest.raises(ExpiredError):
        await confirm_booking(db, booking.id, reference, gateway)

    assert (await reload(db, Booking, booking.id)).status == BookingStatus.EXPIRED
    assert len(await locks_for(db, trip.id, "sess-a", SeatLockStatus.RELEASED)) == 2
    assert (await reload(db, Trip, trip.id)).seats_available == 10


@pytest.mark.asyncio
async def test_cancel_confirmed_booking_restores_capacity(db, trip, gateway):
    booking = await lock_and_book(db, trip.id, ["1", "2"])
    await confirm_booking(db, booking.id, await pay(gateway, db, booking.id), gateway)

    result = await cancel_booking(db, booking.id, reason="Change of plans")

    assert result.booking.status == BookingStatus.CANCELLED
    assert result.booking.cancellation_reason == "Change of plans"
    assert result.booking.cancelled_at is not None
    assert result.refund.refund_amount == Decimal("428000")
    assert (await reload(db, Trip, trip.id)).seats_available == 10
    assert len(await locks_for(db, trip.id, "sess-a", SeatLockStatus.RELEASED)) == 2

    # seats are free for someone else
    grant = await reconcile_locks(db, trip.id, ["1", "2"], "sess-z")
    assert grant.created == ["1", "2"]


@pytest.mark.asyncio
async def test_cancel_pending_booking_leaves_counter(db, trip):
    booking = await lock_and_book(db, trip.id, ["1"])

    result = await cancel_booking(db, booking.id)

    assert result.booking.status == BookingStatus.CANCELLED
    assert result.booking.cancellation_reason == "Cancelled by user"
    assert result.refund is None
    assert (await reload(db, Trip, trip.id)).seats_available == 10


@pytest.mark.asyncio
async def test_cancel_rules(db, trip):
    booking = await lock_and_book(db, trip.id, ["1"])
    await cancel_booking(db, booking.id)

    with pytest.raises(IllegalStateTransition):
        await cancel_booking(db, booking.id)
    with pytest.raises(NotFoundError):
        await cancel_booking(db, 4242)

    other = await lock_and_book(db, trip.id, ["2"], session_id="sess-b", customer_id=2)
    with pytest.raises(NotFoundError):
        await cancel_booking(db, other.id, customer_id=1)


@pytest.mark.asyncio
async def test_cancel_pending_past_expiry(db, trip):
    booking = await lock_and_book(db, trip.id, ["1"])
    await age_booking(db, booking.id)

    with pytest.raises(ExpiredError):
        await cancel_booking(db, booking.id)
    assert (await reload(db, Booking, booking.id)).status == BookingStatus.EXPIRED


@pytest.mark.asyncio
async def test_capacity_restore_is_capped(db, trip, gateway):
    booking = await lock_and_book(db, trip.id, ["1", "2"])
    await confirm_booking(db, booking.id, await pay(gateway, db, booking.id), gateway)
    async with db.begin():
        stored = await db.get(Trip, trip.id)
        stored.seats_available = 9

    await cancel_booking(db, booking.id)

    assert (await reload(db, Trip, trip.id)).seats_available == 10


@pytest.mark.asyncio
async def test_capacity_decrement_is_floored(db, trip, gateway):
    booking = await lock_and_book(db, trip.id, ["1", "2"])
    async with db.begin():
        stored = await db.get(Trip, trip.id)
        stored.seats_available = 1

    await confirm_booking(db, booking.id, await pay(gateway, db, booking.id), gateway)

    assert (await reload(db, Trip, trip.id)).seats_available == 0


@pytest.mark.asyncio
async def test_reads_expire_stale_pending_bookings(db, trip):
    booking = await lock_and_book(db, trip.id, ["1"])
    await age_booking(db, booking.id)

    fetched = await get_booking(db, booking.id)

    assert fetched.status == BookingStatus.EXPIRED
    assert len(await locks_for(db, trip.id, "sess-a", SeatLockStatus.RELEASED)) == 1
    assert await count_rows(db, AuditLog, AuditLog.action == "booking.expired") == 1


@pytest.mark.asyncio
async def test_get_booking_by_reference(db, trip):
    booking = await lock_and_book(db, trip.id, ["1"])

    assert (await get_booking_by_reference(db, booking.booking_reference)).id == booking.id
    with pytest.raises(ValidationError):
        await get_booking_by_reference(db, "not-a-reference")
    with pytest.raises(NotFoundError):
        await get_booking_by_reference(db, "BKG-ZZZZ-0000")


@pytest.mark.asyncio
async def test_list_customer_bookings(db, trip):
    first = await lock_and_book(db, trip.id, ["1"], customer_id=5)
    second = await lock_and_book(db, trip.id, ["2"], session_id="sess-b", customer_id=5)
    await lock_and_book(db, trip.id, ["3"], session_id="sess-c", customer_id=6)
    await age_booking(db, first.id)

    bookings = await list_customer_bookings(db, 5)

    assert {b.id for b in bookings} == {first.id, second.id}
    statuses = {b.id: b.status for b in bookings}
    assert statuses[first.id] == BookingStatus.EXPIRED
    assert statuses[second.id] == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_expire_pending_sweep(db, trip, gateway):
    stale = await lock_and_book(db, trip.id, ["1", "2"])
    fresh = await lock_and_book(db, trip.id, ["3"], session_id="sess-b")
    confirmed = await lock_and_book(db, trip.id, ["4"], session_id="sess-c")
    await confirm_booking(db, confirmed.id, await pay(gateway, db, confirmed.id), gateway)
    await age_booking(db, stale.id)

    assert await expire_pending_bookings(db) == 1
    assert await expire_pending_bookings(db) == 0

    assert (await reload(db, Booking, stale.id)).status == BookingStatus.EXPIRED
    assert (await reload(db, Booking, fresh.id)).status == BookingStatus.PENDING
    assert (await reload(db, Trip, trip.id)).seats_available == 9

    grant = await reconcile_locks(db, trip.id, ["1", "2"], "sess-d")
    assert grant.created == ["1", "2"]


@pytest.mark.asyncio
async def test_expiry_leaves_next_sessions_confirmed_lock_alone(db, trip):
    stale = await lock_and_book(db, trip.id, ["1"], session_id="sess-a")
    await age_booking(db, stale.id)
    await reconcile_locks(db, trip.id, ["1"], "sess-b")
    assert await confirm_seats(db, trip.id, "sess-b") == 1

    assert await expire_pending_bookings(db) == 1

    assert [l.status for l in await locks_for(db, trip.id, "sess-a")] == [SeatLockStatus.RELEASED]
    assert [l.status for l in await locks_for(db, trip.id, "sess-b")] == [SeatLockStatus.ATTACHED]


@pytest.mark.asyncio
async def test_cancel_falls_back_to_unlinked_locks_of_the_booking(db, trip):
    booking = await lock_and_book(db, trip.id, ["1"], session_id="sess-a")
    booking_id = booking.id
    async with db.begin():
        await db.execute(update(SeatLock).where(SeatLock.booking_id == booking_id).values(booking_id=None))

    await cancel_booking(db, booking_id)

    assert [l.status for l in await locks_for(db, trip.id, "sess-a")] == [SeatLockStatus.RELEASED]


@pytest.mark.asyncio
async def test_complete_trip(db, trip, gateway):
    booking = await lock_and_book(db, trip.id, ["1"])
    booking_id = booking.id
    await confirm_booking(db, booking_id, await pay(gateway, db, booking_id), gateway)
    await reconcile_locks(db, trip.id, ["5"], "sess-x")

    completed = await complete_trip(db, trip.id)

    assert completed.status == TripStatus.COMPLETED
    assert completed.completed_at is not None
    assert (await reload(db, Booking, booking_id)).status == BookingStatus.COMPLETED
    assert await locks_for(db, trip.id, "sess-x", SeatLockStatus.HELD) == []
    with pytest.raises(ValidationError):
        await reconcile_locks(db, trip.id, ["6"], "sess-y")
    with pytest.raises(IllegalStateTransition):
        await complete_trip(db, trip.id)
    with pytest.raises(IllegalStateTransition):
        await cancel_booking(db, booking_id)


@pytest.mark.asyncio
async def test_cancel_trip(db, trip, gateway):
    pending = await lock_and_book(db, trip.id, ["1"])
    confirmed = await lock_and_book(db, trip.id, ["2", "3"], session_id="sess-b")
    await confirm_booking(db, confirmed.id, await pay(gateway, db, confirmed.id), gateway)
    assert (await reload(db, Trip, trip.id)).seats_available == 8

    cancelled = await cancel_trip(db, trip.id, reason="Bus breakdown")

    assert cancelled.status == TripStatus.CANCELLED
    assert cancelled.seats_available == 10
    for booking_id in (pending.id, confirmed.id):
        stored = await reload(db, Booking, booking_id)
        assert stored.status == BookingStatus.CANCELLED
        assert stored.cancellation_reason == "Bus breakdown"
    with pytest.raises(IllegalStateTransition):
        await cancel_trip(db, trip.id)
