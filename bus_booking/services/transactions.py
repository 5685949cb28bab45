"""Transaction helpers shared by the seat lock and booking services.

Every writer that can change which seats are taken on a trip starts its
transaction by write-locking the trip row (:func:`lock_trip`). On PostgreSQL
that is a row lock held until commit, so two reconciliations for the same trip
run one after the other and the second one reads the first one's rows under
READ COMMITTED. On SQLite the same UPDATE takes the database write lock.
Trips never block each other on PostgreSQL.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from bus_booking.config import settings
from bus_booking.metrics import SEAT_LOCK_RETRIES
from bus_booking.models.models import Trip
from bus_booking.services.errors import ConcurrencyError, NotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected
TRANSIENT_SQLSTATES = {"40001", "40P01"}


def is_transient(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in TRANSIENT_SQLSTATES:
        return True
    return "database is locked" in str(orig if orig is not None else exc).lower()


async def run_in_transaction(
    db: AsyncSession,
    work: Callable[[], Awaitable[T]],
    *,
    label: str = "transaction",
    attempts: Optional[int] = None,
) -> T:
    """Run ``work`` inside ``db.begin()``, retrying transient conflicts.

    Domain errors raised by ``work`` roll the transaction back and propagate
    untouched. Serialization failures and deadlocks are retried with a linear
    backoff; when the attempts run out they surface as ConcurrencyError.
    """
    attempts = attempts or settings.LOCK_MAX_RETRIES
    for attempt in range(1, attempts + 1):
        try:
            async with db.begin():
                return await work()
        except DBAPIError as exc:
            if not is_transient(exc):
                raise
            SEAT_LOCK_RETRIES.inc()
            logger.warning(
                "Transient database conflict during %s (attempt %s/%s)",
                label,
                attempt,
                attempts,
            )
            if attempt == attempts:
                raise ConcurrencyError() from exc
            await asyncio.sleep(settings.LOCK_RETRY_BACKOFF_SECONDS * attempt)
    raise ConcurrencyError()


async def lock_trip(db: AsyncSession, trip_id: int) -> Trip:
    """Write-lock the trip row and return a fresh copy of it.

    Must run before any other write of the transaction.
    """
    res = await db.execute(
        update(Trip)
        .where(Trip.id == trip_id)
        .values(lock_version=Trip.lock_version + 1)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        raise NotFoundError(f"Trip {trip_id} not found", tripId=trip_id)
    stmt = (
        select(Trip)
        .where(Trip.id == trip_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one()
