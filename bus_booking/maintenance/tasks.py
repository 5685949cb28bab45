import asyncio
from typing import Optional

from celery.utils.log import get_task_logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from bus_booking.celery_app import celery_app
from bus_booking.db.session import DATABASE_URL, engine_options
from bus_booking.services.bookings import expire_pending_bookings
from bus_booking.services.seat_lock import sweep_expired_locks

logger = get_task_logger(__name__)


async def _run_with_session(work):
    # each task run owns its event loop, so it cannot reuse the app's pooled engine
    options = engine_options(DATABASE_URL)
    options["poolclass"] = NullPool
    options.pop("pool_pre_ping", None)
    task_engine = create_async_engine(DATABASE_URL, **options)
    try:
        session_factory = async_sessionmaker(bind=task_engine, class_=AsyncSession, expire_on_commit=False)
        async with session_factory() as db:
            return await work(db)
    finally:
        await task_engine.dispose()


@celery_app.task(bind=True, autoretry_for=(ConnectionError,), retry_backoff=True, max_retries=3)
def sweep_expired_locks_task(self, trip_id: Optional[int] = None):
    """Move held seat locks past their expiry to ``expired``."""
    count = asyncio.run(_run_with_session(lambda db: sweep_expired_locks(db, trip_id=trip_id)))
    logger.info("Lock sweep finished: %s locks expired", count)
    return count


@celery_app.task(bind=True, autoretry_for=(ConnectionError,), retry_backoff=True, max_retries=3)
def expire_pending_bookings_task(self):
    count = asyncio.run(_run_with_session(expire_pending_bookings))
    logger.info("Booking sweep finished: %s bookings expired", count)
    return count
