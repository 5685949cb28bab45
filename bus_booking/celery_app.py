from celery import Celery
from bus_booking.config import settings


celery_app = Celery(
    "bus_booking_tasks",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["bus_booking.maintenance.tasks"],
)

celery_app.conf.update(
    task_track_started=True,
    beat_schedule={
        "sweep-expired-seat-locks": {
            "task": "bus_booking.maintenance.tasks.sweep_expired_locks_task",
            "schedule": float(settings.LOCK_SWEEP_INTERVAL_SECONDS),
        },
        "expire-pending-bookings": {
            "task": "bus_booking.maintenance.tasks.expire_pending_bookings_task",
            "schedule": float(settings.BOOKING_SWEEP_INTERVAL_SECONDS),
        },
    },
)
