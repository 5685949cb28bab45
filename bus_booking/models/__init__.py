from .models import *

__all__ = [
    "Base",
    "Trip",
    "TripStatus",
    "SeatLock",
    "SeatLockStatus",
    "Booking",
    "BookingStatus",
    "AuditLog",
]
