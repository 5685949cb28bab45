from typing import Dict, List, Optional


class BookingError(Exception):
    """Base class for errors raised by the seat lock and booking services.

    ``status_code`` is the HTTP status the API layer answers with and
    ``to_detail()`` the structured body, so callers can act on the offending
    identifiers instead of parsing a message.
    """

    status_code = 400
    code = "booking_error"

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_detail(self) -> Dict:
        detail = {"code": self.code, "message": self.message}
        detail.update({k: v for k, v in self.extra.items() if v is not None})
        return detail


class NotFoundError(BookingError):
    status_code = 404
    code = "not_found"


class ValidationError(BookingError):
    status_code = 400
    code = "validation_error"


class LockMismatchError(ValidationError):
    code = "seats_not_locked"

    def __init__(self, expected: int, found: int):
        super().__init__(
            "Some seats are not properly locked. Please try again.",
            expected=expected,
            found=found,
        )


class SeatConflictError(BookingError):
    status_code = 409
    code = "seat_conflict"

    def __init__(self, message: str, booked_seats: Optional[List[str]] = None, locked_seats: Optional[List[Dict]] = None):
        super().__init__(message, bookedSeats=booked_seats, lockedSeats=locked_seats)
        self.booked_seats = booked_seats or []
        self.locked_seats = locked_seats or []


class ConcurrencyError(SeatConflictError):
    code = "concurrent_update"

    def __init__(self, message: str = "Seat map changed concurrently, please retry"):
        super().__init__(message)


class ExpiredError(BookingError):
    status_code = 410
    code = "expired"


class PaymentVerificationError(BookingError):
    status_code = 400

    NOT_FOUND = "payment_not_found"
    NOT_SUCCESSFUL = "payment_not_successful"
    BOOKING_MISMATCH = "payment_booking_mismatch"

    def __init__(self, reason: str, message: str, **extra):
        super().__init__(message, **extra)
        self.reason = reason
        self.code = reason


class IllegalStateTransition(BookingError):
    status_code = 409
    code = "illegal_state_transition"

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(
            f"Cannot move {entity} from {current} to {target}",
            current=current,
            target=target,
        )
        self.current = current
        self.target = target
