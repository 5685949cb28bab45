from datetime import datetime
from typing import List, Optional

from pydantic import Field, field_validator

from bus_booking.schemas.base import CamelModel, coerce_seat_numbers


class SeatLockRequest(CamelModel):
    trip_id: int
    seat_numbers: List[str]
    session_id: str = Field(..., min_length=1, max_length=128)
    customer_id: Optional[int] = None

    @field_validator("seat_numbers", mode="before")
    @classmethod
    def normalize_seats(cls, value):
        return coerce_seat_numbers(value)


class LockedSeat(CamelModel):
    seat_number: str
    expires_at: datetime


class SeatLockResponse(CamelModel):
    trip_id: int
    session_id: str
    expires_at: datetime
    locked_seats: List[LockedSeat]
    created: List[str] = []
    kept: List[str] = []
    released: List[str] = []


class SeatReleaseRequest(CamelModel):
    session_id: str = Field(..., min_length=1)
    trip_id: Optional[int] = None
    seat_numbers: Optional[List[str]] = None

    @field_validator("seat_numbers", mode="before")
    @classmethod
    def normalize_seats(cls, value):
        return coerce_seat_numbers(value)


class SeatReleaseResponse(CamelModel):
    released_count: int


class SeatConfirmRequest(CamelModel):
    trip_id: int
    session_id: str = Field(..., min_length=1)
    seat_numbers: Optional[List[str]] = None

    @field_validator("seat_numbers", mode="before")
    @classmethod
    def normalize_seats(cls, value):
        return coerce_seat_numbers(value)


class SeatConfirmResponse(CamelModel):
    confirmed_count: int


class LockExtendRequest(CamelModel):
    trip_id: int
    session_id: str = Field(..., min_length=1)
    additional_minutes: int = Field(5, gt=0, le=60)


class LockExtendResponse(CamelModel):
    trip_id: int
    session_id: str
    expires_at: datetime


class LockView(CamelModel):
    seat_number: str
    session_id: str
    expires_at: datetime


class SeatAvailabilityResponse(CamelModel):
    trip_id: int
    total_seats: int
    seats_available: int
    available_count: int
    booked_seats: List[str]
    locked_seats: List[LockView]


class SessionLock(CamelModel):
    id: int
    trip_id: int
    seat_number: str
    expires_at: datetime
    origin: Optional[str] = None
    destination: Optional[str] = None
    departure_time: Optional[datetime] = None


class CleanupResponse(CamelModel):
    updated_count: int
