from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field, field_validator

from bus_booking.models.models import BookingStatus
from bus_booking.schemas.base import CamelModel, coerce_seat_numbers


class Passenger(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    age: Optional[int] = Field(None, ge=0, le=150)
    gender: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class BookingCreateRequest(CamelModel):
    trip_id: int
    seat_numbers: List[str]
    passengers: List[Passenger]
    session_id: str = Field(..., min_length=1, max_length=128)
    customer_id: int
    pickup_point: Optional[str] = None
    dropoff_point: Optional[str] = None

    @field_validator("seat_numbers", mode="before")
    @classmethod
    def normalize_seats(cls, value):
        return coerce_seat_numbers(value)


class BookingConfirmRequest(CamelModel):
    payment_reference: str = Field(..., min_length=1)


class BookingCancelRequest(CamelModel):
    reason: Optional[str] = Field(None, max_length=1000)
    customer_id: Optional[int] = None


class BookingResponse(CamelModel):
    id: int
    trip_id: int
    customer_id: int
    booking_reference: str
    status: BookingStatus
    seat_numbers: List[str]
    passengers: List[Passenger]
    bus_fare: Decimal
    convenience_fee: Decimal
    bank_charge: Decimal
    total_pay: Decimal
    currency: str
    pickup_point: Optional[str] = None
    dropoff_point: Optional[str] = None
    payment_reference: Optional[str] = None
    created_at: datetime
    expires_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None


class RefundResponse(CamelModel):
    total_pay: Decimal
    refund_rate: Decimal
    refund_amount: Decimal
    cancellation_fee: Decimal
    hours_before_departure: float
    currency: str


class BookingCancelResponse(CamelModel):
    booking: BookingResponse
    refund: Optional[RefundResponse] = None


class ExpireResponse(CamelModel):
    count: int
