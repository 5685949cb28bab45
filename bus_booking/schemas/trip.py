from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from bus_booking.models.models import TripStatus
from bus_booking.schemas.base import CamelModel


class TripCreateRequest(CamelModel):
    origin: str = Field(..., min_length=1, max_length=128)
    destination: str = Field(..., min_length=1, max_length=128)
    departure_time: datetime
    arrival_time: Optional[datetime] = None
    price: Decimal = Field(..., gt=0)
    total_seats: int = Field(..., gt=0, le=100)


class TripCancelRequest(CamelModel):
    reason: Optional[str] = Field(None, max_length=1000)


class TripResponse(CamelModel):
    id: int
    origin: str
    destination: str
    departure_time: datetime
    arrival_time: Optional[datetime] = None
    status: TripStatus
    price: Decimal
    total_seats: int
    seats_available: int
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
