from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from bus_booking.schemas.base import CamelModel


class PaymentCreateRequest(CamelModel):
    booking_id: int


class PaymentSessionResponse(CamelModel):
    payment_id: str
    booking_id: int
    booking_reference: str
    amount: Decimal
    currency: str
    status: str
    customer_id: Optional[int] = None
    created_at: datetime
    expires_at: datetime
    payment_reference: Optional[str] = None
    completed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None


class PaymentProcessRequest(CamelModel):
    payment_id: str
    card_number: Optional[str] = None
    card_type: Optional[str] = None
    expiry_month: Optional[str] = None
    expiry_year: Optional[str] = None
    cvv: Optional[str] = None
    simulate_failure: bool = Field(False, description="sandbox only: force a declined payment")
