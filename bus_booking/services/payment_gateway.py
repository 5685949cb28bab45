"""Sandbox payment sessions kept in Redis.

A session is stored under its ``PAY-...`` id and, once paid, also under the
``PAYR-...`` payment reference so confirmation can look it up by either.
"""
import json
import logging
import secrets
import time
from datetime import timedelta
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from bus_booking.config import settings
from bus_booking.metrics import PAYMENT_FAILURE, PAYMENT_SUCCESS
from bus_booking.models.models import BookingStatus
from bus_booking.redis_client import redis_client
from bus_booking.services.bookings import get_booking
from bus_booking.services.clock import utcnow
from bus_booking.services.errors import (
    ExpiredError,
    NotFoundError,
    PaymentVerificationError,
    ValidationError,
)

logger = logging.getLogger(__name__)

SESSION_KEY_TPL = "payment_session:{key}"
FAILING_CARD = "0000000000000000"
FAILURE_REASON = "Insufficient funds"


def _millis() -> int:
    return int(time.time() * 1000)


class PaymentGateway:
    def __init__(self, redis=None, ttl_seconds: Optional[int] = None):
        self.redis = redis if redis is not None else redis_client
        self.ttl_seconds = ttl_seconds or settings.PAYMENT_SESSION_TTL_SECONDS

    async def _store(self, key: str, session: Dict) -> None:
        await self.redis.set(SESSION_KEY_TPL.format(key=key), json.dumps(session), ex=self.ttl_seconds)

    async def _load(self, key: str) -> Optional[Dict]:
        raw = await self.redis.get(SESSION_KEY_TPL.format(key=key))
        if raw is None:
            return None
        return json.loads(raw)

    async def create_session(self, db: AsyncSession, booking_id: int) -> Dict:
        booking = await get_booking(db, booking_id)
        if booking.status == BookingStatus.EXPIRED:
            raise ExpiredError("Booking has expired. Please create a new booking.", bookingId=booking_id)
        if booking.status != BookingStatus.PENDING:
            raise ValidationError(
                f"Cannot process payment for booking with status: {booking.status.value}",
                bookingId=booking_id,
            )

        now = utcnow()
        payment_id = f"PAY-{_millis()}-{secrets.token_hex(4).upper()}"
        session = {
            "paymentId": payment_id,
            "bookingId": booking.id,
            "bookingReference": booking.booking_reference,
            "amount": str(booking.total_pay),
            "currency": booking.currency,
            "status": "pending",
            "customerId": booking.customer_id,
            "createdAt": now.isoformat(),
            "expiresAt": (now + timedelta(seconds=self.ttl_seconds)).isoformat(),
        }
        await self._store(payment_id, session)
        logger.info("Payment session created", extra={"payment_id": payment_id, "booking_id": booking.id})
        return session

    async def get_session(self, payment_id: str) -> Dict:
        session = await self._load(payment_id)
        if session is None:
            raise NotFoundError("Payment session not found or expired", paymentId=payment_id)
        return session

    async def process(
        self,
        db: AsyncSession,
        payment_id: str,
        card_number: Optional[str] = None,
        card_type: Optional[str] = None,
        expiry_month=None,
        expiry_year=None,
        cvv: Optional[str] = None,
        simulate_failure: bool = False,
    ) -> Dict:
        """Charge the sandbox card for a pending session.

        The booking itself is left pending; confirming it is a separate call
        that presents the returned payment reference.
        """
        session = await self.get_session(payment_id)
        if session["status"] != "pending":
            raise ValidationError(f"Payment session is already {session['status']}", paymentId=payment_id)
        if not all([card_number, card_type, expiry_month, expiry_year, cvv]):
            raise ValidationError("Invalid card details", paymentId=payment_id)

        if simulate_failure or card_number == FAILING_CARD:
            session["status"] = "failed"
            session["failureReason"] = FAILURE_REASON
            await self._store(payment_id, session)
            PAYMENT_FAILURE.labels(reason="declined").inc()
            logger.warning("Sandbox payment declined", extra={"payment_id": payment_id, "booking_id": session["bookingId"]})
            raise PaymentVerificationError(
                PaymentVerificationError.NOT_SUCCESSFUL,
                "Payment failed",
                paymentId=payment_id,
                failureReason=FAILURE_REASON,
            )

        booking = await get_booking(db, session["bookingId"])
        if booking.status != BookingStatus.PENDING:
            raise ValidationError(
                f"Cannot process payment for booking with status: {booking.status.value}",
                bookingId=booking.id,
            )

        reference = f"PAYR-{_millis()}-{secrets.token_hex(3).upper()}"
        session["status"] = "success"
        session["paymentReference"] = reference
        session["completedAt"] = utcnow().isoformat()
        await self._store(payment_id, session)
        await self._store(reference, session)
        PAYMENT_SUCCESS.inc()
        logger.info("Sandbox payment succeeded", extra={"payment_id": payment_id, "payment_reference": reference})
        return session

    async def verify(self, payment_reference: str, booking_id: int) -> Dict:
        """Check that ``payment_reference`` is a successful payment for ``booking_id``."""
        session = await self._load(payment_reference)
        if session is None:
            PAYMENT_FAILURE.labels(reason=PaymentVerificationError.NOT_FOUND).inc()
            raise PaymentVerificationError(
                PaymentVerificationError.NOT_FOUND,
                "Payment not found or expired. Please complete payment first.",
                paymentReference=payment_reference,
            )
        if session.get("status") != "success":
            PAYMENT_FAILURE.labels(reason=PaymentVerificationError.NOT_SUCCESSFUL).inc()
            raise PaymentVerificationError(
                PaymentVerificationError.NOT_SUCCESSFUL,
                f"Payment not successful. Status: {session.get('status')}",
                paymentReference=payment_reference,
            )
        if int(session.get("bookingId")) != int(booking_id):
            PAYMENT_FAILURE.labels(reason=PaymentVerificationError.BOOKING_MISMATCH).inc()
            raise PaymentVerificationError(
                PaymentVerificationError.BOOKING_MISMATCH,
                "Payment does not match this booking",
                paymentReference=payment_reference,
                bookingId=booking_id,
            )
        return session


def get_payment_gateway() -> PaymentGateway:
    return PaymentGateway()
