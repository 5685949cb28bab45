import enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    ForeignKey,
    Numeric,
    JSON,
    Text,
    Index,
    Enum as SAEnum,
)
from sqlalchemy.orm import relationship

from bus_booking.db.base import Base
from bus_booking.services.clock import utcnow


def _enum_column(enum_cls, name: str):
    # stored as VARCHAR so new states never need a type migration
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )


class TripStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SeatLockStatus(str, enum.Enum):
    """Lifecycle of a seat lock.

    ``held`` is a transient claim by a checkout session; ``attached`` means the
    lock was consumed by a booking (pending or further). The booking's own
    payment state lives on :class:`BookingStatus` and never on the lock.
    """

    HELD = "held"
    ATTACHED = "attached"
    RELEASED = "released"
    EXPIRED = "expired"


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    EXPIRED = "expired"


class Trip(Base):
    __tablename__ = "trips"
    id = Column(Integer, primary_key=True)
    origin = Column(String(128), nullable=False, index=True)
    destination = Column(String(128), nullable=False, index=True)
    departure_time = Column(DateTime, nullable=False, index=True)
    arrival_time = Column(DateTime, nullable=True)
    status = Column(_enum_column(TripStatus, "trip_status"), nullable=False, default=TripStatus.SCHEDULED, index=True)
    price = Column(Numeric(12, 2), nullable=False)
    total_seats = Column(Integer, nullable=False)
    # advisory counter: seats not consumed by confirmed bookings
    seats_available = Column(Integer, nullable=False, default=0)
    # bumped by every writer that needs the trip row lock
    lock_version = Column(Integer, nullable=False, default=0)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    bookings = relationship("Booking", back_populates="trip")


class SeatLock(Base):
    __tablename__ = "seat_locks"
    id = Column(Integer, primary_key=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False)
    seat_number = Column(String(32), nullable=False)
    session_id = Column(String(128), nullable=False, index=True)
    customer_id = Column(Integer, nullable=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True, index=True)
    status = Column(_enum_column(SeatLockStatus, "seat_lock_status"), nullable=False, default=SeatLockStatus.HELD)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    trip = relationship("Trip")
    booking = relationship("Booking", back_populates="locks")

    __table_args__ = (
        Index("ix_seat_locks_trip_seat", "trip_id", "seat_number"),
        Index("ix_seat_locks_expiry_status", "expires_at", "status"),
    )


class Booking(Base):
    __tablename__ = "bookings"
    id = Column(Integer, primary_key=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(Integer, nullable=False, index=True)
    seat_numbers = Column(JSON, nullable=False)
    passengers = Column(JSON, nullable=False)
    status = Column(_enum_column(BookingStatus, "booking_status"), nullable=False, default=BookingStatus.PENDING, index=True)
    bus_fare = Column(Numeric(12, 2), nullable=False)
    convenience_fee = Column(Numeric(12, 2), nullable=False)
    bank_charge = Column(Numeric(12, 2), nullable=False)
    total_pay = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(8), nullable=False, default="VND")
    booking_reference = Column(String(64), nullable=False, unique=True, index=True)
    pickup_point = Column(String(255), nullable=True)
    dropoff_point = Column(String(255), nullable=True)
    payment_reference = Column(String(128), nullable=True, unique=True)
    expires_at = Column(DateTime, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    trip = relationship("Trip", back_populates="bookings")
    locks = relationship("SeatLock", back_populates="booking")

    @property
    def seat_count(self) -> int:
        return len(self.seat_numbers or [])


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(Integer, primary_key=True)
    actor = Column(String(128), nullable=True, index=True)
    action = Column(String(255), nullable=False)
    object_type = Column(String(128), nullable=True)
    object_id = Column(String(128), nullable=True)
    detail = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
