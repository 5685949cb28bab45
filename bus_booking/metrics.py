from prometheus_client import Counter, Histogram

# Payment metrics
PAYMENT_SUCCESS = Counter("bus_booking_payments_success_total", "Successful sandbox payments processed")
PAYMENT_FAILURE = Counter("bus_booking_payments_failure_total", "Failed sandbox payments", ["reason"])

# Seat lock metrics
SEAT_LOCK_LATENCY = Histogram("bus_booking_seat_lock_latency_seconds", "Latency for seat lock reconciliation")
SEAT_LOCK_ATTEMPTS = Counter("bus_booking_seat_lock_attempts_total", "Total seat lock attempts", ["result"])
SEAT_LOCK_RETRIES = Counter("bus_booking_seat_lock_retries_total", "Transactions retried after a transient database conflict")
SEAT_LOCKS_EXPIRED = Counter("bus_booking_seat_locks_expired_total", "Seat locks moved to expired by the sweep")

# Booking state machine
BOOKING_TRANSITIONS = Counter("bus_booking_booking_transitions_total", "Booking status transitions", ["status"])
