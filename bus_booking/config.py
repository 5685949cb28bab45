from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    APP_NAME: str = "BusBooking"
    DEBUG: bool = True
    # kept as a plain string: sqlite URLs do not survive AnyUrl normalisation
    DATABASE_URL: str = "sqlite+aiosqlite:///./bus_booking.db"
    REDIS_URL: str = "redis://localhost:6379/0"
    SENTRY_DSN: str = ""
    LOG_LEVEL: str = "INFO"
    ALEMBIC_LOCATION: str = "alembic"

    # Seat locks and pending bookings
    SEAT_LOCK_TTL_MINUTES: int = 15
    BOOKING_TTL_MINUTES: int = 15
    LOCK_EXTENSION_DEFAULT_MINUTES: int = 5
    LOCK_MAX_RETRIES: int = 3
    LOCK_RETRY_BACKOFF_SECONDS: float = 0.05
    SQLITE_BUSY_TIMEOUT_SECONDS: float = 30.0

    # Sandbox payments
    PAYMENT_SESSION_TTL_SECONDS: int = 600

    # Pricing (VND)
    CURRENCY: str = "VND"
    DEFAULT_PRICE_PER_SEAT: int = 150000
    MIN_PRICE: int = 50000
    MAX_PRICE: int = 2000000
    CONVENIENCE_FEE_RATE: float = 0.05
    BANK_CHARGE_RATE: float = 0.02
    ROUND_TO_THOUSAND: bool = True
    MIN_TOTAL: int = 50000

    # Periodic maintenance (celery beat)
    LOCK_SWEEP_INTERVAL_SECONDS: int = 60
    BOOKING_SWEEP_INTERVAL_SECONDS: int = 300


settings = Settings()
