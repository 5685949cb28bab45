from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from bus_booking.config import settings
import importlib
import logging
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from bus_booking.logging_setup import setup_logging, TRACE_ID_CTX
import uuid
import sentry_sdk
from sentry_sdk.integrations.asgi import SentryAsgiMiddleware
from bus_booking.db.session import engine
from bus_booking.redis_client import redis_client
from bus_booking.services.errors import BookingError


logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME)

# initialize logging and Sentry
setup_logging()
if settings.SENTRY_DSN:
    sentry_sdk.init(dsn=settings.SENTRY_DSN)
    app.add_middleware(SentryAsgiMiddleware)


@app.middleware("http")
async def add_trace_id(request: Request, call_next):
    trace_id = request.headers.get("x-trace-id") or str(uuid.uuid4())
    TRACE_ID_CTX.set(trace_id)
    response = await call_next(request)
    response.headers["X-Trace-Id"] = trace_id
    return response


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if exc.status_code >= 500:
        logger.error("Booking error: %s", exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": jsonable_encoder(exc.to_detail())})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "detail": {
                "code": "validation_error",
                "message": "Invalid request",
                "errors": jsonable_encoder(exc.errors()),
            }
        },
    )


# List of module names to include as routers
MODULES = [
    "seats",
    "bookings",
    "payments",
    "trips",
]


for mod in MODULES:
    pkg = importlib.import_module(f"bus_booking.modules.{mod}.router")
    app.include_router(pkg.router, prefix=f"/{mod}", tags=[mod])


@app.get("/")
async def root():
    return {"app": settings.APP_NAME, "status": "ok"}


@app.get("/metrics")
async def metrics():
    content = generate_latest()
    return Response(content=content, media_type=CONTENT_TYPE_LATEST)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/ready")
async def ready():
    try:
        await redis_client.ping()
    except (RedisError, OSError):
        logger.warning("Readiness check failed: redis unavailable")
        return Response(status_code=503, content="redis unavailable")
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        logger.warning("Readiness check failed: database unavailable")
        return Response(status_code=503, content="database unavailable")
    return {"status": "ready"}
