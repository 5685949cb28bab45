import os
import tempfile

# must be set before bus_booking.config is imported anywhere
_DB_DIR = tempfile.mkdtemp(prefix="bus_booking_tests_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["DEBUG"] = "false"
os.environ["SENTRY_DSN"] = ""

import logging
from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from fakeredis import aioredis as fake_aioredis
from httpx import ASGITransport, AsyncClient

import bus_booking.models  # noqa: F401
from bus_booking.db.base import Base
from bus_booking.db.session import async_session, engine
from bus_booking.logging_setup import setup_logging
from bus_booking.services.clock import utcnow
from bus_booking.services.payment_gateway import PaymentGateway, get_payment_gateway
from bus_booking.services.trips import TripDraft, create_trip


@pytest_asyncio.fixture
async def db_engine():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db(db_engine):
    async with async_session() as session:
        yield session


@pytest.fixture
def session_factory(db_engine):
    return async_session


@pytest_asyncio.fixture
async def fake_redis():
    redis = fake_aioredis.FakeRedis(decode_responses=True)
    yield redis
    await redis.flushall()
    await redis.aclose()


@pytest.fixture
def gateway(fake_redis):
    return PaymentGateway(redis=fake_redis)


@pytest_asyncio.fixture
async def trip(db_engine):
    # created in its own session so a rollback in ``db`` cannot expire it
    async with async_session() as own:
        return await create_trip(
            own,
            TripDraft(
                origin="Ha Noi",
                destination="Hai Phong",
                departure_time=utcnow() + timedelta(days=2),
                price=Decimal("200000"),
                total_seats=10,
            ),
        )


@pytest_asyncio.fixture
async def client(db_engine, fake_redis):
    from bus_booking.main import app

    app.dependency_overrides[get_payment_gateway] = lambda: PaymentGateway(redis=fake_redis)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def json_logging(caplog):
    """Production logging config with caplog still attached to the root logger."""
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    setup_logging("INFO")
    root.addHandler(caplog.handler)
    yield root.handlers[0]
    root.handlers = saved_handlers
    root.setLevel(saved_level)
