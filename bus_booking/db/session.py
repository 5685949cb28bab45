from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.pool import NullPool
from bus_booking.config import settings


DATABASE_URL = str(settings.DATABASE_URL)


def engine_options(url: str) -> dict:
    """Per-dialect engine arguments.

    SQLite serialises writers on the database file, so a waiting writer needs a
    busy timeout long enough to outlast the competing transaction. Pooled
    aiosqlite connections are not shared between event loops.
    """
    if url.startswith("sqlite"):
        return {
            "connect_args": {"timeout": settings.SQLITE_BUSY_TIMEOUT_SECONDS},
            "poolclass": NullPool,
        }
    return {"pool_pre_ping": True}


# create async engine
engine = create_async_engine(DATABASE_URL, echo=settings.DEBUG, **engine_options(DATABASE_URL))

# session factory
async_session = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncSession:  # to be used as dependency
    async with async_session() as session:
        yield session
