from redis import asyncio as aioredis

from bus_booking.config import settings


# connections are opened lazily on first command
redis_client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
