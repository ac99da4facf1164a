import asyncio
import logging
from redis.exceptions import ConnectionError, TimeoutError, RedisError
from redis.sentinel import MasterNotFoundError

from common.errors import connection_error

TRANSIENT_ERRORS = (MasterNotFoundError, ConnectionError, TimeoutError)


async def retry_db_call(func, *args, retries=5, delay=0.5, **kwargs):
    for attempt in range(retries):
        try:
            return await func(*args, **kwargs)
        except TRANSIENT_ERRORS as e:
            logging.info(f"Attempt {attempt + 1} failed: {e},  {type(e).__name__}:")
            if attempt < retries - 1:
                await asyncio.sleep(delay)
                continue
            else:
                raise e


async def wait_for_db(db, retries=10, backoff=3.0):
    """Ping the store until it answers; only used at startup."""
    for attempt in range(1, retries + 1):
        try:
            await db.ping()
            logging.info("Redis connected")
            return db
        except (RedisError, OSError) as e:
            logging.error(f"Failed to connect to Redis (attempt {attempt}/{retries}): {e}")
            if attempt < retries:
                await asyncio.sleep(backoff)
    raise connection_error("redis", attempts=retries)
