from functools import lru_cache

from django.conf import settings

from redis import Redis


@lru_cache(maxsize=1)
def get_redis_connection() -> Redis:
    """
    Return the process-wide Redis client, created on first use so that
    settings without a Redis server (tests, local runs) never connect.
    """
    return Redis.from_url(settings.REDIS_URL, socket_timeout=1.0)
