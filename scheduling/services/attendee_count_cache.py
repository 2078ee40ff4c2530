import json
import logging
import threading
import time
from collections.abc import Callable

from django.conf import settings

from redis import Redis
from redis.exceptions import RedisError, WatchError

from scheduling.services.dataclasses import CachedAttendeeCount


logger = logging.getLogger(__name__)


class BaseAttendeeCountCache:
    """
    Short-lived occupancy counts keyed by instance id, used for display only. The
    registration capacity check never reads from here.

    Every ``invalidate`` bumps a per-key generation. A reader that loaded a count before
    the bump can't store it afterwards, so a concurrent write is never masked by a stale
    populate.
    """

    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] | None = None):
        self.ttl_seconds = (
            ttl_seconds if ttl_seconds is not None else settings.ATTENDEE_COUNT_CACHE_TTL_SECONDS
        )
        self.clock = clock or self.default_clock

    @staticmethod
    def default_clock() -> float:
        return time.monotonic()

    def get(self, instance_id: str) -> tuple[int | None, bool]:
        raise NotImplementedError()

    def put(self, instance_id: str, count: int, generation: int | None = None) -> bool:
        raise NotImplementedError()

    def invalidate(self, instance_id: str) -> None:
        raise NotImplementedError()

    def generation(self, instance_id: str) -> int:
        raise NotImplementedError()

    def get_or_load(self, instance_id: str, loader: Callable[[str], int]) -> int:
        count, is_fresh = self.get(instance_id)
        if is_fresh and count is not None:
            return count

        generation = self.generation(instance_id)
        count = loader(instance_id)
        self.put(instance_id, count, generation=generation)
        return count


class InMemoryAttendeeCountCache(BaseAttendeeCountCache):
    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] | None = None):
        super().__init__(ttl_seconds=ttl_seconds, clock=clock)
        self._lock = threading.Lock()
        self._entries: dict[str, CachedAttendeeCount] = {}
        self._generations: dict[str, int] = {}

    def get(self, instance_id: str) -> tuple[int | None, bool]:
        now = self.clock()
        with self._lock:
            entry = self._entries.get(instance_id)
            if entry is None:
                return None, False
            if entry.is_fresh(now):
                return entry.count, True
            del self._entries[instance_id]
        return entry.count, False

    def put(self, instance_id: str, count: int, generation: int | None = None) -> bool:
        with self._lock:
            if generation is not None and self._generations.get(instance_id, 0) != generation:
                return False
            self._entries[instance_id] = CachedAttendeeCount(
                count=count, recorded_at=self.clock(), ttl_seconds=self.ttl_seconds
            )
            return True

    def invalidate(self, instance_id: str) -> None:
        with self._lock:
            self._entries.pop(instance_id, None)
            self._generations[instance_id] = self._generations.get(instance_id, 0) + 1

    def generation(self, instance_id: str) -> int:
        with self._lock:
            return self._generations.get(instance_id, 0)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._generations.clear()


class RedisAttendeeCountCache(BaseAttendeeCountCache):
    """
    Shares counts between processes. Redis failures are logged and treated as cache
    misses, so callers fall back to a recount.
    """

    key_prefix = "attendees"

    def __init__(
        self,
        redis: Redis,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] | None = None,
    ):
        super().__init__(ttl_seconds=ttl_seconds, clock=clock)
        self.redis = redis

    @staticmethod
    def default_clock() -> float:
        # Entries are read by other processes, so they need a shared wall clock.
        return time.time()

    def _key(self, instance_id: str) -> str:
        return f"{self.key_prefix}:{instance_id}"

    def _generation_key(self, instance_id: str) -> str:
        return f"{self.key_prefix}:{instance_id}:generation"

    def get(self, instance_id: str) -> tuple[int | None, bool]:
        try:
            raw = self.redis.get(self._key(instance_id))
        except RedisError:
            logger.warning("Attendee count cache read failed for %s", instance_id, exc_info=True)
            return None, False
        if raw is None:
            return None, False

        try:
            payload = json.loads(raw)
            entry = CachedAttendeeCount(
                count=int(payload["count"]),
                recorded_at=float(payload["recorded_at"]),
                ttl_seconds=self.ttl_seconds,
            )
        except (ValueError, KeyError, TypeError):
            logger.warning("Unreadable attendee count cache entry for %s", instance_id)
            return None, False
        return entry.count, entry.is_fresh(self.clock())

    def put(self, instance_id: str, count: int, generation: int | None = None) -> bool:
        payload = json.dumps({"count": count, "recorded_at": self.clock()})
        try:
            with self.redis.pipeline() as pipe:
                pipe.watch(self._generation_key(instance_id))
                current = int(pipe.get(self._generation_key(instance_id)) or 0)
                if generation is not None and current != generation:
                    pipe.unwatch()
                    return False
                pipe.multi()
                pipe.set(self._key(instance_id), payload, ex=max(int(self.ttl_seconds), 1))
                pipe.execute()
        except WatchError:
            return False
        except (RedisError, ValueError):
            logger.warning("Attendee count cache write failed for %s", instance_id, exc_info=True)
            return False
        return True

    def invalidate(self, instance_id: str) -> None:
        try:
            with self.redis.pipeline() as pipe:
                pipe.delete(self._key(instance_id))
                pipe.incr(self._generation_key(instance_id))
                pipe.execute()
        except RedisError:
            logger.warning(
                "Attendee count cache invalidation failed for %s", instance_id, exc_info=True
            )

    def generation(self, instance_id: str) -> int:
        try:
            return int(self.redis.get(self._generation_key(instance_id)) or 0)
        except RedisError:
            logger.warning("Attendee count cache read failed for %s", instance_id, exc_info=True)
            return 0
        except ValueError:
            logger.warning("Unreadable attendee count generation for %s", instance_id)
            return 0
