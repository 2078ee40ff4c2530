import json
import threading
from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from scheduling.services.attendee_count_cache import (
    InMemoryAttendeeCountCache,
    RedisAttendeeCountCache,
)


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return InMemoryAttendeeCountCache(ttl_seconds=300, clock=clock)


class TestInMemoryAttendeeCountCache:
    def test_get_missing_entry(self, cache):
        assert cache.get("1_2026-03-02") == (None, False)

    def test_entry_is_fresh_until_ttl_expires(self, cache, clock):
        cache.put("1_2026-03-02", 4)

        clock.advance(299)
        assert cache.get("1_2026-03-02") == (4, True)

        clock.advance(1)
        assert cache.get("1_2026-03-02") == (4, False)
        # Expired entries are evicted on read.
        assert cache.get("1_2026-03-02") == (None, False)

    def test_invalidate_removes_entry(self, cache):
        cache.put("1_2026-03-02", 4)

        cache.invalidate("1_2026-03-02")

        assert cache.get("1_2026-03-02") == (None, False)

    def test_get_or_load_reads_through(self, cache, clock):
        loader = MagicMock(return_value=3)

        assert cache.get_or_load("1_2026-03-02", loader) == 3
        assert cache.get_or_load("1_2026-03-02", loader) == 3
        loader.assert_called_once_with("1_2026-03-02")

        clock.advance(301)
        loader.return_value = 5
        assert cache.get_or_load("1_2026-03-02", loader) == 5
        assert loader.call_count == 2

    def test_invalidate_during_populate_is_not_overwritten(self, cache):
        def stale_loader(instance_id):
            # A registration commits while the count is being loaded.
            cache.invalidate(instance_id)
            return 2

        assert cache.get_or_load("1_2026-03-02", stale_loader) == 2
        assert cache.get("1_2026-03-02") == (None, False)

    def test_put_with_outdated_generation_is_rejected(self, cache):
        generation = cache.generation("7")
        cache.invalidate("7")

        assert cache.put("7", 1, generation=generation) is False
        assert cache.put("7", 1, generation=cache.generation("7")) is True

    def test_concurrent_access(self, cache):
        errors = []

        def worker(index):
            try:
                for _ in range(200):
                    cache.put(str(index % 3), index)
                    cache.get(str(index % 3))
                    cache.invalidate(str(index % 3))
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert cache.generation("0") == 200 * 3


class TestRedisAttendeeCountCache:
    @pytest.fixture
    def redis_client(self):
        return MagicMock()

    @pytest.fixture
    def redis_cache(self, redis_client, clock):
        return RedisAttendeeCountCache(redis=redis_client, ttl_seconds=300, clock=clock)

    def test_get_fresh_entry(self, redis_cache, redis_client, clock):
        redis_client.get.return_value = json.dumps({"count": 6, "recorded_at": clock() - 10})

        assert redis_cache.get("1_2026-03-02") == (6, True)
        redis_client.get.assert_called_once_with("attendees:1_2026-03-02")

    def test_get_stale_entry(self, redis_cache, redis_client, clock):
        redis_client.get.return_value = json.dumps({"count": 6, "recorded_at": clock() - 300})

        assert redis_cache.get("1_2026-03-02") == (6, False)

    def test_read_failure_falls_back_to_loader(self, redis_cache, redis_client):
        redis_client.get.side_effect = RedisConnectionError("down")
        redis_client.pipeline.side_effect = RedisConnectionError("down")

        assert redis_cache.get("1_2026-03-02") == (None, False)
        assert redis_cache.get_or_load("1_2026-03-02", lambda _key: 8) == 8

    @pytest.mark.parametrize("raw", [b"not-json", b'{"count": 3}', b"[1, 2]"])
    def test_unreadable_entry_falls_back_to_loader(self, redis_cache, redis_client, raw, caplog):
        redis_client.get.return_value = raw

        assert redis_cache.get("1_2026-03-02") == (None, False)
        assert redis_cache.get_or_load("1_2026-03-02", lambda _key: 8) == 8
        assert "Unreadable attendee count" in caplog.text

    def test_invalidate_failure_is_logged_not_raised(self, redis_cache, redis_client, caplog):
        redis_client.pipeline.side_effect = RedisConnectionError("down")

        redis_cache.invalidate("1_2026-03-02")

        assert "invalidation failed" in caplog.text

    def test_invalidate_deletes_and_bumps_generation(self, redis_cache, redis_client):
        pipe = redis_client.pipeline.return_value.__enter__.return_value

        redis_cache.invalidate("1_2026-03-02")

        pipe.delete.assert_called_once_with("attendees:1_2026-03-02")
        pipe.incr.assert_called_once_with("attendees:1_2026-03-02:generation")
        pipe.execute.assert_called_once()

    def test_put_skips_when_generation_changed(self, redis_cache, redis_client):
        pipe = redis_client.pipeline.return_value.__enter__.return_value
        pipe.get.return_value = b"3"

        assert redis_cache.put("1_2026-03-02", 4, generation=2) is False
        pipe.set.assert_not_called()

    def test_put_stores_count(self, redis_cache, redis_client, clock):
        pipe = redis_client.pipeline.return_value.__enter__.return_value
        pipe.get.return_value = b"2"

        assert redis_cache.put("1_2026-03-02", 4, generation=2) is True
        pipe.set.assert_called_once_with(
            "attendees:1_2026-03-02",
            json.dumps({"count": 4, "recorded_at": clock()}),
            ex=300,
        )
