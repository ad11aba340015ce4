import fakeredis
import pytest

from rate_limiter import Attempt, InMemoryAttemptStore, LoginRateLimiter
from redis_client import RedisAttemptStore, RedisClient


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class BrokenStore:
    def get(self, key):
        raise RuntimeError("store unavailable")

    def set(self, key, attempt, ttl):
        raise RuntimeError("store unavailable")

    def delete(self, key):
        raise RuntimeError("store unavailable")


@pytest.fixture(params=["memory", "redis"])
def store(request):
    if request.param == "memory":
        return InMemoryAttemptStore()
    return RedisAttemptStore(fakeredis.FakeRedis(decode_responses=True))


def test_five_failures_block_the_sixth_attempt(store):
    clock = FakeClock()
    limiter = LoginRateLimiter(store=store, max_attempts=5, window_seconds=600, clock=clock)

    for _ in range(4):
        limiter.record_failure("1.2.3.4")
        clock.advance(10)
    assert limiter.is_limited("1.2.3.4") is False

    limiter.record_failure("1.2.3.4")
    assert limiter.is_limited("1.2.3.4") is True
    assert limiter.is_limited("5.6.7.8") is False


def test_window_elapsed_resets_counter(store):
    """Once the window has passed the counter resets and attempts are allowed again."""
    clock = FakeClock()
    limiter = LoginRateLimiter(store=store, max_attempts=5, window_seconds=600, clock=clock)
    for _ in range(5):
        limiter.record_failure("ip")
    assert limiter.is_limited("ip") is True

    clock.advance(601)
    assert limiter.is_limited("ip") is False

    limiter.record_failure("ip")
    assert store.get("ip").count == 1


def test_failure_after_window_starts_new_count():
    clock = FakeClock()
    store = InMemoryAttemptStore()
    limiter = LoginRateLimiter(store=store, clock=clock)
    limiter.record_failure("ip")
    limiter.record_failure("ip")
    clock.advance(limiter.window_seconds + 1)
    limiter.record_failure("ip")
    assert store.get("ip") == Attempt(1, clock.now)


def test_limiter_fails_open_when_store_breaks():
    limiter = LoginRateLimiter(store=BrokenStore())
    limiter.record_failure("ip")
    assert limiter.is_limited("ip") is False


def test_redis_client_without_host_is_unavailable():
    client = RedisClient(host="")
    assert client.is_available() is False
    assert client.get_cached_catalog() is None
    assert client.cache_catalog({"categories": []}) is False


def test_redis_client_catalog_cache_roundtrip():
    client = RedisClient(client=fakeredis.FakeRedis(decode_responses=True))
    catalog = {"categories": [{"id": 1}], "products": []}
    assert client.cache_catalog(catalog) is True
    assert client.get_cached_catalog() == catalog
    assert client.invalidate_catalog_cache() is True
    assert client.get_cached_catalog() is None


def test_redis_client_cache_info():
    assert RedisClient(host="").get_cache_info() == {"status": "unavailable"}
    client = RedisClient(client=fakeredis.FakeRedis(decode_responses=True))
    assert client.get_cache_info() == {"status": "available", "catalog_cached": False}
    client.cache_catalog({"categories": [], "products": []})
    assert client.get_cache_info()["catalog_cached"] is True


def test_memory_store_drops_keys_that_never_return():
    clock = FakeClock()
    store = InMemoryAttemptStore()
    limiter = LoginRateLimiter(store=store, window_seconds=600, clock=clock)
    for i in range(1000):
        limiter.record_failure(f"10.0.{i // 256}.{i % 256}")
    assert len(store) == 1000

    clock.advance(10 * 24 * 3600)
    limiter.record_failure("192.168.1.1")
    assert len(store) == 1
    assert store.get("10.0.0.0") is None
    assert store.get("192.168.1.1") == Attempt(1, clock.now)


def test_memory_store_keeps_entries_inside_the_window():
    clock = FakeClock()
    store = InMemoryAttemptStore()
    limiter = LoginRateLimiter(store=store, window_seconds=600, clock=clock)
    limiter.record_failure("a")
    clock.advance(300)
    limiter.record_failure("b")
    assert len(store) == 2
    clock.advance(301)
    limiter.record_failure("c")
    assert store.get("a") is None
    assert store.get("b") == Attempt(1, clock.now - 301)
