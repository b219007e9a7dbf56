import pytest
import redis

from centaur.middleware.foundry import FoundryCache, FoundryContext, resolve_foundry
from centaur.middleware.rate_limit import RateLimitMiddleware


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class FakePipeline:
    def __init__(self, store):
        self.store = store
        self.ops = []

    def setex(self, key, ttl, value):
        self.ops.append((key, value))
        return self

    def execute(self):
        for key, value in self.ops:
            self.store.data[key] = str(value)
        self.ops = []


class FakeRedis:
    """The handful of redis-py calls the limiter makes."""

    def __init__(self, fail=False):
        self.data = {}
        self.fail = fail

    def ping(self):
        return True

    def get(self, key):
        if self.fail:
            raise redis.ConnectionError("connection refused")
        return self.data.get(key)

    def pipeline(self):
        return FakePipeline(self)


def context(foundry_id="f1", slug="acme", **kwargs):
    return FoundryContext(id=foundry_id, name=slug.title(), slug=slug, subdomain=slug, is_active=True, **kwargs)


class TestFoundryCache:
    def test_entries_expire(self):
        clock = FakeClock()
        cache = FoundryCache(ttl_seconds=300, clock=clock)
        cache.set("acme", context())

        clock.now = 299
        assert cache.get("acme").id == "f1"

        clock.now = 300
        assert cache.get("acme") is None
        assert len(cache) == 0

    def test_invalidate_by_foundry_id(self):
        cache = FoundryCache(ttl_seconds=60)
        cache.set("acme", context())
        cache.set("f1", context())
        cache.set("globex", context("f2", "globex"))

        assert cache.invalidate("f1") == 2
        assert cache.get("globex").id == "f2"

    def test_zero_ttl_disables_caching(self):
        cache = FoundryCache(ttl_seconds=0)
        cache.set("acme", context())
        assert cache.get("acme") is None

    def test_resolve_uses_database_then_cache(self, db, foundry):
        cache = FoundryCache(ttl_seconds=60)

        resolved = resolve_foundry("acme", cache)
        assert resolved.id == foundry.id
        assert cache.get("acme") == resolved

        # Served from the cache even after the row changes
        foundry.name = "Renamed"
        db.commit()
        assert resolve_foundry("acme", cache).name == "Acme"

    def test_unknown_identifiers_not_cached(self, db, foundry):
        cache = FoundryCache(ttl_seconds=60)
        assert resolve_foundry("nope", cache) is None
        assert len(cache) == 0

    def test_resolves_by_id(self, db, foundry):
        assert resolve_foundry(foundry.id, FoundryCache(ttl_seconds=60)).slug == "acme"


class TestRateLimit:
    @pytest.fixture
    def fake_redis(self):
        return FakeRedis()

    @pytest.fixture
    def limiter(self, fake_redis):
        return RateLimitMiddleware(app=None, redis_client=fake_redis, enabled=True)

    def test_burst_then_refuse(self, limiter):
        foundry = context(rate_limit_per_minute=60, rate_limit_burst=3)

        results = [limiter.check_rate_limit(foundry, now=1000.0) for _ in range(4)]

        assert [allowed for allowed, _ in results] == [True, True, True, False]
        assert results[-1][1] == 2

    def test_refills_over_time(self, limiter):
        foundry = context(rate_limit_per_minute=60, rate_limit_burst=1)

        assert limiter.check_rate_limit(foundry, now=1000.0)[0]
        assert not limiter.check_rate_limit(foundry, now=1000.5)[0]
        assert limiter.check_rate_limit(foundry, now=1001.0)[0]

    def test_buckets_are_per_foundry(self, limiter):
        acme = context("f1", "acme", rate_limit_burst=1)
        globex = context("f2", "globex", rate_limit_burst=1)

        assert limiter.check_rate_limit(acme, now=1000.0)[0]
        assert not limiter.check_rate_limit(acme, now=1000.0)[0]
        assert limiter.check_rate_limit(globex, now=1000.0)[0]

    def test_fails_open_on_redis_error(self):
        limiter = RateLimitMiddleware(app=None, redis_client=FakeRedis(fail=True), enabled=True)
        assert limiter.check_rate_limit(context(), now=1000.0) == (True, 0)

    def test_disabled_never_connects(self):
        limiter = RateLimitMiddleware(app=None, enabled=False)
        assert limiter.redis_client is None
        assert limiter.redis_available is False
