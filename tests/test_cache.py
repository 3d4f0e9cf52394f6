from datetime import date

import fakeredis
import pytest

from dentcare.cache import (
    CacheKeys,
    MemoryCache,
    RedisCache,
    cached,
    get_cache,
    get_cache_stats,
    invalidate_appointments,
    invalidate_clinic,
    invalidate_plans,
    invalidate_procedures,
    invalidate_reports,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def memory(clock):
    return MemoryCache(default_ttl=60, sweep_interval=300, clock=clock)


class TestMemoryCache:
    def test_entries_expire_after_ttl(self, memory, clock):
        memory.set("a", {"x": 1}, ttl=10)

        clock.advance(10)
        assert memory.get("a") == {"x": 1}

        clock.advance(1)
        assert memory.get("a") is None
        assert memory.has("a") is False

    def test_default_ttl(self, memory, clock):
        memory.set("a", 1)
        clock.advance(61)
        assert memory.get("a") is None

    def test_zero_ttl_is_not_replaced_by_default(self, memory, clock):
        memory.set("a", 1, ttl=0)
        clock.advance(1)
        assert memory.get("a") is None

    def test_sweep_removes_only_expired(self, memory, clock):
        memory.set("short", 1, ttl=5)
        memory.set("long", 2, ttl=500)
        clock.advance(6)

        assert memory.sweep_expired() == 1
        assert memory.keys() == ["long"]

    def test_sweep_runs_on_access_after_interval(self, memory, clock):
        memory.set("short", 1, ttl=5)
        clock.advance(301)

        memory.set("other", 2)

        assert memory.keys() == ["other"]

    def test_delete_pattern_matches_whole_key(self, memory):
        memory.set("clinic:1:dentists", 1)
        memory.set("clinic:1:report:costs:2030-01", 2)
        memory.set("clinic:12:dentists", 3)
        memory.set("plans:subscription", 4)

        assert memory.delete_pattern("clinic:1:*") == 2
        assert sorted(memory.keys()) == ["clinic:12:dentists", "plans:subscription"]
        assert memory.delete_pattern("clinic:1:*") == 0

    def test_delete(self, memory):
        memory.set("a", 1)
        assert memory.delete("a") is True
        assert memory.delete("a") is False

    def test_get_or_set_computes_once(self, memory):
        calls = []

        def compute():
            calls.append(1)
            return [1, 2]

        assert memory.get_or_set("k", compute) == [1, 2]
        assert memory.get_or_set("k", compute) == [1, 2]
        assert len(calls) == 1

    def test_get_or_set_does_not_cache_none(self, memory):
        assert memory.get_or_set("k", lambda: None) is None
        assert "k" not in memory.keys()

    def test_stats(self, memory):
        memory.set("a", 1)
        assert memory.stats() == {"backend": "memory", "size": 1, "keys": ["a"]}


@pytest.fixture()
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture()
def redis_cache(redis_server):
    client = fakeredis.FakeRedis(server=redis_server, decode_responses=True)
    return RedisCache(url=None, default_ttl=60, client=client)


class TestRedisCache:
    def test_values_round_trip_as_json(self, redis_cache):
        assert redis_cache.set("clinic:1:report:costs:2030-01", {"revenue": 1000.0, "months": [1, 2]}) is True
        assert redis_cache.get("clinic:1:report:costs:2030-01") == {"revenue": 1000.0, "months": [1, 2]}
        assert redis_cache.has("clinic:1:report:costs:2030-01") is True

    def test_ttl_is_applied(self, redis_cache):
        redis_cache.set("a", 1)
        redis_cache.set("b", 2, ttl=5)

        assert redis_cache.redis_client.ttl("a") == 60
        assert redis_cache.redis_client.ttl("b") == 5

    def test_non_positive_ttl_is_not_stored(self, redis_cache):
        assert redis_cache.set("a", 1, ttl=0) is False
        assert redis_cache.get("a") is None

    def test_delete_pattern_matches_whole_key(self, redis_cache):
        redis_cache.set("clinic:1:dentists", 1)
        redis_cache.set("clinic:1:report:costs:2030-01", 2)
        redis_cache.set("clinic:12:dentists", 3)

        assert redis_cache.delete_pattern("clinic:1:*") == 2
        assert redis_cache.keys() == ["clinic:12:dentists"]
        assert redis_cache.delete_pattern("clinic:1:*") == 0

    def test_delete(self, redis_cache):
        redis_cache.set("a", 1)
        assert redis_cache.delete("a") is True
        assert redis_cache.delete("a") is False

    def test_get_or_set_computes_once(self, redis_cache):
        calls = []

        def compute():
            calls.append(1)
            return {"plans": ["BASIC"]}

        assert redis_cache.get_or_set("plans:subscription", compute) == {"plans": ["BASIC"]}
        assert redis_cache.get_or_set("plans:subscription", compute) == {"plans": ["BASIC"]}
        assert len(calls) == 1

    def test_clear_and_stats(self, redis_cache):
        redis_cache.set("a", 1)
        assert redis_cache.stats() == {"backend": "redis", "size": 1, "keys": ["a"]}

        redis_cache.clear()

        assert redis_cache.stats()["size"] == 0
        assert redis_cache.sweep_expired() == 0

    def test_connection_errors_degrade_to_misses(self, redis_cache, redis_server):
        redis_cache.set("a", 1)
        redis_server.connected = False

        assert redis_cache.get("a") is None
        assert redis_cache.set("b", 2) is False
        assert redis_cache.delete("a") is False
        assert redis_cache.delete_pattern("*") == 0
        redis_cache.clear()

    def test_without_url_every_call_is_a_miss(self):
        cache = RedisCache(url=None)
        assert cache.set("a", 1) is False
        assert cache.get("a") is None
        assert cache.keys() == []


class TestKeysAndInvalidation:
    def test_key_layout(self):
        assert CacheKeys.dentists(3) == "clinic:3:dentists"
        assert CacheKeys.patients(3, page=2) == "clinic:3:patients:page:2"
        assert CacheKeys.cost_report(3, "2030-01") == "clinic:3:report:costs:2030-01"
        assert CacheKeys.plans() == "plans:subscription"

    def test_cached_decorator(self):
        calls = []

        @cached(lambda clinic_id: CacheKeys.dentists(clinic_id), ttl=60)
        def list_dentists(clinic_id):
            calls.append(clinic_id)
            return [f"dentist-{clinic_id}"]

        assert list_dentists(1) == ["dentist-1"]
        assert list_dentists(1) == ["dentist-1"]
        assert list_dentists(2) == ["dentist-2"]
        assert calls == [1, 2]

    def test_invalidate_clinic_leaves_other_tenants(self):
        cache = get_cache()
        cache.set(CacheKeys.clinic(1), "c")
        cache.set(CacheKeys.dentists(1), "d")
        cache.set(CacheKeys.dentists(11), "other")
        cache.set(CacheKeys.plans(), "plans")

        assert invalidate_clinic(1) == 2
        assert cache.get(CacheKeys.dentists(11)) == "other"
        assert cache.get(CacheKeys.plans()) == "plans"

    def test_invalidate_reports(self):
        cache = get_cache()
        cache.set(CacheKeys.cost_report(1, "2030-01"), "r")
        cache.set(CacheKeys.dentists(1), "d")

        assert invalidate_reports(1) == 1
        assert cache.get(CacheKeys.dentists(1)) == "d"

    def test_invalidate_appointments(self):
        cache = get_cache()
        cache.set(CacheKeys.appointments_day(1, "2030-01-07"), "day")
        cache.set(CacheKeys.appointments_month(1, "2030-01"), "month")
        cache.set(CacheKeys.dashboard(1), "dash")
        cache.set(CacheKeys.appointments_day(1, "2030-01-08"), "next day")

        invalidate_appointments(1, date(2030, 1, 7))

        assert cache.keys() == [CacheKeys.appointments_day(1, "2030-01-08")]

    def test_invalidate_procedures_and_plans(self):
        cache = get_cache()
        cache.set(CacheKeys.procedures(1), "p")
        cache.set(CacheKeys.categories(1), "c")
        cache.set(CacheKeys.plans(), "plans")
        cache.set(CacheKeys.dentists(1), "d")

        invalidate_procedures(1)
        invalidate_plans()

        assert cache.keys() == [CacheKeys.dentists(1)]

    def test_stats_only_list_own_clinic_keys(self):
        cache = get_cache()
        cache.set(CacheKeys.dentists(1), "d")
        cache.set(CacheKeys.dentists(2), "other")

        stats = get_cache_stats(1)

        assert stats["size"] == 2
        assert stats["clinic_keys"] == [CacheKeys.dentists(1)]


class TestCacheEndpoints:
    def test_stats(self, client, seed):
        get_cache().set(CacheKeys.dentists(seed.clinic.id), "d")
        get_cache().set(CacheKeys.dentists(seed.other_clinic.id), "other")

        body = client.get("/cache/stats", headers=seed.headers["owner"]).json()

        assert body["backend"] == "memory"
        assert body["clinic_keys"] == [CacheKeys.dentists(seed.clinic.id)]

    def test_clear_only_affects_caller_clinic(self, client, seed):
        get_cache().set(CacheKeys.dentists(seed.clinic.id), "d")
        get_cache().set(CacheKeys.dashboard(seed.clinic.id), "dash")
        get_cache().set(CacheKeys.dentists(seed.other_clinic.id), "other")

        response = client.post("/cache/clear", headers=seed.headers["owner"])

        assert response.json() == {"success": True, "removed": 2}
        assert get_cache().get(CacheKeys.dentists(seed.other_clinic.id)) == "other"

    def test_requires_clinic(self, client, seed):
        assert client.post("/cache/clear", headers=seed.headers["orphan"]).status_code == 403

    def test_only_clinic_admins(self, client, seed):
        get_cache().set(CacheKeys.dentists(seed.clinic.id), "d")

        assert client.get("/cache/stats", headers=seed.headers["dentist"]).status_code == 403
        assert client.post("/cache/clear", headers=seed.headers["dentist"]).status_code == 403
        assert get_cache().get(CacheKeys.dentists(seed.clinic.id)) == "d"
