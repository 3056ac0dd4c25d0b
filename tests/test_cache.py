import pytest

from tenant_rbac.features.permissions.cache import CacheKey, PermissionCache


def key(user_id, company_id=None):
    return CacheKey("user_permissions", user_id, company_id)


def size(cache):
    return cache.statistics().total_entries


def test_put_then_get_returns_value(cache):
    cache.put(key("u1"), {"names": ["A"]})
    assert cache.get(key("u1")) == {"names": ["A"]}


def test_entry_expires_after_ttl(cache, clock):
    cache.put(key("u1"), "value", ttl_seconds=10)

    clock.advance(9)
    assert cache.get(key("u1")) == "value"

    clock.advance(1)
    assert cache.get(key("u1")) is None
    assert size(cache) == 0


def test_default_ttl_comes_from_config(cache, clock):
    cache.put(key("u1"), "value")
    clock.advance(59)
    assert cache.get(key("u1")) == "value"
    clock.advance(1)
    assert cache.get(key("u1")) is None


def test_key_rendering():
    assert str(key("u1")) == "permissions:user_permissions:u1"
    assert str(key("u1", "c1")) == "permissions:user_permissions:u1:c1"


def test_full_cache_evicts_oldest_tenth(clock):
    cache = PermissionCache(ttl_seconds=60, max_entries=20, clock=clock)
    for i in range(20):
        cache.put(key(f"u{i}"), i)

    cache.put(key("new"), "new")

    assert size(cache) == 19
    assert cache.get(key("u0")) is None
    assert cache.get(key("u1")) is None
    assert cache.get(key("u2")) == 2
    assert cache.get(key("new")) == "new"


def test_small_cache_still_evicts(clock):
    cache = PermissionCache(ttl_seconds=60, max_entries=3, clock=clock)
    for i in range(10):
        cache.put(key(f"u{i}"), i)
    assert size(cache) <= 3
    assert cache.get(key("u9")) == 9


def test_reinsert_does_not_evict(clock):
    cache = PermissionCache(ttl_seconds=60, max_entries=2, clock=clock)
    cache.put(key("a"), 1)
    cache.put(key("b"), 2)
    cache.put(key("a"), 3)
    assert cache.get(key("a")) == 3
    assert cache.get(key("b")) == 2


def test_disabled_cache_never_stores(clock):
    cache = PermissionCache(enabled=False, clock=clock)
    cache.put(key("u1"), "value")
    assert cache.get(key("u1")) is None
    assert size(cache) == 0


def test_invalidate_users_drops_every_company_variant(cache):
    cache.put(key("u1"), 1)
    cache.put(key("u1", "c1"), 2)
    cache.put(key("u2", "c1"), 3)

    removed = cache.invalidate_users(["u1"])

    assert set(removed) == {key("u1"), key("u1", "c1")}
    assert cache.get(key("u2", "c1")) == 3


def test_invalidate_where_matches_on_value(cache):
    cache.put(key("u1"), {"names": ["A"]})
    cache.put(key("u2"), {"names": ["B"]})

    removed = cache.invalidate_where(lambda _key, value: "A" in value["names"])

    assert removed == [key("u1")]
    assert cache.get(key("u2")) == {"names": ["B"]}


def test_clear_returns_count(cache):
    cache.put(key("u1"), 1)
    cache.put(key("u2"), 2)
    assert cache.clear() == 2
    assert size(cache) == 0


def test_statistics_counts_hits_and_purges_expired(cache, clock):
    cache.put(key("u1"), {"a": 1}, ttl_seconds=100)
    cache.put(key("u2"), {"b": 2}, ttl_seconds=5)
    cache.get(key("u1"))
    cache.get(key("u1"))
    cache.get(key("ghost"))

    clock.advance(10)
    stats = cache.statistics()

    assert stats.total_entries == 1
    assert stats.active_entries == 1
    assert stats.expired_entries == 0
    assert stats.total_hits == 2
    assert stats.total_misses == 1
    assert stats.hit_ratio == pytest.approx(2 / 3)
    assert stats.memory_usage_bytes > 0
    assert stats.average_entry_size == stats.memory_usage_bytes


def test_statistics_on_empty_cache(cache):
    stats = cache.statistics()
    assert stats.total_entries == 0
    assert stats.hit_ratio == 0.0
    assert stats.average_entry_size == 0.0


def test_rejects_non_positive_capacity():
    with pytest.raises(ValueError):
        PermissionCache(max_entries=0)
