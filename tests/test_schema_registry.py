import hashlib

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from dealer_query.models import ColumnInfo, SchemaSnapshot
from dealer_query.schema_docs import PRIMARY_SALES_TABLE, render_schema_description
from dealer_query.schema_registry import (
    CACHE_KEY_PREFIX,
    SchemaRegistry,
    StaticSchemaRegistry,
    build_schema_registry,
    schema_cache_key,
)


class _Clock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now


class _FakeRedis:
    """Minimal stand-in for redis.Redis get/set."""

    def __init__(self, fail=False):
        self.store = {}
        self.ttls = {}
        self.fail = fail

    def get(self, key):
        if self.fail:
            raise RedisConnectionError("redis down")
        return self.store.get(key)

    def set(self, key, value, ex=None):
        if self.fail:
            raise RedisConnectionError("redis down")
        self.store[key] = value
        self.ttls[key] = ex
        return True


def _snapshot(*columns):
    return SchemaSnapshot(
        database="DealerReports",
        tables={PRIMARY_SALES_TABLE: [ColumnInfo(column=c, data_type="varchar") for c in columns]},
    )


class _Refresher:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        result = self.results.pop(0) if self.results else None
        if isinstance(result, Exception):
            raise result
        return result


def test_cache_key_hashes_server_and_database():
    expected = hashlib.sha256(b"sql.example.local:DealerReports").hexdigest()
    assert schema_cache_key("sql.example.local", "DealerReports") == CACHE_KEY_PREFIX + expected


def test_cache_key_for_local_schema():
    expected = hashlib.sha256(b"local_schema").hexdigest()
    assert schema_cache_key(None, None) == CACHE_KEY_PREFIX + expected


def test_fresh_snapshot_served_from_memory():
    clock = _Clock()
    refresher = _Refresher(_snapshot("ID", "TOTAL_COST"))
    registry = SchemaRegistry(refresh_fn=refresher, ttl_seconds=60, clock=clock)

    first = registry.get_snapshot()
    clock.now += 30
    second = registry.get_snapshot()

    assert first is second
    assert refresher.calls == 1


def test_expired_snapshot_is_refreshed():
    clock = _Clock()
    refresher = _Refresher(_snapshot("ID"), _snapshot("ID", "CLOSER"))
    registry = SchemaRegistry(refresh_fn=refresher, ttl_seconds=60, clock=clock)

    registry.get_snapshot()
    clock.now += 61
    snapshot = registry.get_snapshot()

    assert refresher.calls == 2
    assert "CLOSER" in snapshot.known_identifiers()


def test_failed_refresh_serves_stale_snapshot():
    clock = _Clock()
    refresher = _Refresher(_snapshot("ID"), RuntimeError("database unreachable"))
    registry = SchemaRegistry(refresh_fn=refresher, ttl_seconds=60, clock=clock)

    original = registry.get_snapshot()
    clock.now += 120
    assert registry.get_snapshot() is original


def test_no_snapshot_when_nothing_available():
    registry = SchemaRegistry(refresh_fn=_Refresher(RuntimeError("down")), ttl_seconds=60)
    assert registry.get_snapshot() is None
    assert registry.describe() == render_schema_description(None)


def test_empty_refresh_is_ignored():
    registry = SchemaRegistry(refresh_fn=_Refresher(SchemaSnapshot()), ttl_seconds=60)
    assert registry.refresh() is None


def test_refresh_writes_redis_with_ttl():
    fake_redis = _FakeRedis()
    registry = SchemaRegistry(
        refresh_fn=_Refresher(_snapshot("ID")),
        ttl_seconds=600,
        redis_client=fake_redis,
        cache_key="sqlgen:schema:test",
    )

    registry.get_snapshot()

    assert fake_redis.ttls["sqlgen:schema:test"] == 600
    cached = SchemaSnapshot.model_validate_json(fake_redis.store["sqlgen:schema:test"])
    assert PRIMARY_SALES_TABLE in cached.tables


def test_redis_hit_skips_database():
    fake_redis = _FakeRedis()
    fake_redis.store["sqlgen:schema:test"] = _snapshot("ID", "MAKE").model_dump_json()
    refresher = _Refresher(_snapshot("ID"))
    registry = SchemaRegistry(
        refresh_fn=refresher,
        ttl_seconds=600,
        redis_client=fake_redis,
        cache_key="sqlgen:schema:test",
    )

    snapshot = registry.get_snapshot()

    assert refresher.calls == 0
    assert "MAKE" in snapshot.known_identifiers()


def test_unreadable_redis_entry_falls_through_to_refresh():
    fake_redis = _FakeRedis()
    fake_redis.store["sqlgen:schema:test"] = "not json"
    refresher = _Refresher(_snapshot("ID"))
    registry = SchemaRegistry(
        refresh_fn=refresher, ttl_seconds=600, redis_client=fake_redis, cache_key="sqlgen:schema:test"
    )

    assert registry.get_snapshot() is not None
    assert refresher.calls == 1


def test_redis_errors_do_not_break_lookup():
    refresher = _Refresher(_snapshot("ID"))
    registry = SchemaRegistry(
        refresh_fn=refresher, ttl_seconds=600, redis_client=_FakeRedis(fail=True)
    )
    assert registry.get_snapshot() is not None


def test_invalidate_forces_refresh():
    refresher = _Refresher(_snapshot("ID"), _snapshot("ID", "LENDER"))
    registry = SchemaRegistry(refresh_fn=refresher, ttl_seconds=600)

    registry.get_snapshot()
    registry.invalidate()
    snapshot = registry.get_snapshot()

    assert refresher.calls == 2
    assert "LENDER" in snapshot.known_identifiers()


def test_static_registry_returns_compiled_schema():
    registry = StaticSchemaRegistry()
    snapshot = registry.get_snapshot()
    assert PRIMARY_SALES_TABLE in snapshot.tables
    assert "DEALER_LOCATION" in snapshot.known_identifiers()
    assert registry.describe().startswith("Tables:")


def test_build_defaults_to_static(db_config):
    assert isinstance(build_schema_registry(db_config), StaticSchemaRegistry)


def test_build_live_registry(db_config, monkeypatch):
    monkeypatch.setattr(db_config, "schema_source", "live")
    refresher = _Refresher(_snapshot("ID"))

    registry = build_schema_registry(db_config, refresh_fn=refresher)

    assert not isinstance(registry, StaticSchemaRegistry)
    assert registry.redis_client is None
    assert registry.cache_key == schema_cache_key("sql.example.local", "DealerReports")


def test_build_live_registry_with_redis(db_config, monkeypatch):
    import dealer_query.schema_registry as registry_module

    monkeypatch.setattr(db_config, "schema_source", "live")
    monkeypatch.setattr(db_config, "redis_url", "redis://localhost:6379/0")
    created = {}

    def fake_from_url(url, **kwargs):
        created["url"] = url
        created["kwargs"] = kwargs
        return _FakeRedis()

    monkeypatch.setattr(registry_module.redis.Redis, "from_url", fake_from_url)

    registry = build_schema_registry(db_config, refresh_fn=_Refresher())

    assert created["url"] == "redis://localhost:6379/0"
    assert created["kwargs"] == {"decode_responses": True}
    assert isinstance(registry.redis_client, _FakeRedis)


@pytest.mark.parametrize("source", ["static", "live"])
def test_build_without_database_is_static(monkeypatch, source):
    from dealer_query.config import Config

    monkeypatch.delenv("DB_HOST", raising=False)
    monkeypatch.delenv("DB_NAME", raising=False)
    monkeypatch.setenv("SCHEMA_SOURCE", source)
    assert isinstance(build_schema_registry(Config()), StaticSchemaRegistry)
