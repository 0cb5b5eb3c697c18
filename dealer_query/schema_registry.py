"""
Schema Registry - TTL read-through cache for the live database schema.

Lookup order: in-memory snapshot (while fresh), Redis (when configured), a
synchronous refresh from INFORMATION_SCHEMA, then the last stale snapshot.
When nothing is available the caller falls back to the static schema
description in ``schema_docs``.

The cached state is a single ``(snapshot, fetched_at)`` tuple that is replaced
as a whole, so concurrent readers never observe a half-updated entry.
"""

import hashlib
import logging
import time
from typing import Callable, Optional, Tuple

import redis
from redis.exceptions import RedisError

from dealer_query.config import Config, get_config
from dealer_query.models import SchemaSnapshot
from dealer_query.schema_docs import render_schema_description, static_snapshot

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "sqlgen:schema:"

RefreshFn = Callable[[], Optional[SchemaSnapshot]]


def schema_cache_key(server: Optional[str], database: Optional[str]) -> str:
    """Redis key: prefix plus sha256 of ``server:database`` (or ``local_schema``)."""
    identity = f"{server}:{database}" if server else "local_schema"
    return CACHE_KEY_PREFIX + hashlib.sha256(identity.encode("utf-8")).hexdigest()


class SchemaRegistry:
    """Caches the live schema snapshot with a TTL."""

    def __init__(
        self,
        refresh_fn: Optional[RefreshFn] = None,
        ttl_seconds: Optional[int] = None,
        redis_client=None,
        cache_key: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.refresh_fn = refresh_fn
        self.ttl_seconds = ttl_seconds or get_config().schema_cache_ttl_seconds
        self.redis_client = redis_client
        self.cache_key = cache_key or schema_cache_key(None, None)
        self._clock = clock
        self._entry: Optional[Tuple[SchemaSnapshot, float]] = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def get_snapshot(self) -> Optional[SchemaSnapshot]:
        """Return the freshest available snapshot, or None if none can be had."""
        entry = self._entry
        now = self._clock()
        if entry is not None and now - entry[1] < self.ttl_seconds:
            return entry[0]

        cached = self._read_redis()
        if cached is not None:
            self._entry = (cached, now)
            return cached

        refreshed = self.refresh()
        if refreshed is not None:
            return refreshed

        if entry is not None:
            logger.warning("Schema refresh unavailable; serving stale snapshot")
            return entry[0]
        return None

    def refresh(self) -> Optional[SchemaSnapshot]:
        """Force a refresh from the database; None when it fails or is not configured."""
        if self.refresh_fn is None:
            return None
        try:
            snapshot = self.refresh_fn()
        except Exception as exc:  # noqa: BLE001 - refresh failures fall back to cache
            logger.warning(f"Schema refresh failed: {type(exc).__name__}: {exc}")
            return None
        if snapshot is None or not snapshot.tables:
            logger.warning("Schema refresh returned no tables")
            return None

        self._entry = (snapshot, self._clock())
        self._write_redis(snapshot)
        logger.info(f"Schema refreshed: {len(snapshot.tables)} tables")
        return snapshot

    def describe(self) -> str:
        """Schema description for the LLM prompt (static listing as fallback)."""
        return render_schema_description(self.get_snapshot())

    def invalidate(self):
        self._entry = None

    # ------------------------------------------------------------------ #
    # Redis layer
    # ------------------------------------------------------------------ #
    def _read_redis(self) -> Optional[SchemaSnapshot]:
        if self.redis_client is None:
            return None
        try:
            raw = self.redis_client.get(self.cache_key)
        except RedisError as exc:
            logger.warning(f"Redis read failed for schema cache: {exc}")
            return None
        if not raw:
            return None
        try:
            return SchemaSnapshot.model_validate_json(raw)
        except ValueError as exc:
            logger.warning(f"Ignoring unreadable schema cache entry: {exc}")
            return None

    def _write_redis(self, snapshot: SchemaSnapshot):
        if self.redis_client is None:
            return
        try:
            self.redis_client.set(
                self.cache_key, snapshot.model_dump_json(), ex=self.ttl_seconds
            )
        except RedisError as exc:
            logger.warning(f"Redis write failed for schema cache: {exc}")


class StaticSchemaRegistry(SchemaRegistry):
    """Registry pinned to the compiled-in schema (no database, no Redis)."""

    def __init__(self):
        super().__init__(refresh_fn=None, ttl_seconds=1)
        self._static = static_snapshot()

    def get_snapshot(self) -> Optional[SchemaSnapshot]:
        return self._static

    def refresh(self) -> Optional[SchemaSnapshot]:
        return self._static


def build_schema_registry(
    config: Optional[Config] = None, refresh_fn: Optional[RefreshFn] = None
) -> SchemaRegistry:
    """
    Build the registry the configuration asks for.

    ``SCHEMA_SOURCE=live`` with a configured database syncs from SQL Server and
    uses Redis when ``REDIS_URL`` is set; anything else uses the static schema.
    """
    config = config or get_config()
    if config.schema_source != "live" or not config.database_configured:
        return StaticSchemaRegistry()

    redis_client = None
    if config.redis_url:
        redis_client = redis.Redis.from_url(config.redis_url, decode_responses=True)

    return SchemaRegistry(
        refresh_fn=refresh_fn,
        ttl_seconds=config.schema_cache_ttl_seconds,
        redis_client=redis_client,
        cache_key=schema_cache_key(config.db_host, config.db_name),
    )
