"""Key-value store backends for tenant, usage and flag documents."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from config.settings import get_settings
from src.core.exceptions import StoreUnavailableError
from src.core.interfaces import KeyPrefixStore
from src.core.logging import get_logger

log = get_logger(__name__)

_GLOB_SPECIALS = re.compile(r"([\\*?\[\]])")
_SCAN_BATCH = 500


def escape_glob(prefix: str) -> str:
    """Escape Redis MATCH metacharacters so ``prefix`` matches literally."""
    return _GLOB_SPECIALS.sub(r"\\\1", prefix)


def _encode(value: Any) -> str:
    return json.dumps(value, default=str)


class RedisKeyPrefixStore(KeyPrefixStore):
    """Async Redis-backed document store.

    Values are stored as JSON strings. When ``namespace`` is set every key is
    stored as ``<namespace>:<key>``; callers always use un-namespaced keys.
    """

    def __init__(
        self,
        client: aioredis.Redis | None = None,
        namespace: str = "",
    ) -> None:
        self._redis: aioredis.Redis | None = client
        self._namespace = f"{namespace}:" if namespace else ""

    async def connect(self) -> None:
        """Initialize the Redis connection."""
        if self._redis is None:
            settings = get_settings()
            self._redis = aioredis.from_url(
                settings.redis_url.get_secret_value(),
                decode_responses=True,
            )
            log.info("redis_connected", namespace=self._namespace or None)

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            log.info("redis_closed")

    async def _get_redis(self) -> aioredis.Redis:
        if self._redis is None:
            await self.connect()
        assert self._redis is not None
        return self._redis

    def _k(self, key: str) -> str:
        return self._namespace + key

    def _decode(self, key: str, raw: str | None) -> Any | None:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StoreUnavailableError(
                "Stored value is not valid JSON", {"key": key}
            ) from exc

    # ── Point operations ─────────────────────────────────────────

    async def get(self, key: str) -> Any | None:
        try:
            r = await self._get_redis()
            raw = await r.get(self._k(key))
        except RedisError as exc:
            raise StoreUnavailableError(f"GET failed: {exc}", {"key": key}) from exc
        return self._decode(key, raw)

    async def set(self, key: str, value: Any) -> None:
        try:
            r = await self._get_redis()
            await r.set(self._k(key), _encode(value))
        except RedisError as exc:
            raise StoreUnavailableError(f"SET failed: {exc}", {"key": key}) from exc

    async def delete(self, key: str) -> None:
        try:
            r = await self._get_redis()
            await r.delete(self._k(key))
        except RedisError as exc:
            raise StoreUnavailableError(f"DEL failed: {exc}", {"key": key}) from exc

    # ── Prefix scan ──────────────────────────────────────────────

    async def get_by_prefix(self, prefix: str) -> list[Any]:
        pattern = escape_glob(self._k(prefix)) + "*"
        try:
            r = await self._get_redis()
            keys = sorted({k async for k in r.scan_iter(match=pattern, count=_SCAN_BATCH)})
            if not keys:
                return []
            raws = await r.mget(keys)
        except RedisError as exc:
            raise StoreUnavailableError(
                f"prefix scan failed: {exc}", {"prefix": prefix}
            ) from exc

        values = [self._decode(k, raw) for k, raw in zip(keys, raws)]
        # Keys can disappear between SCAN and MGET
        return [v for v in values if v is not None]

    # ── Batch operations ─────────────────────────────────────────

    async def mget(self, keys: Sequence[str]) -> list[Any | None]:
        if not keys:
            return []
        try:
            r = await self._get_redis()
            raws = await r.mget([self._k(k) for k in keys])
        except RedisError as exc:
            raise StoreUnavailableError(f"MGET failed: {exc}") from exc
        return [self._decode(k, raw) for k, raw in zip(keys, raws)]

    async def mset(self, items: Mapping[str, Any]) -> None:
        if not items:
            return
        try:
            r = await self._get_redis()
            await r.mset({self._k(k): _encode(v) for k, v in items.items()})
        except RedisError as exc:
            raise StoreUnavailableError(f"MSET failed: {exc}") from exc

    async def mdel(self, keys: Sequence[str]) -> None:
        if not keys:
            return
        try:
            r = await self._get_redis()
            await r.delete(*[self._k(k) for k in keys])
        except RedisError as exc:
            raise StoreUnavailableError(f"MDEL failed: {exc}") from exc

    # ── Health Check ─────────────────────────────────────────────

    async def ping(self) -> bool:
        """Check Redis connectivity."""
        try:
            r = await self._get_redis()
            return bool(await r.ping())
        except RedisError:
            return False


class InMemoryKeyPrefixStore(KeyPrefixStore):
    """Dict-backed store for development and tests.

    Values are round-tripped through JSON so callers never share mutable
    state with the store, matching the Redis backend.
    """

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = _encode(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def get_by_prefix(self, prefix: str) -> list[Any]:
        return [
            json.loads(self._data[k])
            for k in sorted(self._data)
            if k.startswith(prefix)
        ]

    def keys(self) -> list[str]:
        return sorted(self._data)


_store: RedisKeyPrefixStore | None = None


async def get_store() -> RedisKeyPrefixStore:
    """Get or create the process-wide Redis store (singleton)."""
    global _store  # noqa: PLW0603
    if _store is None:
        settings = get_settings()
        _store = RedisKeyPrefixStore(namespace=settings.kv_namespace)
        await _store.connect()
    return _store


async def close_store() -> None:
    global _store  # noqa: PLW0603
    if _store is not None:
        await _store.close()
        _store = None
