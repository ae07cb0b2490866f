from __future__ import annotations

import fnmatch
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Union

from pydantic import TypeAdapter, ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from quotedesk.config.settings import Settings
from quotedesk.errors import CacheTierUnavailable
from quotedesk.schemas.quote import Quote

logger = logging.getLogger(__name__)

CachedValue = Union[Quote, list[Quote]]
_PAYLOAD = TypeAdapter(CachedValue)

_RECONNECT_INTERVAL_SECONDS = 5.0


def market_key(symbol: str) -> str:
    return f"market:{symbol.strip().upper()}"


def batch_key(symbols: Iterable[str]) -> str:
    return f"market:batch:{','.join(sorted(symbols))}"


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    timestamp: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.timestamp <= self.ttl


class LocalCache:
    """Process-local TTL map; expired entries are evicted by the read that finds them."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not entry.is_valid(self._clock()):
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl: float) -> None:
        self.put_entry(key, CacheEntry(value=value, timestamp=self._clock(), ttl=ttl))

    def put_entry(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[key] = entry

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_matching(self, pattern: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if not entry.is_valid(now)]
            for key in expired:
                del self._entries[key]
            return len(self._entries)


def _get_client(redis_url: str) -> Redis | None:
    if not redis_url:
        return None
    return Redis.from_url(redis_url)


class QuoteCache:
    """Two-tier cache: redis first, then the local map.

    Redis failures are logged and never propagate; while redis is unreachable
    the cache works from the local tier and retries redis every few seconds.
    """

    def __init__(
        self,
        config: Settings,
        client: Redis | None = None,
        local: LocalCache | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client if client is not None else _get_client(config.redis_url)
        self._prefix = config.cache_key_prefix
        self._clock = clock
        self._local = local if local is not None else LocalCache(clock)
        self._connected = self._client is not None
        self._retry_at = 0.0

    @property
    def connected(self) -> bool:
        return self._client is not None and self._connected

    @property
    def local_size(self) -> int:
        return len(self._local)

    def _full_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _remote_ready(self) -> bool:
        if self._client is None:
            return False
        if self._connected:
            return True
        return self._clock() >= self._retry_at

    async def _remote(self, op: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            result = await func(*args, **kwargs)
        except (RedisError, OSError) as exc:
            if self._connected:
                logger.warning("Distributed cache marked unreachable after %s failure", op)
            self._connected = False
            self._retry_at = self._clock() + _RECONNECT_INTERVAL_SECONDS
            raise CacheTierUnavailable(f"redis {op} failed: {exc}") from exc
        if not self._connected:
            logger.info("Distributed cache reachable again")
        self._connected = True
        return result

    def _encode(self, value: CachedValue, ttl: float) -> str:
        return json.dumps(
            {
                "data": _PAYLOAD.dump_python(value, mode="json"),
                "timestamp": self._clock(),
                "ttl": ttl,
            }
        )

    def _decode(self, key: str, raw: bytes | str) -> CacheEntry | None:
        try:
            envelope = json.loads(raw)
            value = _PAYLOAD.validate_python(envelope["data"])
            return CacheEntry(
                value=value,
                timestamp=float(envelope["timestamp"]),
                ttl=float(envelope["ttl"]),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, ValidationError):
            logger.warning("Discarding unreadable cache entry %s", key)
            return None

    async def get(self, key: str) -> CachedValue | None:
        if self._remote_ready():
            try:
                raw = await self._remote("get", self._client.get, self._full_key(key))
            except CacheTierUnavailable as exc:
                logger.warning("%s", exc.message)
            else:
                if raw is not None:
                    entry = self._decode(key, raw)
                    if entry is not None and entry.is_valid(self._clock()):
                        self._local.put_entry(key, entry)
                        logger.debug("Distributed cache hit for %s", key)
                        return entry.value
                    await self.delete(key)
                    return None
        return self._local.get(key)

    async def mget(self, keys: list[str]) -> dict[str, CachedValue]:
        found: dict[str, CachedValue] = {}
        if not keys:
            return found
        if self._remote_ready():
            try:
                raws = await self._remote(
                    "mget", self._client.mget, [self._full_key(key) for key in keys]
                )
            except CacheTierUnavailable as exc:
                logger.warning("%s", exc.message)
            else:
                now = self._clock()
                for key, raw in zip(keys, raws):
                    if raw is None:
                        continue
                    entry = self._decode(key, raw)
                    if entry is not None and entry.is_valid(now):
                        self._local.put_entry(key, entry)
                        found[key] = entry.value
        for key in keys:
            if key in found:
                continue
            value = self._local.get(key)
            if value is not None:
                found[key] = value
        logger.debug("Cache multi-get: %d/%d hits", len(found), len(keys))
        return found

    async def set(self, key: str, value: CachedValue, ttl: float) -> None:
        self._local.set(key, value, ttl)
        if not self._remote_ready():
            return
        try:
            await self._remote(
                "set",
                self._client.set,
                self._full_key(key),
                self._encode(value, ttl),
                ex=max(1, int(ttl)),
            )
        except CacheTierUnavailable as exc:
            logger.warning("%s", exc.message)

    async def mset(self, entries: dict[str, CachedValue], ttl: float) -> None:
        if not entries:
            return
        for key, value in entries.items():
            self._local.set(key, value, ttl)
        if not self._remote_ready():
            return
        pipe = self._client.pipeline(transaction=False)
        for key, value in entries.items():
            pipe.set(self._full_key(key), self._encode(value, ttl), ex=max(1, int(ttl)))
        try:
            await self._remote("mset", pipe.execute)
        except CacheTierUnavailable as exc:
            logger.warning("%s", exc.message)

    async def delete(self, key: str) -> None:
        self._local.delete(key)
        if not self._remote_ready():
            return
        try:
            await self._remote("delete", self._client.delete, self._full_key(key))
        except CacheTierUnavailable as exc:
            logger.warning("%s", exc.message)

    async def _remote_keys(self, pattern: str) -> list[bytes]:
        async def _scan() -> list[bytes]:
            return [key async for key in self._client.scan_iter(match=self._full_key(pattern))]

        return await self._remote("scan", _scan)

    async def delete_pattern(self, pattern: str) -> int:
        removed = self._local.delete_matching(pattern)
        if not self._remote_ready():
            return removed
        try:
            keys = await self._remote_keys(pattern)
            if keys:
                await self._remote("delete", self._client.delete, *keys)
        except CacheTierUnavailable as exc:
            logger.warning("%s", exc.message)
            return removed
        return max(removed, len(keys))

    async def flush(self) -> None:
        self._local.clear()
        if not self._remote_ready():
            return
        try:
            keys = await self._remote_keys("*")
            if keys:
                await self._remote("delete", self._client.delete, *keys)
                logger.info("Flushed %d cache entries", len(keys))
        except CacheTierUnavailable as exc:
            logger.warning("%s", exc.message)

    async def key_count(self) -> int:
        if not self._remote_ready():
            return 0
        try:
            return len(await self._remote_keys("*"))
        except CacheTierUnavailable as exc:
            logger.warning("%s", exc.message)
            return 0

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
