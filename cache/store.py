"""
cache/store.py -- Ephemeral token cache (key -> string value with TTL).

Holds two kinds of short-lived authentication state:
  refresh:{user_id}       -> the single active refresh token for that user
  verification:{token}    -> user_id of an outstanding email verification

The key names are an interoperability contract: operators inspect them with
redis-cli, so refresh_key() / verification_key() are the only way callers
build them.

The same backend also carries the read-through event cache under event:*
and events:* (see events/store.py), which delete_prefix() clears.

Two backends share one interface (get / set / delete / delete_prefix / ping /
close):
  RedisTokenCache  -- production. TTL enforced by Redis (SET ... EX).
  MemoryTokenCache -- single-process dev mode and tests. TTL enforced on read.

Usage:
    cache = RedisTokenCache("redis://localhost:6379/0")
    cache.set(refresh_key(user.id), token, ttl_seconds=2592000)
    cache.get(refresh_key(user.id))     # returns str or None
    cache.delete(refresh_key(user.id))

Any redis.RedisError is re-raised as CacheUnavailableError so the engine can
tell "entry absent" (None) from "cache unreachable" (exception).
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

import redis

from auth.errors import CacheUnavailableError

logger = logging.getLogger("eventdesk.cache")

_REFRESH_PREFIX = "refresh"
_VERIFICATION_PREFIX = "verification"


def refresh_key(user_id: str) -> str:
    return f"{_REFRESH_PREFIX}:{user_id}"


def verification_key(token: str) -> str:
    return f"{_VERIFICATION_PREFIX}:{token}"


def _check_ttl(ttl_seconds: int) -> int:
    ttl = int(ttl_seconds)
    if ttl <= 0:
        raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds!r}")
    return ttl


class RedisTokenCache:
    """Thin redis-py wrapper with explicit socket timeouts.

    decode_responses=True so get() returns str, which the engine compares
    byte-for-byte against the presented refresh token.
    """

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0) -> None:
        self.redis_url = redis_url
        self.client = redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def get(self, key: str) -> str | None:
        try:
            return self.client.get(key)
        except redis.RedisError as exc:
            raise CacheUnavailableError(str(exc), operation="get") from exc

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ttl = _check_ttl(ttl_seconds)
        try:
            self.client.set(key, value, ex=ttl)
        except redis.RedisError as exc:
            raise CacheUnavailableError(str(exc), operation="set") from exc

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except redis.RedisError as exc:
            raise CacheUnavailableError(str(exc), operation="delete") from exc

    def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with prefix. Returns how many were removed.

        prefix is matched as a SCAN glob and must not contain glob metacharacters.
        """
        try:
            keys = list(self.client.scan_iter(match=f"{prefix}*", count=500))
            if keys:
                self.client.delete(*keys)
        except redis.RedisError as exc:
            raise CacheUnavailableError(str(exc), operation="delete_prefix") from exc
        return len(keys)

    def ping(self) -> bool:
        """Return True if Redis answers PING. Used by the health endpoint."""
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            logger.warning("Redis ping failed for %s", self.redis_url)
            return False

    def close(self) -> None:
        self.client.close()


class MemoryTokenCache:
    """In-process TTL cache with the same contract as RedisTokenCache.

    Not shared between worker processes -- only valid for a single uvicorn
    worker. clock is injectable so tests can fast-forward past a TTL.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ttl = _check_ttl(ttl_seconds)
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def purge_expired(self) -> int:
        """Delete all expired entries. Returns number of entries removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        with self._lock:
            self._entries.clear()


def build_token_cache(redis_url: str, *, socket_timeout: float = 5.0) -> RedisTokenCache | MemoryTokenCache:
    """Return a Redis-backed cache when redis_url is set, else the in-process cache."""
    if redis_url:
        return RedisTokenCache(redis_url, socket_timeout=socket_timeout)
    logger.warning("REDIS_URL not set -- using in-process token cache (single worker only)")
    return MemoryTokenCache()
