"""
Key-value backends with per-key TTL.

``RedisBackend`` is the durable source of truth. ``InMemoryBackend`` is
the in-process fallback permitted outside production; it owns a single
sweep task that evicts expired entries.

Failure contract: reads, deletes and TTL lookups raise
``InfrastructureError`` when the backend is unreachable; writes return
``False`` so callers decide whether a failed write is fatal.
"""

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from freightbot.errors import ErrorCode, InfrastructureError
from freightbot.utils import Clock, utc_now

logger = logging.getLogger(__name__)


class KeyValueBackend(ABC):
    """Minimal async key-value interface used by sessions and the quote cache."""

    name: str = "backend"

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        ...

    @abstractmethod
    async def set(self, key: str, value: bytes, ttl_seconds: int) -> bool:
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    async def ttl(self, key: str) -> Optional[int]:
        """Seconds until ``key`` expires, or None if absent or without expiry."""

    async def ping(self) -> bool:
        return True


class RedisBackend(KeyValueBackend):
    """Redis-backed store using ``redis.asyncio``."""

    name = "redis"

    def __init__(self, client: Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisBackend":
        return cls(Redis.from_url(url, decode_responses=False))

    async def get(self, key: str) -> Optional[bytes]:
        try:
            value = await self._client.get(key)
        except RedisError as exc:
            logger.error("Redis GET failed for %s: %s", key, exc)
            raise InfrastructureError(
                ErrorCode.BACKEND_UNAVAILABLE, "Redis read failed", {"key": key}
            ) from exc
        if isinstance(value, str):
            return value.encode("utf-8")
        return value

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> bool:
        try:
            result = await self._client.set(key, value, ex=max(1, int(ttl_seconds)))
        except RedisError as exc:
            logger.error("Redis SET failed for %s: %s", key, exc)
            return False
        return bool(result)

    async def delete(self, key: str) -> bool:
        try:
            removed = await self._client.delete(key)
        except RedisError as exc:
            logger.error("Redis DEL failed for %s: %s", key, exc)
            raise InfrastructureError(
                ErrorCode.BACKEND_UNAVAILABLE, "Redis delete failed", {"key": key}
            ) from exc
        return removed == 1

    async def ttl(self, key: str) -> Optional[int]:
        try:
            remaining = await self._client.ttl(key)
        except RedisError as exc:
            logger.error("Redis TTL failed for %s: %s", key, exc)
            raise InfrastructureError(
                ErrorCode.BACKEND_UNAVAILABLE, "Redis TTL lookup failed", {"key": key}
            ) from exc
        # -2: missing key, -1: no expiry
        return remaining if remaining is not None and remaining >= 0 else None

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as exc:
            logger.warning("Redis ping failed: %s", exc)
            return False

    async def close(self) -> None:
        await self._client.aclose()


@dataclass
class _Entry:
    value: bytes
    expires_at: datetime


class InMemoryBackend(KeyValueBackend):
    """Process-local store with TTL, for development and tests only."""

    name = "memory"

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._sweep_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._entries)

    def _live(self, key: str) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[bytes]:
        entry = self._live(key)
        return entry.value if entry else None

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> bool:
        expires_at = self._clock() + timedelta(seconds=max(1, int(ttl_seconds)))
        self._entries[key] = _Entry(value=value, expires_at=expires_at)
        return True

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def ttl(self, key: str) -> Optional[int]:
        entry = self._live(key)
        if entry is None:
            return None
        return int((entry.expires_at - self._clock()).total_seconds())

    def sweep(self) -> int:
        """Evict every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def start_sweep(self, interval_seconds: float) -> None:
        """Start the periodic sweep on the running event loop (idempotent)."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.get_running_loop().create_task(
            self._sweep_loop(interval_seconds)
        )

    async def stop_sweep(self) -> None:
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweep_task
        self._sweep_task = None

    @property
    def sweeping(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def _sweep_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            removed = self.sweep()
            logger.debug("In-memory sweep removed %d expired entries", removed)
