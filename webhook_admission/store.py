"""Shared key-value store backing the idempotency guard.

The guard needs three capabilities from the store:

1. ``put`` with an optional *atomic* create-if-absent (``only_if_absent``)
   and a TTL after which the record disappears.
2. ``get`` for status inspection.
3. ``delete`` for operator-driven release.

``InMemoryKeyValueStore`` serves tests and single-process use;
``RedisKeyValueStore`` is the distributed implementation (``SET NX EX``).

Known limitation: the at-most-once guarantee is only as strong as the
store's create-if-absent. A store with eventually-consistent writes gives
best-effort deduplication only.
"""

from __future__ import annotations

import logging
import time
from typing import Protocol, runtime_checkable

import redis.asyncio as redis
from redis.exceptions import RedisError

from webhook_admission.exceptions import StoreUnavailableError

__all__ = [
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "RedisKeyValueStore",
]

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Protocol for the shared store used by ``run_once``."""

    async def put(
        self,
        key: str,
        value: str,
        *,
        ttl_seconds: int,
        only_if_absent: bool = False,
    ) -> bool:
        """Write *key* with a TTL.

        With ``only_if_absent=True`` the write must be a single atomic
        create-if-absent: two racing callers can never both get ``True``.

        Returns:
            ``True`` if the value was written, ``False`` if the key existed
            and ``only_if_absent`` was requested.

        Raises:
            StoreUnavailableError: The store could not be reached.
        """
        ...

    async def get(self, key: str) -> str | None:
        ...

    async def delete(self, key: str) -> None:
        ...


class InMemoryKeyValueStore:
    """Dict-backed store with wall-clock TTL expiry.

    Atomic within one event loop: ``put`` never awaits between the existence
    check and the write. Not shared across processes or threads.
    """

    __slots__ = ("_data",)

    def __init__(self) -> None:
        self._data: dict[str, tuple[str, float]] = {}

    def _live(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if time.time() >= expires_at:
            del self._data[key]
            return None
        return value

    async def put(
        self,
        key: str,
        value: str,
        *,
        ttl_seconds: int,
        only_if_absent: bool = False,
    ) -> bool:
        if only_if_absent and self._live(key) is not None:
            return False
        self._data[key] = (value, time.time() + ttl_seconds)
        return True

    async def get(self, key: str) -> str | None:
        return self._live(key)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return sum(1 for key in list(self._data) if self._live(key) is not None)


class RedisKeyValueStore:
    """Redis-backed store; ``put(only_if_absent=True)`` maps to ``SET NX EX``."""

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, redis_url: str) -> RedisKeyValueStore:
        return cls(redis.from_url(redis_url, decode_responses=True))

    async def put(
        self,
        key: str,
        value: str,
        *,
        ttl_seconds: int,
        only_if_absent: bool = False,
    ) -> bool:
        try:
            was_set = await self._redis.set(key, value, ex=ttl_seconds, nx=only_if_absent)
        except RedisError as exc:
            logger.warning("Redis unavailable for put %s", key, exc_info=True)
            raise StoreUnavailableError(f"Store unavailable: {exc}") from exc
        # SET NX returns None when the key already exists
        return bool(was_set)

    async def get(self, key: str) -> str | None:
        try:
            return await self._redis.get(key)
        except RedisError as exc:
            logger.warning("Redis unavailable for get %s", key, exc_info=True)
            raise StoreUnavailableError(f"Store unavailable: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except RedisError as exc:
            logger.warning("Redis unavailable for delete %s", key, exc_info=True)
            raise StoreUnavailableError(f"Store unavailable: {exc}") from exc

    async def aclose(self) -> None:
        await self._redis.aclose()
