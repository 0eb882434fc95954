"""Webhook idempotency guard -- claim, execute, mark done.

Security contract:
- The claim is one atomic create-if-absent write (never read-then-write)
- A denied claim returns ``Duplicate``; the caller answers 2xx so the
  provider stops retrying
- The claim is written before the work starts and is *not* cleared when
  the work fails: TTL expiry is the only recovery path (or ``release``)
- ``<key>:done`` is best-effort bookkeeping, never a correctness gate
- Store failure on the claim raises StoreUnavailableError (nothing recorded,
  so a provider retry is safe)
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

from webhook_admission.exceptions import StoreUnavailableError
from webhook_admission.store import KeyValueStore

__all__ = [
    "ClaimStatus",
    "Claimed",
    "DONE_SUFFIX",
    "Duplicate",
    "Outcome",
    "claim_status",
    "done_key",
    "idempotency_key",
    "release",
    "run_once",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

DONE_SUFFIX = ":done"
_CLAIM_VALUE = "1"


@dataclass(frozen=True)
class Claimed(Generic[T]):
    """This invocation held the claim and the work completed."""

    value: T


@dataclass(frozen=True)
class Duplicate:
    """Another invocation already claimed the key."""


Outcome = Union[Claimed[T], Duplicate]


class ClaimStatus(str, Enum):
    UNCLAIMED = "unclaimed"
    PENDING = "pending"  # claimed; in flight or failed
    DONE = "done"


def idempotency_key(provider: str, event_id: str) -> str:
    """Key pattern: ``{provider}:{event_id}``."""
    if not event_id:
        raise ValueError("event_id must be non-empty")
    return f"{provider}:{event_id}"


def done_key(key: str) -> str:
    return f"{key}{DONE_SUFFIX}"


async def run_once(
    store: KeyValueStore,
    key: str,
    ttl_seconds: int,
    work: Callable[[], Awaitable[T]],
) -> Outcome[T]:
    """Execute *work* at most once per *key* across invocations sharing *store*.

    Args:
        store: Shared store with atomic create-if-absent
        key: Idempotency key (e.g. ``twilio:SM123``)
        ttl_seconds: Lifetime of the claim and done records
        work: Zero-argument coroutine function with the side effects

    Returns:
        ``Claimed(value)`` if this call ran the work, ``Duplicate()`` otherwise

    Raises:
        ValueError: Empty key or non-positive TTL
        StoreUnavailableError: Claim could not be written
        Exception: Whatever *work* raised, unchanged
    """
    if not key:
        raise ValueError("Idempotency key must be non-empty")
    if ttl_seconds <= 0:
        raise ValueError(f"ttl_seconds must be positive; got {ttl_seconds}")

    claimed = await store.put(key, _CLAIM_VALUE, ttl_seconds=ttl_seconds, only_if_absent=True)
    if not claimed:
        logger.info("Duplicate webhook delivery: %s", key)
        return Duplicate()

    value = await work()

    try:
        await store.put(done_key(key), _CLAIM_VALUE, ttl_seconds=ttl_seconds)
    except StoreUnavailableError:
        logger.warning("Failed to write done marker for %s", key, exc_info=True)

    return Claimed(value)


async def claim_status(store: KeyValueStore, key: str) -> ClaimStatus:
    """Inspect a key: unclaimed, pending (in flight or failed) or done."""
    if await store.get(done_key(key)) is not None:
        return ClaimStatus.DONE
    if await store.get(key) is not None:
        return ClaimStatus.PENDING
    return ClaimStatus.UNCLAIMED


async def release(store: KeyValueStore, key: str) -> None:
    """Drop the claim and done records so the key can be claimed again.

    Operator tool for retrying a failed attempt before the TTL runs out.
    """
    await store.delete(key)
    await store.delete(done_key(key))
    logger.info("Idempotency claim released: %s", key)
