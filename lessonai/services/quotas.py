"""Daily generation quota and single-flight lock around model calls."""

from __future__ import annotations

import datetime
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any, Final, Protocol

DEFAULT_METRIC_KEY: Final[str] = "ai_generation"
GLOBAL_LOCK_KEY: Final[str] = "ai_generation:global"

logger = logging.getLogger(__name__)


class QuotaStoreError(RuntimeError):
  """The quota/lock store could not complete an operation."""

  reason = "quota_store_error"


@dataclass(frozen=True)
class QuotaSnapshot:
  """Usage of one metric for one caller on one UTC day."""

  metric_key: str
  day_utc: datetime.date
  limit: int
  used: int
  remaining: int
  consumed: bool = False

  def as_payload(self) -> dict[str, Any]:
    return {"metric_key": self.metric_key, "day_utc": self.day_utc.isoformat(), "limit": self.limit, "used": self.used, "remaining": self.remaining, "consumed": self.consumed}


class QuotaExceededError(RuntimeError):
  """Raised when the caller has no generations left today."""

  reason = "quota_exceeded"

  def __init__(self, snapshot: QuotaSnapshot) -> None:
    super().__init__(f"Daily AI generation limit reached ({snapshot.limit}/day).")
    self.snapshot = snapshot


class LockContentionError(RuntimeError):
  """Raised when another generation already holds the lock."""

  reason = "generation_in_progress"

  def __init__(self, lock_key: str) -> None:
    super().__init__("Another AI generation is already in progress.")
    self.lock_key = lock_key


@dataclass(frozen=True)
class QuotaOutcome[T]:
  """Result of a quota-guarded call plus the quota state after it."""

  result: T
  quota: QuotaSnapshot
  warning: str | None = None


class QuotaStore(Protocol):
  """Atomic quota counters and expiring locks."""

  async def try_acquire_lock(self, lock_key: str, owner: str, *, ttl_seconds: int, now: datetime.datetime) -> bool:
    """Take the lock when it is free or expired; False when someone else holds it."""
    ...

  async def release_lock(self, lock_key: str, owner: str) -> bool:
    """Drop the lock only if ``owner`` still holds it."""
    ...

  async def get_used(self, user_id: str, metric_key: str, day_utc: datetime.date) -> int:
    """Return the units consumed so far (0 when no row exists)."""
    ...

  async def try_consume(self, user_id: str, metric_key: str, day_utc: datetime.date, *, limit: int, now: datetime.datetime) -> int | None:
    """Increment usage when ``used < limit`` and return the new count; None when refused."""
    ...


def _utc_now() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


def _new_owner() -> str:
  return uuid.uuid4().hex


class QuotaLockController:
  """Run a generation under the caller's lock and charge quota only when it succeeds.

  Order of operations for each call:
    1. take the lock (no waiting; contention is an immediate error),
    2. check remaining quota without consuming it,
    3. run the generation,
    4. consume one unit atomically,
    5. release the lock, always, exactly once.

  The UTC day bucket is computed once per call so a request that straddles
  midnight checks and consumes the same day.
  """

  def __init__(
    self,
    store: QuotaStore,
    *,
    daily_limit: int,
    lock_ttl_seconds: int = 60,
    lock_scope: str = "caller",
    clock: Callable[[], datetime.datetime] = _utc_now,
    owner_factory: Callable[[], str] = _new_owner,
  ) -> None:
    if daily_limit < 0:
      raise ValueError("daily_limit must be >= 0")
    self._store = store
    self._daily_limit = daily_limit
    self._lock_ttl_seconds = lock_ttl_seconds
    self._lock_scope = lock_scope
    self._clock = clock
    self._owner_factory = owner_factory

  @property
  def daily_limit(self) -> int:
    return self._daily_limit

  def lock_key(self, caller_id: str) -> str:
    if self._lock_scope == "global":
      return GLOBAL_LOCK_KEY
    return f"ai_generation:{caller_id}"

  def _now(self) -> datetime.datetime:
    now = self._clock()
    if now.tzinfo is None:
      raise ValueError("clock must return timezone-aware (UTC) datetimes.")
    return now.astimezone(datetime.UTC)

  async def _snapshot(self, caller_id: str, metric_key: str, day_utc: datetime.date, limit: int) -> QuotaSnapshot:
    used = await self._store.get_used(caller_id, metric_key, day_utc)
    return QuotaSnapshot(metric_key=metric_key, day_utc=day_utc, limit=limit, used=used, remaining=max(limit - used, 0))

  async def remaining(self, caller_id: str, *, limit: int | None = None, metric_key: str = DEFAULT_METRIC_KEY) -> QuotaSnapshot:
    """Return today's usage without taking the lock."""
    effective_limit = self._daily_limit if limit is None else limit
    return await self._snapshot(caller_id, metric_key, self._now().date(), effective_limit)

  async def with_quota_and_lock[T](self, caller_id: str, fn: Callable[[], Awaitable[T]], *, limit: int | None = None, metric_key: str = DEFAULT_METRIC_KEY) -> QuotaOutcome[T]:
    """
    Run ``fn`` under the generation lock, charging one unit of quota on success.

    Raises:
        LockContentionError: another generation holds the lock.
        QuotaExceededError: no quota left; ``fn`` is never called.
        QuotaStoreError: the lock or quota check could not be performed.
    """
    effective_limit = self._daily_limit if limit is None else limit
    now = self._now()
    day_utc = now.date()
    lock_key = self.lock_key(caller_id)
    owner = self._owner_factory()

    if not await self._store.try_acquire_lock(lock_key, owner, ttl_seconds=self._lock_ttl_seconds, now=now):
      logger.info("Lock %s busy; rejecting caller=%s", lock_key, caller_id)
      raise LockContentionError(lock_key)

    logger.info("Lock %s acquired by caller=%s", lock_key, caller_id)
    try:
      snapshot = await self._snapshot(caller_id, metric_key, day_utc, effective_limit)
      if snapshot.remaining <= 0:
        logger.info("Quota exhausted caller=%s metric=%s used=%s limit=%s", caller_id, metric_key, snapshot.used, snapshot.limit)
        raise QuotaExceededError(snapshot)

      result = await fn()
      return await self._consume(caller_id, metric_key, day_utc, effective_limit, snapshot, result)
    finally:
      await self._release(lock_key, owner)

  async def _consume[T](self, caller_id: str, metric_key: str, day_utc: datetime.date, limit: int, snapshot: QuotaSnapshot, result: T) -> QuotaOutcome[T]:
    try:
      used = await self._store.try_consume(caller_id, metric_key, day_utc, limit=limit, now=self._now())
    except QuotaStoreError as exc:
      logger.error("Quota consume failed caller=%s metric=%s: %s", caller_id, metric_key, exc)
      return QuotaOutcome(result=result, quota=snapshot, warning=f"Quota could not be recorded: {exc}")

    if used is None:
      logger.warning("Quota consume refused caller=%s metric=%s; limit reached concurrently", caller_id, metric_key)
      current = replace(snapshot, used=max(snapshot.used, limit), remaining=0)
      return QuotaOutcome(result=result, quota=current, warning="Daily limit was reached while this generation was running; it was not counted.")

    logger.info("Quota consumed caller=%s metric=%s used=%s/%s", caller_id, metric_key, used, limit)
    return QuotaOutcome(result=result, quota=replace(snapshot, used=used, remaining=max(limit - used, 0), consumed=True))

  async def _release(self, lock_key: str, owner: str) -> None:
    try:
      released = await self._store.release_lock(lock_key, owner)
    except QuotaStoreError:
      logger.exception("Failed to release lock %s; it will expire after its TTL", lock_key)
      return
    if not released:
      logger.warning("Lock %s was no longer held by this request at release", lock_key)
