"""In-process quota store for local runs and tests."""

from __future__ import annotations

import asyncio
import datetime


class InMemoryQuotaRepository:
  """Same contract as the Postgres store; state lives for the life of the process."""

  def __init__(self) -> None:
    self._guard = asyncio.Lock()
    self._locks: dict[str, tuple[str, datetime.datetime]] = {}
    self._usage: dict[tuple[str, str, datetime.date], int] = {}

  async def try_acquire_lock(self, lock_key: str, owner: str, *, ttl_seconds: int, now: datetime.datetime) -> bool:
    async with self._guard:
      current = self._locks.get(lock_key)
      if current is not None and current[1] >= now:
        return False
      self._locks[lock_key] = (owner, now + datetime.timedelta(seconds=ttl_seconds))
      return True

  async def release_lock(self, lock_key: str, owner: str) -> bool:
    async with self._guard:
      current = self._locks.get(lock_key)
      if current is None or current[0] != owner:
        return False
      del self._locks[lock_key]
      return True

  async def get_used(self, user_id: str, metric_key: str, day_utc: datetime.date) -> int:
    async with self._guard:
      return self._usage.get((user_id, metric_key, day_utc), 0)

  async def try_consume(self, user_id: str, metric_key: str, day_utc: datetime.date, *, limit: int, now: datetime.datetime) -> int | None:
    async with self._guard:
      key = (user_id, metric_key, day_utc)
      used = self._usage.get(key, 0)
      if used >= limit:
        return None
      self._usage[key] = used + 1
      return used + 1

  def set_used(self, user_id: str, metric_key: str, day_utc: datetime.date, used: int) -> None:
    """Seed a counter directly (fixtures and local tooling)."""
    self._usage[(user_id, metric_key, day_utc)] = used

  def lock_holder(self, lock_key: str) -> str | None:
    current = self._locks.get(lock_key)
    return current[0] if current else None
