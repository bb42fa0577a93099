"""Postgres-backed quota counters and generation locks using SQLAlchemy."""

from __future__ import annotations

import datetime
import logging

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lessonai.core.database import get_session_factory
from lessonai.schema.quotas import GenerationLock, GenerationQuota
from lessonai.services.quotas import QuotaStoreError

logger = logging.getLogger(__name__)

_STORE_ERRORS = (SQLAlchemyError, OSError)


class PostgresQuotaRepository:
  """Every mutation is one statement, so concurrent requests serialize inside Postgres."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory or get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def try_acquire_lock(self, lock_key: str, owner: str, *, ttl_seconds: int, now: datetime.datetime) -> bool:
    held_until = now + datetime.timedelta(seconds=ttl_seconds)
    stmt = pg_insert(GenerationLock).values(lock_key=lock_key, owner=owner, held_until=held_until)
    # Only an expired holder may be replaced.
    stmt = stmt.on_conflict_do_update(index_elements=[GenerationLock.lock_key], set_={"owner": stmt.excluded.owner, "held_until": stmt.excluded.held_until}, where=GenerationLock.held_until < now).returning(GenerationLock.owner)
    try:
      async with self._session_factory() as session, session.begin():
        result = await session.execute(stmt)
        return result.scalar_one_or_none() == owner
    except _STORE_ERRORS as exc:
      raise QuotaStoreError(f"Failed to acquire lock {lock_key}: {type(exc).__name__}") from exc

  async def release_lock(self, lock_key: str, owner: str) -> bool:
    stmt = delete(GenerationLock).where(GenerationLock.lock_key == lock_key, GenerationLock.owner == owner)
    try:
      async with self._session_factory() as session, session.begin():
        result = await session.execute(stmt)
        return (result.rowcount or 0) > 0
    except _STORE_ERRORS as exc:
      raise QuotaStoreError(f"Failed to release lock {lock_key}: {type(exc).__name__}") from exc

  async def get_used(self, user_id: str, metric_key: str, day_utc: datetime.date) -> int:
    stmt = select(GenerationQuota.used).where(GenerationQuota.user_id == user_id, GenerationQuota.metric_key == metric_key, GenerationQuota.day_utc == day_utc)
    try:
      async with self._session_factory() as session:
        result = await session.execute(stmt)
        used = result.scalar_one_or_none()
    except _STORE_ERRORS as exc:
      raise QuotaStoreError(f"Failed to read quota for {metric_key}: {type(exc).__name__}") from exc
    return int(used or 0)

  async def try_consume(self, user_id: str, metric_key: str, day_utc: datetime.date, *, limit: int, now: datetime.datetime) -> int | None:
    if limit <= 0:
      return None

    stmt = pg_insert(GenerationQuota).values(user_id=user_id, metric_key=metric_key, day_utc=day_utc, used=1, updated_at=now)
    # The WHERE clause makes check-and-increment a single atomic step.
    stmt = stmt.on_conflict_do_update(
      index_elements=[GenerationQuota.user_id, GenerationQuota.metric_key, GenerationQuota.day_utc],
      set_={"used": GenerationQuota.used + 1, "updated_at": now},
      where=GenerationQuota.used < limit,
    ).returning(GenerationQuota.used)
    try:
      async with self._session_factory() as session, session.begin():
        result = await session.execute(stmt)
        used = result.scalar_one_or_none()
    except _STORE_ERRORS as exc:
      raise QuotaStoreError(f"Failed to consume quota for {metric_key}: {type(exc).__name__}") from exc

    if used is None:
      logger.info("Quota increment refused user=%s metric=%s limit=%s", user_id, metric_key, limit)
      return None
    return int(used)
