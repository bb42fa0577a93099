"""Unit tests for the daily quota and single-flight generation lock."""

from __future__ import annotations

import asyncio
import datetime
from unittest.mock import AsyncMock

import pytest

from lessonai.services.quotas import DEFAULT_METRIC_KEY, GLOBAL_LOCK_KEY, LockContentionError, QuotaExceededError, QuotaLockController, QuotaStoreError
from lessonai.storage.memory_quota_repo import InMemoryQuotaRepository

NOW = datetime.datetime(2026, 3, 14, 23, 59, 30, tzinfo=datetime.UTC)
TODAY = NOW.date()


def _controller(store: InMemoryQuotaRepository, *, daily_limit: int = 10, **kwargs) -> QuotaLockController:
  return QuotaLockController(store, daily_limit=daily_limit, clock=lambda: NOW, **kwargs)


@pytest.mark.anyio
async def test_success_consumes_exactly_one_unit_and_releases_lock() -> None:
  store = InMemoryQuotaRepository()
  controller = _controller(store)
  fn = AsyncMock(return_value="lesson")

  outcome = await controller.with_quota_and_lock("user-1", fn)

  fn.assert_awaited_once()
  assert outcome.result == "lesson"
  assert outcome.warning is None
  assert outcome.quota.as_payload() == {"metric_key": DEFAULT_METRIC_KEY, "day_utc": "2026-03-14", "limit": 10, "used": 1, "remaining": 9, "consumed": True}
  assert await store.get_used("user-1", DEFAULT_METRIC_KEY, TODAY) == 1
  assert store.lock_holder("ai_generation:user-1") is None


@pytest.mark.anyio
async def test_failed_generation_is_not_charged() -> None:
  store = InMemoryQuotaRepository()
  controller = _controller(store)
  fn = AsyncMock(side_effect=RuntimeError("model exploded"))

  with pytest.raises(RuntimeError, match="model exploded"):
    await controller.with_quota_and_lock("user-1", fn)

  assert await store.get_used("user-1", DEFAULT_METRIC_KEY, TODAY) == 0
  assert store.lock_holder("ai_generation:user-1") is None


@pytest.mark.anyio
async def test_exhausted_quota_never_calls_the_model() -> None:
  store = InMemoryQuotaRepository()
  store.set_used("user-1", DEFAULT_METRIC_KEY, TODAY, 10)
  controller = _controller(store)
  fn = AsyncMock()

  with pytest.raises(QuotaExceededError) as exc_info:
    await controller.with_quota_and_lock("user-1", fn)

  fn.assert_not_awaited()
  assert exc_info.value.snapshot.remaining == 0
  assert exc_info.value.snapshot.used == 10
  assert str(exc_info.value) == "Daily AI generation limit reached (10/day)."
  assert store.lock_holder("ai_generation:user-1") is None


@pytest.mark.anyio
async def test_last_unit_of_the_day_can_be_used() -> None:
  store = InMemoryQuotaRepository()
  store.set_used("user-1", DEFAULT_METRIC_KEY, TODAY, 9)
  controller = _controller(store)

  outcome = await controller.with_quota_and_lock("user-1", AsyncMock(return_value="ok"))

  assert outcome.quota.used == 10
  assert outcome.quota.remaining == 0
  with pytest.raises(QuotaExceededError):
    await controller.with_quota_and_lock("user-1", AsyncMock())


@pytest.mark.anyio
async def test_zero_limit_blocks_every_generation() -> None:
  controller = _controller(InMemoryQuotaRepository(), daily_limit=0)
  with pytest.raises(QuotaExceededError):
    await controller.with_quota_and_lock("user-1", AsyncMock())


@pytest.mark.anyio
async def test_concurrent_generation_for_same_caller_is_rejected() -> None:
  """A second request while the first holds the lock fails immediately without waiting."""
  store = InMemoryQuotaRepository()
  controller = _controller(store)
  started = asyncio.Event()
  finish = asyncio.Event()

  async def slow_generation() -> str:
    started.set()
    await finish.wait()
    return "first"

  first = asyncio.create_task(controller.with_quota_and_lock("user-1", slow_generation))
  await started.wait()

  second = AsyncMock()
  with pytest.raises(LockContentionError):
    await controller.with_quota_and_lock("user-1", second)
  second.assert_not_awaited()

  finish.set()
  outcome = await first
  assert outcome.result == "first"
  assert await store.get_used("user-1", DEFAULT_METRIC_KEY, TODAY) == 1
  assert store.lock_holder("ai_generation:user-1") is None


@pytest.mark.anyio
async def test_different_callers_do_not_contend() -> None:
  store = InMemoryQuotaRepository()
  controller = _controller(store)
  await store.try_acquire_lock("ai_generation:user-2", "someone", ttl_seconds=60, now=NOW)

  outcome = await controller.with_quota_and_lock("user-1", AsyncMock(return_value="ok"))
  assert outcome.quota.consumed


@pytest.mark.anyio
async def test_global_scope_serializes_all_callers() -> None:
  store = InMemoryQuotaRepository()
  controller = _controller(store, lock_scope="global")
  assert controller.lock_key("anyone") == GLOBAL_LOCK_KEY
  await store.try_acquire_lock(GLOBAL_LOCK_KEY, "someone", ttl_seconds=60, now=NOW)

  with pytest.raises(LockContentionError):
    await controller.with_quota_and_lock("user-1", AsyncMock())
  assert store.lock_holder(GLOBAL_LOCK_KEY) == "someone"


@pytest.mark.anyio
async def test_expired_lock_is_taken_over() -> None:
  store = InMemoryQuotaRepository()
  await store.try_acquire_lock("ai_generation:user-1", "crashed-worker", ttl_seconds=60, now=NOW - datetime.timedelta(seconds=120))
  controller = _controller(store)

  outcome = await controller.with_quota_and_lock("user-1", AsyncMock(return_value="ok"))
  assert outcome.result == "ok"


@pytest.mark.anyio
async def test_release_only_removes_own_lock() -> None:
  store = InMemoryQuotaRepository()
  await store.try_acquire_lock("ai_generation:user-1", "owner-a", ttl_seconds=60, now=NOW)

  assert not await store.release_lock("ai_generation:user-1", "owner-b")
  assert store.lock_holder("ai_generation:user-1") == "owner-a"
  assert await store.release_lock("ai_generation:user-1", "owner-a")


@pytest.mark.anyio
async def test_lock_is_released_once_with_the_acquiring_owner() -> None:
  store = InMemoryQuotaRepository()
  store.release_lock = AsyncMock(wraps=store.release_lock)
  controller = _controller(store, owner_factory=lambda: "owner-xyz")

  await controller.with_quota_and_lock("user-1", AsyncMock(return_value="ok"))

  store.release_lock.assert_awaited_once_with("ai_generation:user-1", "owner-xyz")


@pytest.mark.anyio
async def test_consume_refused_returns_result_with_warning() -> None:
  store = InMemoryQuotaRepository()
  store.try_consume = AsyncMock(return_value=None)
  controller = _controller(store)

  outcome = await controller.with_quota_and_lock("user-1", AsyncMock(return_value="ok"))

  assert outcome.result == "ok"
  assert not outcome.quota.consumed
  assert outcome.quota.remaining == 0
  assert outcome.warning


@pytest.mark.anyio
async def test_store_failure_on_consume_returns_result_with_warning() -> None:
  store = InMemoryQuotaRepository()
  store.try_consume = AsyncMock(side_effect=QuotaStoreError("connection reset"))
  controller = _controller(store)

  outcome = await controller.with_quota_and_lock("user-1", AsyncMock(return_value="ok"))

  assert outcome.result == "ok"
  assert not outcome.quota.consumed
  assert "connection reset" in (outcome.warning or "")
  assert store.lock_holder("ai_generation:user-1") is None


@pytest.mark.anyio
async def test_release_failure_does_not_mask_the_result() -> None:
  store = InMemoryQuotaRepository()
  store.release_lock = AsyncMock(side_effect=QuotaStoreError("gone"))
  controller = _controller(store)

  outcome = await controller.with_quota_and_lock("user-1", AsyncMock(return_value="ok"))
  assert outcome.result == "ok"


@pytest.mark.anyio
async def test_remaining_reports_usage_without_locking() -> None:
  store = InMemoryQuotaRepository()
  store.set_used("user-1", DEFAULT_METRIC_KEY, TODAY, 4)
  await store.try_acquire_lock("ai_generation:user-1", "busy", ttl_seconds=60, now=NOW)
  controller = _controller(store)

  snapshot = await controller.remaining("user-1")

  assert (snapshot.used, snapshot.remaining, snapshot.limit, snapshot.day_utc) == (4, 6, 10, TODAY)


@pytest.mark.anyio
async def test_usage_buckets_by_utc_day() -> None:
  store = InMemoryQuotaRepository()
  store.set_used("user-1", DEFAULT_METRIC_KEY, TODAY, 10)
  tomorrow = NOW + datetime.timedelta(minutes=1)
  controller = QuotaLockController(store, daily_limit=10, clock=lambda: tomorrow)

  outcome = await controller.with_quota_and_lock("user-1", AsyncMock(return_value="ok"))
  assert outcome.quota.day_utc == TODAY + datetime.timedelta(days=1)
  assert outcome.quota.used == 1


@pytest.mark.anyio
async def test_naive_clock_is_rejected() -> None:
  controller = QuotaLockController(InMemoryQuotaRepository(), daily_limit=10, clock=lambda: datetime.datetime(2026, 3, 14, 12, 0))
  with pytest.raises(ValueError, match="timezone-aware"):
    await controller.remaining("user-1")
