"""Retry logic for throttled upstream HTTP calls."""

from __future__ import annotations

import asyncio
import datetime
import logging
import math
import random
from collections.abc import Awaitable, Callable
from email.utils import parsedate_to_datetime
from typing import Final

import httpx

from lessonai.ai.errors import ThrottledError
from lessonai.config import RetrySettings

RETRYABLE_STATUS_CODES: Final[frozenset[int]] = frozenset({429, 503})

logger = logging.getLogger(__name__)


class RetryBudget:
  """Attempt allowance shared by every upstream call made for one request."""

  def __init__(self, max_attempts: int) -> None:
    if max_attempts <= 0:
      raise ValueError("max_attempts must be positive.")
    self.max_attempts = max_attempts
    self.used = 0

  @property
  def remaining(self) -> int:
    return max(self.max_attempts - self.used, 0)

  def take(self) -> bool:
    """Consume one attempt; False when the allowance is spent."""
    if self.used >= self.max_attempts:
      return False
    self.used += 1
    return True


def parse_retry_after(value: str | None, *, now: datetime.datetime | None = None) -> float:
  """Return the wait in seconds requested by a ``retry-after`` header (0 when absent, unparseable or not finite)."""
  if not value:
    return 0.0

  stripped = value.strip()
  try:
    seconds = float(stripped)
  except ValueError:
    pass
  else:
    return max(seconds, 0.0) if math.isfinite(seconds) else 0.0

  # HTTP-date form.
  try:
    target = parsedate_to_datetime(stripped)
  except (TypeError, ValueError):
    return 0.0
  if target.tzinfo is None:
    target = target.replace(tzinfo=datetime.UTC)
  current = now or datetime.datetime.now(datetime.UTC)
  return max((target - current).total_seconds(), 0.0)


def next_delay(delay: float, policy: RetrySettings) -> float:
  """Grow the backoff delay geometrically up to the per-wait cap."""
  return min(delay * policy.multiplier, policy.max_delay_seconds)


async def retry_with_backoff(
  send: Callable[[], Awaitable[httpx.Response]],
  *,
  policy: RetrySettings,
  budget: RetryBudget | None = None,
  sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
  jitter: Callable[[], float] = random.random,
) -> httpx.Response:
  """
  Send a request, retrying on 429/503.

  Waits start at ``policy.initial_delay_seconds`` and grow by ``policy.multiplier``
  up to ``policy.max_delay_seconds``; a ``retry-after`` hint is used as a floor.
  Any other response, successful or not, is returned to the caller untouched.
  Raises ThrottledError once the attempt budget is spent, or straight away when
  the hint asks for more than ``policy.max_delay_seconds``.
  """
  budget = budget or RetryBudget(policy.max_attempts)
  delay = min(policy.initial_delay_seconds, policy.max_delay_seconds)

  while True:
    if not budget.take():
      raise ThrottledError(f"Upstream throttled; retry budget of {budget.max_attempts} attempts exhausted.", attempts=budget.used)

    response = await send()
    if response.status_code not in RETRYABLE_STATUS_CODES:
      return response

    if budget.remaining == 0:
      logger.error("Upstream throttled status=%s; giving up after %s attempts", response.status_code, budget.used)
      raise ThrottledError(f"Upstream throttled (HTTP {response.status_code}) after {budget.used} attempts.", status_code=response.status_code, attempts=budget.used, detail=response.text)

    retry_after = parse_retry_after(response.headers.get("retry-after"))
    if retry_after > policy.max_delay_seconds:
      logger.error("Upstream throttled status=%s; retry-after=%.0fs exceeds the %.0fs wait cap", response.status_code, retry_after, policy.max_delay_seconds)
      raise ThrottledError(f"Upstream throttled (HTTP {response.status_code}); asked to wait {retry_after:.0f}s.", status_code=response.status_code, attempts=budget.used, detail=response.text)

    wait = max(delay, retry_after) + jitter() * policy.max_jitter_seconds
    logger.warning("Upstream throttled status=%s attempt=%s/%s; retrying in %.2fs", response.status_code, budget.used, budget.max_attempts, wait)
    await sleep(wait)
    delay = next_delay(delay, policy)
