from __future__ import annotations

import datetime

import httpx
import pytest

from lessonai.ai.backoff import RetryBudget, parse_retry_after, retry_with_backoff
from lessonai.ai.errors import ThrottledError
from lessonai.config import RetrySettings


class Responder:
  """Replay a fixed sequence of responses and count sends."""

  def __init__(self, *responses: httpx.Response) -> None:
    self.responses = list(responses)
    self.sent = 0

  async def __call__(self) -> httpx.Response:
    self.sent += 1
    if len(self.responses) > 1:
      return self.responses.pop(0)
    return self.responses[0]


class SleepRecorder:
  def __init__(self) -> None:
    self.waits: list[float] = []

  async def __call__(self, seconds: float) -> None:
    self.waits.append(seconds)


@pytest.mark.anyio
async def test_throttled_three_times_then_success() -> None:
  """Ensure 429s are retried with geometric waits and the success is returned."""
  send = Responder(httpx.Response(429), httpx.Response(429), httpx.Response(429), httpx.Response(200, json={"ok": True}))
  sleep = SleepRecorder()

  response = await retry_with_backoff(send, policy=RetrySettings(), sleep=sleep, jitter=lambda: 0.0)

  assert response.status_code == 200
  assert send.sent == 4
  assert sleep.waits == pytest.approx([0.6, 1.08, 1.944])


@pytest.mark.anyio
async def test_retries_stop_at_attempt_ceiling() -> None:
  send = Responder(httpx.Response(503))
  sleep = SleepRecorder()

  with pytest.raises(ThrottledError) as exc_info:
    await retry_with_backoff(send, policy=RetrySettings(), sleep=sleep, jitter=lambda: 0.0)

  assert send.sent == 8
  assert exc_info.value.attempts == 8
  assert exc_info.value.status_code == 503
  assert len(sleep.waits) == 7
  assert max(sleep.waits) <= 10.0


@pytest.mark.anyio
async def test_retry_after_header_is_a_floor() -> None:
  send = Responder(httpx.Response(429, headers={"retry-after": "3"}), httpx.Response(200))
  sleep = SleepRecorder()

  await retry_with_backoff(send, policy=RetrySettings(), sleep=sleep, jitter=lambda: 0.0)

  assert sleep.waits == [3.0]


@pytest.mark.anyio
async def test_jitter_adds_at_most_a_quarter_second() -> None:
  send = Responder(httpx.Response(429), httpx.Response(200))
  sleep = SleepRecorder()

  await retry_with_backoff(send, policy=RetrySettings(), sleep=sleep, jitter=lambda: 1.0)

  assert sleep.waits == pytest.approx([0.85])


@pytest.mark.anyio
async def test_non_retryable_status_is_returned_untouched() -> None:
  send = Responder(httpx.Response(500, text="boom"))
  sleep = SleepRecorder()

  response = await retry_with_backoff(send, policy=RetrySettings(), sleep=sleep)

  assert response.status_code == 500
  assert send.sent == 1
  assert sleep.waits == []


@pytest.mark.anyio
async def test_budget_is_shared_across_calls() -> None:
  """A repair call only gets the attempts the primary call left over."""
  budget = RetryBudget(3)
  sleep = SleepRecorder()

  await retry_with_backoff(Responder(httpx.Response(429), httpx.Response(200)), policy=RetrySettings(), budget=budget, sleep=sleep, jitter=lambda: 0.0)
  assert budget.used == 2

  second = Responder(httpx.Response(429))
  with pytest.raises(ThrottledError):
    await retry_with_backoff(second, policy=RetrySettings(), budget=budget, sleep=sleep, jitter=lambda: 0.0)
  assert second.sent == 1
  assert budget.remaining == 0


@pytest.mark.anyio
async def test_spent_budget_raises_before_sending() -> None:
  budget = RetryBudget(1)
  budget.take()
  send = Responder(httpx.Response(200))

  with pytest.raises(ThrottledError):
    await retry_with_backoff(send, policy=RetrySettings(), budget=budget)
  assert send.sent == 0


@pytest.mark.parametrize(("value", "expected"), [(None, 0.0), ("", 0.0), ("2.5", 2.5), ("-4", 0.0), ("soon", 0.0)])
def test_parse_retry_after_seconds(value, expected) -> None:
  assert parse_retry_after(value) == expected


def test_parse_retry_after_http_date() -> None:
  now = datetime.datetime(2015, 10, 21, 7, 27, 50, tzinfo=datetime.UTC)
  assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT", now=now) == pytest.approx(10.0)


@pytest.mark.parametrize("value", ["inf", "-inf", "nan", "Infinity"])
def test_parse_retry_after_ignores_non_finite_values(value) -> None:
  assert parse_retry_after(value) == 0.0


@pytest.mark.anyio
async def test_infinite_retry_after_falls_back_to_backoff() -> None:
  send = Responder(httpx.Response(429, headers={"retry-after": "inf"}), httpx.Response(200))
  sleep = SleepRecorder()

  response = await retry_with_backoff(send, policy=RetrySettings(), sleep=sleep, jitter=lambda: 0.0)

  assert response.status_code == 200
  assert sleep.waits == pytest.approx([0.6])


@pytest.mark.anyio
async def test_retry_after_beyond_wait_cap_gives_up_without_sleeping() -> None:
  """A hint longer than the per-wait cap would outlive the generation lock."""
  send = Responder(httpx.Response(429, headers={"retry-after": "86400"}), httpx.Response(200))
  sleep = SleepRecorder()

  with pytest.raises(ThrottledError) as exc_info:
    await retry_with_backoff(send, policy=RetrySettings(), sleep=sleep, jitter=lambda: 0.0)

  assert send.sent == 1
  assert sleep.waits == []
  assert exc_info.value.status_code == 429
  assert exc_info.value.attempts == 1


@pytest.mark.anyio
async def test_retry_after_at_the_cap_is_honoured() -> None:
  send = Responder(httpx.Response(503, headers={"retry-after": "10"}), httpx.Response(200))
  sleep = SleepRecorder()

  await retry_with_backoff(send, policy=RetrySettings(), sleep=sleep, jitter=lambda: 0.0)

  assert sleep.waits == [10.0]
