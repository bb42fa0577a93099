"""Entry point for every lesson AI operation."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

import msgspec
import msgspec.structs

from lessonai.ai.backoff import RetryBudget
from lessonai.ai.errors import GenerationError, OutputValidationError, ThrottledError, UpstreamError
from lessonai.ai.pipeline.contracts import GenerationRequest, OverviewRequest, PartRequest, PlanRequest
from lessonai.ai.prompting import (
  GENERATE_REPAIR_RULES,
  GENERATE_TEMPERATURE,
  PART_TEMPERATURE,
  overview_temperature,
  plan_repair_rules,
  plan_temperature,
  render_generate_prompt,
  render_overview_prompt,
  render_part_prompt,
  render_plan_prompt,
)
from lessonai.ai.providers.base import GenerationClient
from lessonai.ai.repairer import OutputRepairer, RepairContext
from lessonai.config import RetrySettings
from lessonai.schema.lessons import GenerationResult, LessonPlan, PlanLesson
from lessonai.schema.validate_lesson import GENERATION_DOCUMENT, PLAN_DOCUMENT, OutputDocument
from lessonai.services.quotas import LockContentionError, QuotaExceededError, QuotaLockController, QuotaOutcome, QuotaStoreError

logger = logging.getLogger(__name__)


class OrchestrationError(RuntimeError):
  """A failed operation, already mapped to an HTTP status and machine-readable reason."""

  def __init__(self, message: str, *, status_code: int, reason: str, detail: str | None = None, extra: dict[str, Any] | None = None) -> None:
    super().__init__(message)
    self.message = message
    self.status_code = status_code
    self.reason = reason
    self.detail = detail
    self.extra = dict(extra or {})


def to_orchestration_error(exc: Exception) -> OrchestrationError:
  """Map a typed pipeline failure onto its HTTP representation."""
  if isinstance(exc, OrchestrationError):
    return exc
  if isinstance(exc, QuotaExceededError):
    snapshot = exc.snapshot
    return OrchestrationError(str(exc), status_code=429, reason=exc.reason, extra={"remaining": snapshot.remaining, "used": snapshot.used, "limit": snapshot.limit})
  if isinstance(exc, LockContentionError):
    return OrchestrationError(str(exc), status_code=409, reason=exc.reason)
  if isinstance(exc, QuotaStoreError):
    return OrchestrationError("Quota service is unavailable.", status_code=500, reason=exc.reason, detail=str(exc))
  if isinstance(exc, OutputValidationError):
    return OrchestrationError(exc.message, status_code=500, reason=exc.reason, detail=exc.detail, extra={"errors": exc.errors[:20]})
  if isinstance(exc, ThrottledError):
    return OrchestrationError(exc.message, status_code=500, reason=exc.reason, detail=exc.detail, extra={"attempts": exc.attempts})
  if isinstance(exc, UpstreamError):
    extra = {"status": exc.status_code} if exc.status_code is not None else {}
    return OrchestrationError(exc.message, status_code=500, reason=exc.reason, detail=exc.detail, extra=extra)
  if isinstance(exc, GenerationError):
    return OrchestrationError(exc.message, status_code=500, reason=exc.reason, detail=exc.detail)
  return OrchestrationError("Internal Server Error", status_code=500, reason="internal_error")


def _quota_payload(outcome: QuotaOutcome[Any]) -> dict[str, Any]:
  payload: dict[str, Any] = {"quota": outcome.quota.as_payload()}
  if outcome.warning:
    payload["quota_warning"] = outcome.warning
  return payload


class LessonOrchestrator:
  """Sequence quota, generation and validation for each operation and translate failures."""

  def __init__(self, *, client: GenerationClient, quotas: QuotaLockController, retry: RetrySettings, repairer: OutputRepairer | None = None) -> None:
    self._client = client
    self._quotas = quotas
    self._retry = retry
    self._repairer = repairer or OutputRepairer(client)

  def _budget(self) -> RetryBudget:
    # One allowance per request, shared by the primary and the repair call.
    return RetryBudget(self._retry.max_attempts)

  async def _run[T](self, operation: str, caller_id: str, call: Callable[[], Awaitable[T]]) -> T:
    try:
      return await call()
    except OrchestrationError:
      raise
    except (GenerationError, QuotaExceededError, LockContentionError, QuotaStoreError) as exc:
      mapped = to_orchestration_error(exc)
      log = logger.warning if mapped.status_code < 500 else logger.error
      log("%s failed caller=%s reason=%s: %s", operation, caller_id, mapped.reason, mapped.message)
      raise mapped from exc
    except Exception as exc:
      logger.exception("%s failed unexpectedly caller=%s", operation, caller_id)
      raise to_orchestration_error(exc) from exc

  async def _structured[S: msgspec.Struct](self, document: OutputDocument[S], prompt: str, temperature: float, *, system: str | None, rules: str) -> S:
    budget = self._budget()
    raw = await self._client.generate(prompt, document.response_schema, temperature, system=system, budget=budget)
    outcome = await self._repairer.parse_and_validate(raw, document, context=RepairContext(label=document.name, rules=rules, system=system, budget=budget))
    # parse_and_validate raises OutputValidationError unless the outcome is valid.
    assert outcome.model is not None
    return outcome.model

  async def generate_lesson(self, caller_id: str, request: GenerationRequest) -> dict[str, Any]:
    """Generate lesson sections with activities; charges one unit of daily quota."""
    system, prompt = render_generate_prompt(request)

    async def _generate() -> GenerationResult:
      return await self._structured(GENERATION_DOCUMENT, prompt, GENERATE_TEMPERATURE, system=system, rules=GENERATE_REPAIR_RULES)

    async def _call() -> dict[str, Any]:
      outcome = await self._quotas.with_quota_and_lock(caller_id, _generate)
      result = outcome.result
      logger.info("Lesson generated caller=%s parts=%s", caller_id, len(result.parts))
      return {**msgspec.to_builtins(result), **_quota_payload(outcome)}

    return await self._run("lesson-generate", caller_id, _call)

  async def generate_plan(self, caller_id: str, request: PlanRequest) -> dict[str, Any]:
    """Generate a 4A lesson plan; charges one unit of daily quota."""
    prompt = render_plan_prompt(request)

    async def _generate() -> LessonPlan:
      plan = await self._structured(PLAN_DOCUMENT, prompt, plan_temperature(request.tone), system=None, rules=plan_repair_rules())
      # Identifiers and metadata come from the request, never from the model.
      lesson = PlanLesson(title=request.title, duration_minutes=request.duration_minutes)
      return msgspec.structs.replace(plan, lesson=lesson)

    async def _call() -> dict[str, Any]:
      outcome = await self._quotas.with_quota_and_lock(caller_id, _generate)
      plan = outcome.result
      logger.info("Lesson plan generated caller=%s parts=%s activities=%s", caller_id, len(plan.parts), len(plan.activities))
      return {**msgspec.to_builtins(plan), **_quota_payload(outcome)}

    return await self._run("lesson-plan-4a", caller_id, _call)

  async def generate_overview(self, caller_id: str, request: OverviewRequest) -> dict[str, Any]:
    """Write a plain-text overview; not quota-charged."""

    async def _call() -> dict[str, Any]:
      overview = await self._client.generate(render_overview_prompt(request), None, overview_temperature(request.tone), budget=self._budget())
      return {"overview": overview}

    return await self._run("lesson-overview", caller_id, _call)

  async def generate_part(self, caller_id: str, request: PartRequest) -> dict[str, Any]:
    """Write student-facing content for one lesson part; not quota-charged."""

    async def _call() -> dict[str, Any]:
      content = await self._client.generate(render_part_prompt(request), None, PART_TEMPERATURE, budget=self._budget())
      return {"content": content}

    return await self._run("lesson-part", caller_id, _call)

  async def remaining(self, caller_id: str) -> dict[str, Any]:
    async def _call() -> dict[str, Any]:
      snapshot = await self._quotas.remaining(caller_id)
      return {"remaining": snapshot.remaining, "used": snapshot.used, "limit": snapshot.limit, "day_utc": snapshot.day_utc.isoformat()}

    return await self._run("lesson-ai-remaining", caller_id, _call)
