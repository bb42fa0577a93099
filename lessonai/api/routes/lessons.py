from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from lessonai.ai.orchestrator import LessonOrchestrator
from lessonai.api.deps import get_orchestrator
from lessonai.api.models import LessonGenerateBody, LessonOverviewBody, LessonPartBody, LessonPlanBody
from lessonai.core.security import CurrentCaller

router = APIRouter()

Orchestrator = Annotated[LessonOrchestrator, Depends(get_orchestrator)]


@router.post("/lesson-generate")
async def lesson_generate(body: LessonGenerateBody, caller: CurrentCaller, orchestrator: Orchestrator) -> dict[str, Any]:
  """Generate lesson sections and activities (quota-charged)."""
  return await orchestrator.generate_lesson(caller.user_id, body.to_request())


@router.post("/lesson-plan-4a")
async def lesson_plan_4a(body: LessonPlanBody, caller: CurrentCaller, orchestrator: Orchestrator) -> dict[str, Any]:
  """Generate a 4A lesson plan (quota-charged)."""
  return await orchestrator.generate_plan(caller.user_id, body.to_request())


@router.post("/lesson-overview")
async def lesson_overview(body: LessonOverviewBody, caller: CurrentCaller, orchestrator: Orchestrator) -> dict[str, Any]:
  return await orchestrator.generate_overview(caller.user_id, body.to_request())


@router.post("/lesson-part")
async def lesson_part(body: LessonPartBody, caller: CurrentCaller, orchestrator: Orchestrator) -> dict[str, Any]:
  return await orchestrator.generate_part(caller.user_id, body.to_request())


@router.post("/lesson-ai-remaining")
async def lesson_ai_remaining(caller: CurrentCaller, orchestrator: Orchestrator) -> dict[str, Any]:
  """Today's generation allowance for the caller."""
  return await orchestrator.remaining(caller.user_id)
