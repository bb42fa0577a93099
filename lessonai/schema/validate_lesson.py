"""Validation of model output against the lesson Structs and their cross-field rules."""

from __future__ import annotations

import math
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import msgspec

from .lessons import ACTIVITY_BEARING_PLAN_PARTS, GenerationResult, LessonPlan
from .schema_export import struct_to_response_schema

_MSGSPEC_PATH_RE = re.compile(r"^(?P<message>.*) - at `(?P<path>[^`]+)`$", re.DOTALL)


def format_msgspec_error(exc: msgspec.ValidationError) -> str:
  """Rewrite msgspec's ``message - at `$.path``` form as ``path: message``."""
  text = str(exc)
  match = _MSGSPEC_PATH_RE.match(text)
  if match is None:
    return f"$: {text}"
  return f"{match.group('path')}: {match.group('message')}"


def _blank(value: str) -> bool:
  return not value.strip()


def generation_result_errors(result: GenerationResult) -> list[str]:
  """Cross-field rules for generated lesson parts."""
  errors: list[str] = []
  for part_index, part in enumerate(result.parts):
    path = f"$.parts[{part_index}]"
    if _blank(part.id):
      errors.append(f"{path}.id: must not be blank")
    if _blank(part.title):
      errors.append(f"{path}.title: must not be blank")
    for activity_index, activity in enumerate(part.activities):
      activity_path = f"{path}.activities[{activity_index}]"
      if _blank(activity.id):
        errors.append(f"{activity_path}.id: must not be blank")
      if _blank(activity.title):
        errors.append(f"{activity_path}.title: must not be blank")
      if not math.isfinite(activity.estimated_minutes):
        errors.append(f"{activity_path}.estimatedMinutes: must be a finite number")
  return errors


def lesson_plan_errors(plan: LessonPlan) -> list[str]:
  """Cross-field rules for a 4A plan: activities only hang off the four 4A parts."""
  errors: list[str] = []
  part_keys: set[str] = set()
  for index, part in enumerate(plan.parts):
    if _blank(part.client_key):
      errors.append(f"$.parts[{index}].client_key: must not be blank")
    if _blank(part.title):
      errors.append(f"$.parts[{index}].title: must not be blank")
    if part.client_key in part_keys:
      errors.append(f"$.parts[{index}].client_key: duplicate key {part.client_key!r}")
    part_keys.add(part.client_key)

  for index, activity in enumerate(plan.activities):
    path = f"$.activities[{index}]"
    if _blank(activity.title):
      errors.append(f"{path}.title: must not be blank")
    if not math.isfinite(activity.estimated_minutes):
      errors.append(f"{path}.estimated_minutes: must be a finite number")
    key = activity.part_client_key
    if key not in ACTIVITY_BEARING_PLAN_PARTS:
      errors.append(f"{path}.part_client_key: {key!r} does not accept activities")
    elif key not in part_keys:
      errors.append(f"{path}.part_client_key: no part with key {key!r}")
  return errors


@dataclass(frozen=True)
class OutputDocument[T: msgspec.Struct]:
  """A structured output contract: target Struct, response schema and invariants."""

  name: str
  struct_type: type[T]
  invariants: Callable[[T], list[str]] = field(default=lambda _model: [])

  @property
  def response_schema(self) -> dict[str, Any]:
    return struct_to_response_schema(self.struct_type)

  def validate(self, payload: Any) -> tuple[bool, list[str], T | None]:
    """
    Validate a decoded payload.

    Returns:
        Tuple where:
        - ok: whether the payload satisfied the Struct and every invariant.
        - errors: ``"path: message"`` strings.
        - model: the converted Struct when validation passes, otherwise None.
    """
    if not isinstance(payload, dict):
      return False, [f"$: expected a JSON object, got {type(payload).__name__}"], None

    try:
      model = msgspec.convert(payload, type=self.struct_type, strict=True)
    except msgspec.ValidationError as exc:
      return False, [format_msgspec_error(exc)], None

    errors = self.invariants(model)
    if errors:
      return False, errors, None
    return True, [], model


GENERATION_DOCUMENT: OutputDocument[GenerationResult] = OutputDocument(name="lesson_generation", struct_type=GenerationResult, invariants=generation_result_errors)
PLAN_DOCUMENT: OutputDocument[LessonPlan] = OutputDocument(name="lesson_plan_4a", struct_type=LessonPlan, invariants=lesson_plan_errors)
