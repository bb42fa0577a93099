"""Parse, validate and (once) repair structured model output."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import msgspec

from lessonai.ai.backoff import RetryBudget
from lessonai.ai.errors import OutputValidationError, truncate_detail
from lessonai.ai.json_parser import parse_json_with_fallback
from lessonai.ai.prompting import REPAIR_TEMPERATURE, render_repair_prompt
from lessonai.ai.providers.base import GenerationClient
from lessonai.schema.validate_lesson import OutputDocument

logger = logging.getLogger(__name__)


class ValidationState(str, Enum):
  UNPARSED = "unparsed"
  PARSE_ATTEMPTED = "parse_attempted"
  VALID = "valid"
  REPAIR_REQUESTED = "repair_requested"
  FAILED = "failed"


@dataclass(frozen=True)
class RepairContext:
  """Per-request inputs for the repair call."""

  label: str
  rules: str = ""
  system: str | None = None
  budget: RetryBudget | None = None


@dataclass
class ValidationOutcome[T: msgspec.Struct]:
  """Result of validating one model response, including the repair pass when it ran."""

  state: ValidationState = ValidationState.UNPARSED
  model: T | None = None
  repaired: bool = False
  errors: list[str] = field(default_factory=list)
  model_calls: int = 0


def check_output[T: msgspec.Struct](raw_text: str, document: OutputDocument[T]) -> tuple[bool, list[str], T | None]:
  """Run lenient JSON parsing followed by structural validation."""
  try:
    payload: Any = parse_json_with_fallback(raw_text)
  except json.JSONDecodeError as exc:
    return False, [f"$: invalid JSON ({exc.msg} at line {exc.lineno} column {exc.colno})"], None
  return document.validate(payload)


class OutputRepairer:
  """Validate structured output and spend at most one extra model call repairing it."""

  def __init__(self, client: GenerationClient) -> None:
    self._client = client

  async def parse_and_validate[T: msgspec.Struct](self, raw_text: str, document: OutputDocument[T], *, context: RepairContext) -> ValidationOutcome[T]:
    """
    Return a VALID outcome for ``raw_text`` or its single repair.

    Raises OutputValidationError when the repaired output is still invalid.
    """
    outcome: ValidationOutcome[T] = ValidationOutcome()
    outcome.state = ValidationState.PARSE_ATTEMPTED
    ok, errors, model = check_output(raw_text, document)
    if ok:
      outcome.state = ValidationState.VALID
      outcome.model = model
      return outcome

    logger.warning("Output for %s failed validation (%s errors); requesting repair", context.label, len(errors))
    outcome.state = ValidationState.REPAIR_REQUESTED
    outcome.errors = errors
    prompt = render_repair_prompt(raw_text, errors, rules=context.rules)
    repaired_text = await self._client.generate(prompt, document.response_schema, REPAIR_TEMPERATURE, system=context.system, budget=context.budget)
    outcome.model_calls += 1
    outcome.repaired = True

    ok, repair_errors, model = check_output(repaired_text, document)
    if ok:
      logger.info("Repair succeeded for %s", context.label)
      outcome.state = ValidationState.VALID
      outcome.model = model
      return outcome

    outcome.state = ValidationState.FAILED
    outcome.errors = repair_errors
    logger.error("Output for %s still invalid after repair: %s", context.label, "; ".join(repair_errors[:5]))
    raise OutputValidationError(f"Model returned invalid {document.name} output after one repair attempt.", errors=repair_errors, detail=truncate_detail("; ".join(repair_errors)))
