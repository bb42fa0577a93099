"""Prompt rendering for each generation operation."""

from __future__ import annotations

import re
from functools import lru_cache
from pathlib import Path

from lessonai.ai.pipeline.contracts import DEFAULT_INCLUDE, GenerationRequest, OverviewRequest, PartRequest, PlanRequest, Tone
from lessonai.schema.lessons import ACTIVITY_BEARING_PLAN_PARTS, PLAN_PART_LAYOUT

DEFAULT_TEACHER_PROMPT = "Generate engaging content and classroom-ready activities aligned to the lesson details."

# Raw model output echoed back in a repair prompt is clamped to this many characters.
REPAIR_RAW_LIMIT = 6000

_PLAN_DETAIL_RULES: dict[str, str] = {
  "simple": "- Short bodies.\n- Fewer guide questions.\n- Brief instructions.",
  "standard": "- Balanced detail.\n- Clear instructions with examples.",
  "detailed": "- More teacher prompts.\n- More guide questions.\n- Explicit success criteria.",
}

_OVERVIEW_LENGTHS: dict[str, str] = {"simple": "80-120 words", "standard": "120-180 words", "detailed": "up to 250 words"}

_OVERVIEW_TEMPERATURES: dict[str, float] = {"simple": 0.5, "standard": 0.7, "detailed": 0.8}
_PLAN_TEMPERATURES: dict[str, float] = {"simple": 0.5, "standard": 0.6, "detailed": 0.7}

GENERATE_TEMPERATURE = 0.6
PART_TEMPERATURE = 0.7
REPAIR_TEMPERATURE = 0.2

# Matched in order against the lower-cased part type.
_PART_GUIDANCE: tuple[tuple[str, str], ...] = (
  ("warm", "Write a short warm-up (3 to 7 minutes) with clear directions and 2 to 4 engaging questions or tasks."),
  ("direct instruction", "Explain the concept in simple language with short steps and relevant examples."),
  ("guided", "Write guided practice: step-by-step tasks, guide questions and helpful hints."),
  ("independent", "Write independent practice: clear directions, tasks and the output you are expected to produce on your own."),
  ("assessment", "Write a short exit ticket or quiz. Do not include the answers."),
  ("homework", "Write homework directions with clear tasks and how to submit them."),
  ("materials", "List the materials you need. Keep it simple and practical."),
  ("notes", "Write study notes: key reminders, study tips, important points and common mistakes to avoid."),
  ("discussion", "Write discussion prompts and simple participation rules (listen, respond respectfully, back answers with evidence)."),
  ("overview", "Write a friendly overview of what you will learn, what you will do and what you should understand by the end."),
)
_DEFAULT_PART_GUIDANCE = "Write student-facing content suited to Senior High School students in the Philippines."


_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


def _replace_placeholders(template: str, values: dict[str, str]) -> str:
  # Single pass: substituted values are never scanned for further placeholders.
  return _PLACEHOLDER.sub(lambda match: values.get(match.group(1), match.group(0)), template)


def _bullets(items: tuple[str, ...] | list[str], empty: str = "(none)") -> str:
  cleaned = [item.strip() for item in items if item.strip()]
  if not cleaned:
    return empty
  return "\n".join(f"- {item}" for item in cleaned)


def _format_minutes(value: float) -> str:
  return str(int(value)) if float(value).is_integer() else f"{value:g}"


def plan_temperature(tone: Tone) -> float:
  return _PLAN_TEMPERATURES[tone]


def overview_temperature(tone: Tone) -> float:
  return _OVERVIEW_TEMPERATURES[tone]


def part_guidance(part_type: str) -> str:
  """Pick the writing instruction for a lesson part by keyword."""
  lowered = part_type.lower()
  for keyword, guidance in _PART_GUIDANCE:
    if keyword in lowered:
      return guidance
  return _DEFAULT_PART_GUIDANCE


def render_generate_prompt(request: GenerationRequest) -> tuple[str, str]:
  """Return the (system, user) prompts for lesson section generation."""
  lesson = request.lesson
  include = ", ".join(request.include or DEFAULT_INCLUDE)
  user = _replace_placeholders(
    _load_prompt("lesson_generate.md"),
    {
      "TITLE": lesson.title,
      "SUBJECT": lesson.subject,
      "GRADE": lesson.grade,
      "TRACK_STRAND": f"{lesson.track} {lesson.strand}".strip() or "-",
      "DURATION": _format_minutes(lesson.duration_minutes),
      "TONE": request.tone,
      "DIFFICULTY": request.difficulty,
      "INCLUDE": include,
      "PROMPT": request.prompt.strip() or DEFAULT_TEACHER_PROMPT,
    },
  )
  return _load_prompt("lesson_generate_system.md"), user


def render_plan_layout() -> str:
  return "\n".join(f'{index}. client_key="{key}" part_type="{part_type}" title="{title}"' for index, (key, part_type, title) in enumerate(PLAN_PART_LAYOUT, start=1))


def render_plan_prompt(request: PlanRequest) -> str:
  return _replace_placeholders(
    _load_prompt("lesson_plan_4a.md"),
    {
      "DURATION": _format_minutes(request.duration_minutes),
      "PART_LAYOUT": render_plan_layout(),
      "ACTIVITY_PARTS": ", ".join(key for key, _, _ in PLAN_PART_LAYOUT if key in ACTIVITY_BEARING_PLAN_PARTS),
      "TONE": request.tone,
      "DETAIL_RULES": _PLAN_DETAIL_RULES[request.tone],
      "TITLE": request.title,
      "SUBJECT": request.subject,
      "GRADE": request.grade_level,
      "TRACK": request.track,
      "STRAND": request.strand,
    },
  )


def render_overview_prompt(request: OverviewRequest) -> str:
  return _replace_placeholders(_load_prompt("lesson_overview.md"), {"TITLE": request.title, "OBJECTIVES": _bullets(request.objectives), "TONE": request.tone, "LENGTH": _OVERVIEW_LENGTHS[request.tone]})


def render_part_prompt(request: PartRequest) -> str:
  section = request.section.strip()
  return _replace_placeholders(
    _load_prompt("lesson_part.md"),
    {
      "LESSON_TITLE": request.lesson_title,
      "SUBJECT": request.subject,
      "GRADE": request.grade_level,
      "SECTION_LINE": f"- Section: {section}\n" if section else "",
      "OBJECTIVES": _bullets(request.objectives),
      "PART_TYPE": request.part_type,
      "PART_TITLE": request.part_title or request.part_type,
      "GUIDANCE": part_guidance(request.part_type),
    },
  )


def render_repair_prompt(raw_output: str, errors: list[str], *, rules: str) -> str:
  """Render the single repair request for output that failed validation."""
  clipped = raw_output if len(raw_output) <= REPAIR_RAW_LIMIT else f"{raw_output[:REPAIR_RAW_LIMIT]}\n...(truncated)"
  return _replace_placeholders(_load_prompt("repair.md"), {"RULES": rules or "- Match the response schema exactly.", "ERRORS": _bullets(errors), "RAW_OUTPUT": clipped})


@lru_cache(maxsize=16)
def _load_prompt(name: str) -> str:
  try:
    path = Path(__file__).parent / "prompts" / name
    return path.read_text(encoding="utf-8").strip()
  except (FileNotFoundError, PermissionError, UnicodeDecodeError) as exc:
    raise RuntimeError(f"Failed to load prompt '{name}': {exc}") from exc


GENERATE_REPAIR_RULES = "\n".join(
  (
    '- Top level is {"tags": [...], "parts": [...]} with at most 12 tags.',
    "- Every part has a non-blank id and title, a type, a body and an activities array.",
    "- Every activity has a non-blank id and title, a type, instructions, attachable, and estimatedMinutes >= 0.",
  )
)


def plan_repair_rules() -> str:
  activity_parts = ", ".join(key for key, _, _ in PLAN_PART_LAYOUT if key in ACTIVITY_BEARING_PLAN_PARTS)
  return "\n".join(
    (
      '- Top level is {"lesson": {...}, "parts": [...], "activities": [...]}.',
      "- Parts, in this order:",
      render_plan_layout(),
      f"- Activities may only reference these part_client_key values: {activity_parts}.",
      "- estimated_minutes is a number >= 0.",
    )
  )
