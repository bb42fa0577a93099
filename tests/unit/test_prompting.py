from __future__ import annotations

from lessonai.ai.pipeline.contracts import GenerationRequest, LessonContext, OverviewRequest, PartRequest, PlanRequest
from lessonai.ai.prompting import DEFAULT_TEACHER_PROMPT, part_guidance, plan_repair_rules, render_generate_prompt, render_overview_prompt, render_part_prompt, render_plan_prompt
from lessonai.schema.lessons import PLAN_PART_LAYOUT


def test_generate_prompt_falls_back_to_default_instruction() -> None:
  system, user = render_generate_prompt(GenerationRequest(lesson=LessonContext(title="Fractions"), prompt="   "))

  assert system
  assert DEFAULT_TEACHER_PROMPT in user
  assert "Fractions" in user
  assert "{{" not in user


def test_plan_prompt_lists_every_part_in_order() -> None:
  prompt = render_plan_prompt(PlanRequest(title="Fractions", subject="Math", grade_level="Grade 7", duration_minutes=50))

  positions = [prompt.index(f'client_key="{key}"') for key, _, _ in PLAN_PART_LAYOUT]
  assert positions == sorted(positions)
  assert "50" in prompt
  assert "{{" not in prompt


def test_plan_repair_rules_name_the_activity_parts() -> None:
  rules = plan_repair_rules()
  assert "part-4a-activity, part-4a-analysis, part-4a-abstraction, part-4a-application" in rules


def test_part_guidance_matches_keywords() -> None:
  assert part_guidance("Study Notes").startswith("Write study notes")
  assert part_guidance("Something new") == part_guidance("another unknown")


def test_part_prompt_omits_empty_section_line() -> None:
  request = PartRequest(lesson_title="Fractions", subject="Math", grade_level="Grade 7", part_type="Discussion", part_title="")
  prompt = render_part_prompt(request)

  assert "Section:" not in prompt
  assert "Discussion" in prompt
  assert "{{" not in prompt


def test_placeholder_text_in_teacher_input_is_not_expanded() -> None:
  _, user = render_generate_prompt(GenerationRequest(lesson=LessonContext(title="{{SUBJECT}} review", subject="Chemistry"), prompt="Mention {{GRADE}} literally."))

  assert "{{SUBJECT}} review" in user
  assert "Mention {{GRADE}} literally." in user
  assert "Chemistry review" not in user


def test_overview_prompt_keeps_braces_in_title() -> None:
  prompt = render_overview_prompt(OverviewRequest(title="{{TONE}} of voice", objectives=("Use {{LENGTH}} sentences",)))

  assert "{{TONE}} of voice" in prompt
  assert "Use {{LENGTH}} sentences" in prompt
