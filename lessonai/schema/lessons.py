"""msgspec models for structured lesson output returned by the generative API."""

from __future__ import annotations

from typing import Annotated, Final

import msgspec

NonEmptyStr = Annotated[str, msgspec.Meta(min_length=1)]
Minutes = Annotated[float, msgspec.Meta(ge=0)]
Tags = Annotated[list[str], msgspec.Meta(max_length=12)]


class LessonActivity(msgspec.Struct):
  """A classroom activity attached to a lesson part."""

  id: NonEmptyStr
  type: str
  title: NonEmptyStr
  instructions: str
  estimated_minutes: Minutes = msgspec.field(name="estimatedMinutes")
  attachable: bool


class LessonPart(msgspec.Struct):
  """A section of generated lesson content."""

  id: NonEmptyStr
  type: str
  title: NonEmptyStr
  body: str
  activities: list[LessonActivity]


class GenerationResult(msgspec.Struct):
  """Lesson sections generated for a teacher, plus descriptive tags."""

  tags: Tags
  parts: list[LessonPart]


class PlanLesson(msgspec.Struct):
  """Lesson metadata block of a 4A lesson plan."""

  title: str
  lesson_id: str = ""
  subject_id: str = ""
  grade_id: str = ""
  track_id: str = ""
  strand_id: str = ""
  duration_minutes: Minutes = 45
  audience: str = "Whole Class"
  status: str = "Draft"


class PlanPart(msgspec.Struct):
  """A part of a 4A lesson plan, keyed by a stable client key."""

  client_key: NonEmptyStr
  sort_order: int
  part_type: str
  title: NonEmptyStr
  body: str
  is_collapsed: bool


class PlanActivity(msgspec.Struct):
  """An activity of a 4A lesson plan, linked to its part by client key."""

  part_client_key: NonEmptyStr
  sort_order: int
  activity_type: str
  title: NonEmptyStr
  instructions: str
  estimated_minutes: Minutes
  attachable: bool


class LessonPlan(msgspec.Struct):
  """A full 4A (Activity, Analysis, Abstraction, Application) lesson plan."""

  lesson: PlanLesson
  parts: list[PlanPart]
  activities: list[PlanActivity]


# (client_key, part_type, title) in the order the plan must present them.
PLAN_PART_LAYOUT: Final[tuple[tuple[str, str, str], ...]] = (
  ("part-overview", "Overview", "Lesson Overview"),
  ("part-objectives", "Objectives", "Learning Objectives"),
  ("part-materials", "Materials", "Materials & Resources"),
  ("part-4a-activity", "4A-Activity", "Activity"),
  ("part-4a-analysis", "4A-Analysis", "Analysis"),
  ("part-4a-abstraction", "4A-Abstraction", "Abstraction"),
  ("part-4a-application", "4A-Application", "Application"),
  ("part-assessment", "Assessment", "Assessment / Evidence of Learning"),
  ("part-extension", "Extension", "Assignment / Enrichment"),
  ("part-reflection", "Reflection", "Teacher Reflection"),
)

ACTIVITY_BEARING_PLAN_PARTS: Final[frozenset[str]] = frozenset({"part-4a-activity", "part-4a-analysis", "part-4a-abstraction", "part-4a-application"})
