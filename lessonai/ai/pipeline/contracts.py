"""Shared data contracts for the generation pipeline."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Tone = Literal["simple", "standard", "detailed"]

DEFAULT_INCLUDE: tuple[str, ...] = ("objectives", "warmup", "activities", "assessment")


class LessonContext(BaseModel):
  """Lesson metadata the teacher already filled in."""

  model_config = ConfigDict(frozen=True)

  title: str = "(untitled)"
  subject: str = "(unknown)"
  grade: str = "(unknown)"
  track: str = ""
  strand: str = ""
  duration_minutes: float = Field(default=45, ge=0)


class GenerationRequest(BaseModel):
  """Inputs for generating lesson sections with activities."""

  model_config = ConfigDict(frozen=True)

  lesson: LessonContext
  tone: str = "Friendly"
  difficulty: str = "On-level"
  include: tuple[str, ...] = DEFAULT_INCLUDE
  prompt: str = ""


class PlanRequest(BaseModel):
  """Inputs for a 4A lesson plan."""

  model_config = ConfigDict(frozen=True)

  title: str
  subject: str
  grade_level: str
  track: str = ""
  strand: str = ""
  tone: Tone = "standard"
  duration_minutes: float = Field(default=45, ge=0)


class OverviewRequest(BaseModel):
  """Inputs for a plain-text lesson overview."""

  model_config = ConfigDict(frozen=True)

  title: str
  objectives: tuple[str, ...] = ()
  tone: Tone = "standard"


class PartRequest(BaseModel):
  """Inputs for student-facing content of one lesson part."""

  model_config = ConfigDict(frozen=True)

  lesson_title: str
  subject: str
  grade_level: str
  section: str = ""
  objectives: tuple[str, ...] = ()
  part_type: str
  part_title: str
