from __future__ import annotations

from typing import Annotated, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictStr, field_validator

from lessonai.ai.pipeline.contracts import GenerationRequest, LessonContext, OverviewRequest, PartRequest, PlanRequest

ToneLevel = Literal["simple", "standard", "detailed"]
Objectives = Annotated[list[str], Field(default_factory=list, max_length=20)]


class LessonDetails(BaseModel):
  """Lesson metadata sent by the lesson editor."""

  title: str = ""
  subjectLabel: str = ""
  gradeLabel: str = ""
  trackLabel: str = ""
  strandLabel: str = ""
  durationMinutes: float = Field(default=45, ge=0, le=600)
  model_config = ConfigDict(str_strip_whitespace=True)


class LessonGenerateBody(BaseModel):
  """Body of ``POST /lesson-generate``."""

  lesson: LessonDetails = Field(default_factory=LessonDetails)
  tone: str = "Friendly"
  difficulty: str = "On-level"
  include: dict[str, bool] = Field(default_factory=dict, description="Section name -> whether to generate it.")
  prompt: str = Field(default="", max_length=4000)
  model_config = ConfigDict(str_strip_whitespace=True)

  def to_request(self) -> GenerationRequest:
    lesson = self.lesson
    context = LessonContext(
      title=lesson.title or "(untitled)",
      subject=lesson.subjectLabel or "(unknown)",
      grade=lesson.gradeLabel or "(unknown)",
      track=lesson.trackLabel,
      strand=lesson.strandLabel,
      duration_minutes=lesson.durationMinutes,
    )
    include = tuple(name for name, wanted in self.include.items() if wanted)
    return GenerationRequest(lesson=context, tone=self.tone or "Friendly", difficulty=self.difficulty or "On-level", include=include, prompt=self.prompt)


class LessonPlanBody(BaseModel):
  """Body of ``POST /lesson-plan-4a``."""

  title: str = Field(min_length=3)
  subject: str = Field(min_length=1)
  grade_level: str = Field(min_length=1)
  track: str = ""
  strand: str = ""
  tone: ToneLevel = "standard"
  duration_minutes: float = Field(default=45, ge=0, le=600)
  model_config = ConfigDict(str_strip_whitespace=True)

  @field_validator("grade_level", mode="before")
  @classmethod
  def _grade_as_text(cls, value: object) -> object:
    # The portal sends grade levels either as "Grade 11" or as 11.
    if isinstance(value, int) and not isinstance(value, bool):
      return str(value)
    return value

  def to_request(self) -> PlanRequest:
    return PlanRequest(title=self.title, subject=self.subject, grade_level=self.grade_level, track=self.track, strand=self.strand, tone=self.tone, duration_minutes=self.duration_minutes)


class LessonOverviewBody(BaseModel):
  """Body of ``POST /lesson-overview``."""

  title: str = Field(min_length=3)
  objectives: Objectives
  tone: ToneLevel = "standard"
  model_config = ConfigDict(str_strip_whitespace=True)

  def to_request(self) -> OverviewRequest:
    return OverviewRequest(title=self.title, objectives=tuple(self.objectives), tone=self.tone)


class LessonPartBody(BaseModel):
  """Body of ``POST /lesson-part``."""

  lessonTitle: StrictStr = Field(min_length=3)
  subject: StrictStr = Field(min_length=2)
  gradeLevel: StrictStr = Field(min_length=1)
  section: str = ""
  objectives: Objectives
  partType: StrictStr = Field(min_length=1)
  partTitle: str = Field(default="", validation_alias=AliasChoices("partTitle", "part_title"))
  model_config = ConfigDict(str_strip_whitespace=True)

  def to_request(self) -> PartRequest:
    return PartRequest(
      lesson_title=self.lessonTitle,
      subject=self.subject,
      grade_level=self.gradeLevel,
      section=self.section,
      objectives=tuple(self.objectives),
      part_type=self.partType,
      part_title=self.partTitle or self.partType,
    )


class HealthResponse(BaseModel):
  status: str
  version: str
