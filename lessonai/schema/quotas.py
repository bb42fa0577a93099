"""SQLAlchemy models for daily generation quotas and generation locks."""

from __future__ import annotations

import datetime

from sqlalchemy import Date, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from lessonai.core.database import Base


class GenerationQuota(Base):
  __tablename__ = "ai_generation_quotas"
  __table_args__ = (UniqueConstraint("user_id", "metric_key", "day_utc", name="uq_ai_generation_quotas_user_metric_day"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  metric_key: Mapped[str] = mapped_column(String, nullable=False)
  day_utc: Mapped[datetime.date] = mapped_column(Date, nullable=False)
  used: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class GenerationLock(Base):
  __tablename__ = "ai_generation_locks"

  lock_key: Mapped[str] = mapped_column(String, primary_key=True)
  owner: Mapped[str] = mapped_column(String, nullable=False)
  held_until: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
