"""Select the quota store backend from settings."""

from __future__ import annotations

from lessonai.ai.errors import ConfigurationError
from lessonai.config import Settings
from lessonai.services.quotas import QuotaStore
from lessonai.storage.memory_quota_repo import InMemoryQuotaRepository
from lessonai.storage.postgres_quota_repo import PostgresQuotaRepository


def build_quota_store(settings: Settings) -> QuotaStore:
  """Return the configured store; Postgres requires LESSONAI_PG_DSN."""
  if settings.quota_backend == "memory":
    return InMemoryQuotaRepository()
  if settings.quota_backend == "postgres":
    if not settings.pg_dsn:
      raise ConfigurationError("LESSONAI_PG_DSN must be set when LESSONAI_QUOTA_BACKEND is 'postgres'.")
    return PostgresQuotaRepository()
  raise ValueError(f"Unsupported quota backend: {settings.quota_backend}")
