"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from lessonai.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

APP_VERSION = "0.1.0"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"


@dataclass(frozen=True)
class RetrySettings:
  """Backoff parameters for throttled upstream calls."""

  initial_delay_seconds: float = 0.6
  multiplier: float = 1.8
  max_delay_seconds: float = 10.0
  max_attempts: int = 8
  max_jitter_seconds: float = 0.25


@dataclass(frozen=True)
class Settings:
  """Typed settings for the lesson AI service."""

  environment: str
  debug: bool
  allowed_origin_regex: str
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  quota_backend: str
  daily_generation_limit: int
  lock_ttl_seconds: int
  lock_scope: str
  auth_jwt_secret: str | None
  gcp_project_id: str | None
  gcp_location: str
  vertex_model: str
  gcp_service_account_json: str | None
  max_output_tokens: int
  http_timeout_seconds: float
  retry: RetrySettings


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  stripped = raw.strip()
  return stripped or None


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("LESSONAI_ENV", "development").lower()
  debug = _parse_bool(os.getenv("LESSONAI_DEBUG"))
  allowed_origin_regex = os.getenv("LESSONAI_ALLOWED_ORIGIN_REGEX", ".*").strip() or ".*"

  log_max_bytes = _positive_int("LESSONAI_LOG_MAX_BYTES", "5242880")
  log_backup_count = int(os.getenv("LESSONAI_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("LESSONAI_LOG_BACKUP_COUNT must be zero or a positive integer.")
  log_http_4xx = _parse_bool(os.getenv("LESSONAI_LOG_HTTP_4XX"))

  quota_backend = (os.getenv("LESSONAI_QUOTA_BACKEND") or "postgres").strip().lower()
  if quota_backend not in {"postgres", "memory"}:
    raise ValueError("LESSONAI_QUOTA_BACKEND must be 'postgres' or 'memory'.")

  daily_generation_limit = int(os.getenv("LESSONAI_DAILY_GENERATION_LIMIT", "10"))
  if daily_generation_limit < 0:
    raise ValueError("LESSONAI_DAILY_GENERATION_LIMIT must be >= 0.")

  lock_scope = (os.getenv("LESSONAI_LOCK_SCOPE") or "caller").strip().lower()
  if lock_scope not in {"caller", "global"}:
    raise ValueError("LESSONAI_LOCK_SCOPE must be 'caller' or 'global'.")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origin_regex=allowed_origin_regex,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=log_http_4xx,
    pg_dsn=_optional_str(os.getenv("LESSONAI_PG_DSN")),
    pg_connect_timeout=_positive_int("LESSONAI_PG_CONNECT_TIMEOUT", "10"),
    quota_backend=quota_backend,
    daily_generation_limit=daily_generation_limit,
    lock_ttl_seconds=_positive_int("LESSONAI_LOCK_TTL_SECONDS", "60"),
    lock_scope=lock_scope,
    auth_jwt_secret=_optional_str(os.getenv("LESSONAI_AUTH_JWT_SECRET")),
    gcp_project_id=_optional_str(os.getenv("GCP_PROJECT_ID")),
    gcp_location=_optional_str(os.getenv("GCP_LOCATION")) or "us-central1",
    vertex_model=_optional_str(os.getenv("VERTEX_MODEL")) or "gemini-2.0-flash-001",
    gcp_service_account_json=_optional_str(os.getenv("GCP_SERVICE_ACCOUNT_JSON")),
    max_output_tokens=_positive_int("LESSONAI_MAX_OUTPUT_TOKENS", "1800"),
    http_timeout_seconds=float(os.getenv("LESSONAI_HTTP_TIMEOUT_SECONDS", "60")),
    retry=RetrySettings(),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load only the settings the database layer needs."""
  return DatabaseSettings(debug=_parse_bool(os.getenv("LESSONAI_DEBUG")), pg_dsn=_optional_str(os.getenv("LESSONAI_PG_DSN")), pg_connect_timeout=_positive_int("LESSONAI_PG_CONNECT_TIMEOUT", "10"))
