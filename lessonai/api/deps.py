"""Dependency providers that assemble the generation stack from settings."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

import httpx

from lessonai.ai.backoff import RetryBudget
from lessonai.ai.credentials import CredentialSigner, ServiceCredential
from lessonai.ai.errors import ConfigurationError
from lessonai.ai.orchestrator import LessonOrchestrator, to_orchestration_error
from lessonai.ai.providers.base import GenerationClient
from lessonai.ai.providers.vertex_ai import VertexGenerationClient
from lessonai.ai.token_cache import TokenCache
from lessonai.config import Settings, get_settings
from lessonai.services.quotas import QuotaLockController
from lessonai.storage.factory import build_quota_store

logger = logging.getLogger(__name__)


class UnconfiguredGenerationClient:
  """Stands in for the Vertex client when its settings are missing, failing on first use."""

  def __init__(self, error: ConfigurationError) -> None:
    self._error = error

  async def generate(self, prompt: str, schema: dict[str, Any] | None, temperature: float, *, system: str | None = None, budget: RetryBudget | None = None) -> str:
    raise self._error


@lru_cache(maxsize=1)
def get_http_client() -> httpx.AsyncClient:
  settings = get_settings()
  return httpx.AsyncClient(timeout=httpx.Timeout(settings.http_timeout_seconds), limits=httpx.Limits(max_connections=50, max_keepalive_connections=10))


def _missing_vertex_settings(settings: Settings) -> list[str]:
  missing = []
  if not settings.gcp_project_id:
    missing.append("GCP_PROJECT_ID")
  if not settings.gcp_location:
    missing.append("GCP_LOCATION")
  if not settings.vertex_model:
    missing.append("VERTEX_MODEL")
  if not settings.gcp_service_account_json:
    missing.append("GCP_SERVICE_ACCOUNT_JSON")
  return missing


def build_generation_client(settings: Settings, http_client: httpx.AsyncClient) -> VertexGenerationClient:
  """Wire credential signer, token cache and Vertex client; raises ConfigurationError on missing values."""
  missing = _missing_vertex_settings(settings)
  if missing:
    raise ConfigurationError(f"Server misconfigured: missing Vertex settings ({', '.join(missing)}).")

  credential = ServiceCredential.from_json(settings.gcp_service_account_json or "")
  token_cache = TokenCache(CredentialSigner(credential), http_client=http_client)
  return VertexGenerationClient(
    token_cache=token_cache,
    http_client=http_client,
    project_id=settings.gcp_project_id or "",
    location=settings.gcp_location,
    model=settings.vertex_model,
    retry=settings.retry,
    max_output_tokens=settings.max_output_tokens,
    timeout_seconds=settings.http_timeout_seconds,
  )


@lru_cache(maxsize=1)
def get_generation_client() -> GenerationClient:
  try:
    return build_generation_client(get_settings(), get_http_client())
  except ConfigurationError as exc:
    logger.error("Generation client unavailable: %s", exc.message)
    return UnconfiguredGenerationClient(exc)


@lru_cache(maxsize=1)
def get_quota_controller() -> QuotaLockController:
  settings = get_settings()
  store = build_quota_store(settings)
  return QuotaLockController(store, daily_limit=settings.daily_generation_limit, lock_ttl_seconds=settings.lock_ttl_seconds, lock_scope=settings.lock_scope)


def get_orchestrator() -> LessonOrchestrator:
  """Return the process-wide orchestrator; any failure to build it surfaces as 500 configuration_error."""
  try:
    return _orchestrator()
  except ConfigurationError as exc:
    raise to_orchestration_error(exc) from exc
  except Exception as exc:
    logger.exception("Generation stack could not be built")
    raise to_orchestration_error(ConfigurationError(f"Server misconfigured: {type(exc).__name__} while building the generation stack.", detail=str(exc))) from exc


@lru_cache(maxsize=1)
def _orchestrator() -> LessonOrchestrator:
  return LessonOrchestrator(client=get_generation_client(), quotas=get_quota_controller(), retry=get_settings().retry)


async def close_clients() -> None:
  """Release pooled HTTP connections at shutdown."""
  if get_http_client.cache_info().currsize:
    await get_http_client().aclose()
    get_http_client.cache_clear()
  get_generation_client.cache_clear()
  _orchestrator.cache_clear()
