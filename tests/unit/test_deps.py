from __future__ import annotations

import dataclasses

import httpx
import pytest

from lessonai.ai.errors import ConfigurationError
from lessonai.ai.providers.vertex_ai import VertexGenerationClient
from lessonai.api.deps import UnconfiguredGenerationClient, build_generation_client
from lessonai.config import get_settings


def test_missing_vertex_settings_are_listed() -> None:
  settings = dataclasses.replace(get_settings(), gcp_project_id=None, gcp_service_account_json=None)
  with pytest.raises(ConfigurationError) as exc_info:
    build_generation_client(settings, httpx.AsyncClient())
  assert "GCP_PROJECT_ID" in exc_info.value.message
  assert "GCP_SERVICE_ACCOUNT_JSON" in exc_info.value.message


def test_complete_settings_build_a_vertex_client(service_account_json) -> None:
  settings = dataclasses.replace(get_settings(), gcp_project_id="demo-project", gcp_location="us-central1", vertex_model="gemini-2.0-flash-001", gcp_service_account_json=service_account_json)
  client = build_generation_client(settings, httpx.AsyncClient())
  assert isinstance(client, VertexGenerationClient)
  assert client.endpoint.endswith("/projects/demo-project/locations/us-central1/publishers/google/models/gemini-2.0-flash-001:generateContent")


@pytest.mark.anyio
async def test_unconfigured_client_fails_on_first_use() -> None:
  client = UnconfiguredGenerationClient(ConfigurationError("Server misconfigured: missing Vertex settings (GCP_PROJECT_ID)."))
  with pytest.raises(ConfigurationError, match="GCP_PROJECT_ID"):
    await client.generate("prompt", None, 0.5)
