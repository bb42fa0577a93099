"""Shared fixtures: environment defaults, signing keys and scripted model clients."""

from __future__ import annotations

import datetime
import hashlib
import hmac
import json
import os
import time
from typing import Any

os.environ.setdefault("LESSONAI_QUOTA_BACKEND", "memory")
os.environ.setdefault("LESSONAI_AUTH_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("LESSONAI_DAILY_GENERATION_LIMIT", "10")

import pytest  # noqa: E402
from cryptography.hazmat.primitives import serialization  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import rsa  # noqa: E402

from lessonai.ai.backoff import RetryBudget  # noqa: E402
from lessonai.ai.credentials import b64url_encode, compact_json  # noqa: E402
from lessonai.schema.lessons import PLAN_PART_LAYOUT  # noqa: E402

TEST_JWT_SECRET = os.environ["LESSONAI_AUTH_JWT_SECRET"]
FIXED_NOW = datetime.datetime(2026, 3, 14, 9, 30, tzinfo=datetime.UTC)


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
  return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_private_key: rsa.RSAPrivateKey) -> str:
  return rsa_private_key.private_bytes(encoding=serialization.Encoding.PEM, format=serialization.PrivateFormat.PKCS8, encryption_algorithm=serialization.NoEncryption()).decode("ascii")


@pytest.fixture
def service_account_json(private_key_pem: str) -> str:
  return json.dumps({"type": "service_account", "client_email": "lessons@demo-project.iam.gserviceaccount.com", "private_key": private_key_pem, "token_uri": "https://oauth2.example.test/token"})


def make_caller_token(claims: dict[str, Any] | None = None, *, secret: str = TEST_JWT_SECRET, alg: str = "HS256") -> str:
  """Build an HS256 bearer token the way the portal's auth provider issues them."""
  payload = {"sub": "user-1", "role": "authenticated", "exp": int(time.time()) + 3600}
  payload.update(claims or {})
  signing_input = f"{b64url_encode(compact_json({'alg': alg, 'typ': 'JWT'}))}.{b64url_encode(compact_json(payload))}"
  signature = hmac.new(secret.encode("utf-8"), signing_input.encode("ascii"), hashlib.sha256).digest()
  return f"{signing_input}.{b64url_encode(signature)}"


class ScriptedGenerationClient:
  """Generation client that replays canned outputs and records every call."""

  def __init__(self, *outputs: str | BaseException) -> None:
    self.outputs = list(outputs)
    self.calls: list[dict[str, Any]] = []

  async def generate(self, prompt: str, schema: dict[str, Any] | None, temperature: float, *, system: str | None = None, budget: RetryBudget | None = None) -> str:
    self.calls.append({"prompt": prompt, "schema": schema, "temperature": temperature, "system": system, "budget": budget})
    if not self.outputs:
      raise AssertionError("Unexpected model call")
    output = self.outputs.pop(0)
    if isinstance(output, BaseException):
      raise output
    return output


def generation_payload(**overrides: Any) -> dict[str, Any]:
  payload: dict[str, Any] = {
    "tags": ["photosynthesis", "biology"],
    "parts": [
      {
        "id": "part-1",
        "type": "warmup",
        "title": "Warm-up",
        "body": "Look at a leaf under sunlight.",
        "activities": [{"id": "act-1", "type": "discussion", "title": "Leaf talk", "instructions": "Describe what a leaf needs.", "estimatedMinutes": 5, "attachable": True}],
      }
    ],
  }
  payload.update(overrides)
  return payload


def plan_payload(**overrides: Any) -> dict[str, Any]:
  payload: dict[str, Any] = {
    "lesson": {"title": "Model supplied title", "lesson_id": "model-id", "duration_minutes": 90, "audience": "Whole Class", "status": "Draft"},
    "parts": [{"client_key": key, "sort_order": index, "part_type": part_type, "title": title, "body": f"{title} body", "is_collapsed": False} for index, (key, part_type, title) in enumerate(PLAN_PART_LAYOUT, start=1)],
    "activities": [
      {"part_client_key": "part-4a-activity", "sort_order": 1, "activity_type": "group", "title": "Light hunt", "instructions": "Find sunny spots.", "estimated_minutes": 10, "attachable": True},
      {"part_client_key": "part-4a-application", "sort_order": 1, "activity_type": "individual", "title": "Plant plan", "instructions": "Design a garden.", "estimated_minutes": 15, "attachable": False},
    ],
  }
  payload.update(overrides)
  return payload


@pytest.fixture
def fixed_clock():
  return lambda: FIXED_NOW


@pytest.fixture
def caller_token():
  return make_caller_token


@pytest.fixture
def scripted_client():
  return ScriptedGenerationClient


@pytest.fixture
def lesson_generation_payload():
  return generation_payload


@pytest.fixture
def lesson_plan_payload():
  return plan_payload
