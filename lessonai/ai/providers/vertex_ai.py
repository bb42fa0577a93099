"""Vertex AI ``generateContent`` client over raw HTTPS."""

from __future__ import annotations

import logging
from typing import Any, Final

import httpx

from lessonai.ai.backoff import RetryBudget, retry_with_backoff
from lessonai.ai.errors import UpstreamError, truncate_detail
from lessonai.ai.token_cache import TokenCache
from lessonai.config import RetrySettings

logger = logging.getLogger(__name__)

HARM_CATEGORIES: Final[tuple[str, ...]] = ("HARM_CATEGORY_HATE_SPEECH", "HARM_CATEGORY_HARASSMENT", "HARM_CATEGORY_SEXUALLY_EXPLICIT", "HARM_CATEGORY_DANGEROUS_CONTENT")
SAFETY_THRESHOLD: Final[str] = "BLOCK_MEDIUM_AND_ABOVE"


def build_endpoint(project_id: str, location: str, model: str) -> str:
  return f"https://{location}-aiplatform.googleapis.com/v1/projects/{project_id}/locations/{location}/publishers/google/models/{model}:generateContent"


def build_request_body(prompt: str, schema: dict[str, Any] | None, temperature: float, *, system: str | None, max_output_tokens: int) -> dict[str, Any]:
  """Assemble the ``generateContent`` request payload."""
  generation_config: dict[str, Any] = {"temperature": temperature, "maxOutputTokens": max_output_tokens}
  if schema is not None:
    generation_config["responseMimeType"] = "application/json"
    generation_config["responseSchema"] = schema
  else:
    generation_config["responseMimeType"] = "text/plain"

  body: dict[str, Any] = {
    "contents": [{"role": "user", "parts": [{"text": prompt}]}],
    "generationConfig": generation_config,
    "safetySettings": [{"category": category, "threshold": SAFETY_THRESHOLD} for category in HARM_CATEGORIES],
  }
  if system:
    body["systemInstruction"] = {"parts": [{"text": system}]}
  return body


def extract_candidate_text(payload: Any) -> tuple[str, str | None]:
  """Return the joined, stripped text of the first candidate and its finish reason."""
  if not isinstance(payload, dict):
    return "", None
  candidates = payload.get("candidates") or []
  if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
    feedback = payload.get("promptFeedback")
    block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
    return "", block_reason

  first = candidates[0]
  finish_reason = first.get("finishReason")
  content = first.get("content") if isinstance(first.get("content"), dict) else {}
  parts = content.get("parts") or []
  texts = [part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)]
  return "".join(texts).strip(), finish_reason


class VertexGenerationClient:
  """Authorized, retrying calls to one Vertex AI model."""

  def __init__(
    self,
    *,
    token_cache: TokenCache,
    http_client: httpx.AsyncClient,
    project_id: str,
    location: str,
    model: str,
    retry: RetrySettings,
    max_output_tokens: int = 1800,
    timeout_seconds: float = 60.0,
  ) -> None:
    self._tokens = token_cache
    self._http = http_client
    self._retry = retry
    self._max_output_tokens = max_output_tokens
    self._timeout_seconds = timeout_seconds
    self.model = model
    self.endpoint = build_endpoint(project_id, location, model)

  async def generate(self, prompt: str, schema: dict[str, Any] | None, temperature: float, *, system: str | None = None, budget: RetryBudget | None = None) -> str:
    body = build_request_body(prompt, schema, temperature, system=system, max_output_tokens=self._max_output_tokens)

    async def _send() -> httpx.Response:
      # Fetched per attempt so a long backoff never outlives the token.
      access_token = await self._tokens.get_access_token()
      try:
        return await self._http.post(self.endpoint, json=body, headers={"Authorization": f"Bearer {access_token}"}, timeout=self._timeout_seconds)
      except httpx.HTTPError as exc:
        raise UpstreamError(f"Generation request failed: {type(exc).__name__}", detail=str(exc)) from exc

    logger.info("Calling model=%s structured=%s temperature=%s", self.model, schema is not None, temperature)
    response = await retry_with_backoff(_send, policy=self._retry, budget=budget)

    if not response.is_success:
      if response.status_code == 401:
        # Revoked or rotated credentials; the next request re-exchanges the assertion.
        self._tokens.invalidate()
      logger.error("Generation failed status=%s body=%s", response.status_code, truncate_detail(response.text, 300))
      raise UpstreamError(f"Vertex generateContent failed (HTTP {response.status_code})", status_code=response.status_code, detail=response.text)

    try:
      payload = response.json()
    except ValueError as exc:
      raise UpstreamError("Vertex generateContent returned a non-JSON body.", status_code=response.status_code, detail=response.text) from exc

    text, finish_reason = extract_candidate_text(payload)
    if not text:
      suffix = f" (finishReason={finish_reason})" if finish_reason else ""
      raise UpstreamError(f"Vertex returned empty output{suffix}", status_code=response.status_code)

    usage = payload.get("usageMetadata") if isinstance(payload, dict) else None
    if isinstance(usage, dict):
      logger.info("Model usage prompt_tokens=%s output_tokens=%s", usage.get("promptTokenCount"), usage.get("candidatesTokenCount"))
    return text
