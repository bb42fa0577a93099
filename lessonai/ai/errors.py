"""Typed failures raised by the generation stack."""

from __future__ import annotations

_DETAIL_LIMIT = 800


def truncate_detail(text: str | None, limit: int = _DETAIL_LIMIT) -> str:
  """Clamp upstream diagnostic text for error payloads and logs."""
  if not text:
    return ""
  if len(text) <= limit:
    return text
  return f"{text[:limit]}...(truncated)"


class GenerationError(RuntimeError):
  """Base class for generation pipeline failures."""

  reason = "generation_failed"
  retryable = False

  def __init__(self, message: str, *, detail: str | None = None) -> None:
    super().__init__(message)
    self.message = message
    self.detail = truncate_detail(detail) or None


class ConfigurationError(GenerationError):
  """Missing or malformed configuration (bad PEM, missing env values). Never retried."""

  reason = "configuration_error"


class TokenExchangeError(GenerationError):
  """The token endpoint refused the signed assertion."""

  reason = "token_exchange_failed"
  retryable = True

  def __init__(self, message: str, *, status_code: int | None = None, detail: str | None = None) -> None:
    super().__init__(message, detail=detail)
    self.status_code = status_code


class UpstreamError(GenerationError):
  """The generative API failed with a non-retryable response."""

  reason = "generation_failed"

  def __init__(self, message: str, *, status_code: int | None = None, detail: str | None = None) -> None:
    super().__init__(message, detail=detail)
    self.status_code = status_code


class ThrottledError(UpstreamError):
  """The generative API kept throttling (429/503) until the attempt ceiling, or asked for a wait beyond the cap."""

  reason = "upstream_throttled"
  retryable = True

  def __init__(self, message: str, *, status_code: int | None = None, attempts: int = 0, detail: str | None = None) -> None:
    super().__init__(message, status_code=status_code, detail=detail)
    self.attempts = attempts


class OutputValidationError(GenerationError):
  """Model output stayed malformed after the single repair pass."""

  reason = "invalid_model_output"

  def __init__(self, message: str, *, errors: list[str] | None = None, detail: str | None = None) -> None:
    super().__init__(message, detail=detail)
    self.errors = list(errors or [])
