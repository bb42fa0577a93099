import logging
from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from lessonai.ai.orchestrator import OrchestrationError
from lessonai.config import get_settings

logger = logging.getLogger("lessonai.core.exceptions")

_HTTP_REASONS: dict[int, str] = {
  status.HTTP_400_BAD_REQUEST: "bad_request",
  status.HTTP_401_UNAUTHORIZED: "unauthorized",
  status.HTTP_403_FORBIDDEN: "forbidden",
  status.HTTP_404_NOT_FOUND: "not_found",
  status.HTTP_405_METHOD_NOT_ALLOWED: "method_not_allowed",
}


def _coerce_json_safe(value: Any) -> Any:
  """Convert unsupported values into JSON-safe primitives for error responses."""
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _coerce_json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_coerce_json_safe(item) for item in value]
  if isinstance(value, BaseException):
    error_message = str(value)
    return f"{type(value).__name__}: {error_message}" if error_message else type(value).__name__
  return str(value)


def _error_payload(reason: str, message: str, *, detail: Any = None, request_id: str | None = None, extra: dict[str, Any] | None = None) -> dict[str, Any]:
  """Build the uniform error body: ``{error, message, detail?, requestId?}``."""
  payload: dict[str, Any] = {"error": reason, "message": message}
  if detail is not None:
    payload["detail"] = _coerce_json_safe(detail)
  if extra:
    payload.update(_coerce_json_safe(extra))
  if request_id:
    payload["requestId"] = request_id
  return payload


def _sanitize_validation_errors(errors: Any) -> list[dict[str, Any]]:
  """Return validation errors without raw input payloads."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    scrubbed = {key: value for key, value in error.items() if key not in {"input", "url"}}
    if "ctx" in scrubbed and isinstance(scrubbed["ctx"], dict):
      scrubbed_ctx = dict(scrubbed["ctx"])
      scrubbed_ctx.pop("input", None)
      scrubbed["ctx"] = scrubbed_ctx
    sanitized.append(_coerce_json_safe(scrubbed))
  return sanitized


def _request_id(request: Request) -> str | None:
  return getattr(request.state, "request_id", None)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Catch anything that escaped the orchestrator."""
  request_id = _request_id(request)
  logger.error("Unhandled exception request_id=%s path=%s error_type=%s", request_id, request.url.path, type(exc).__name__, exc_info=True)
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_payload("internal_error", "Internal Server Error", request_id=request_id))


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  """Reject malformed bodies with 422, logging the errors without the payload."""
  request_id = _request_id(request)
  sanitized_errors = _sanitize_validation_errors(exc.errors())
  logger.warning("Request validation failed request_id=%s path=%s method=%s errors=%s", request_id, request.url.path, request.method, sanitized_errors)
  return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=_error_payload("invalid_request", "Request body failed validation.", detail=sanitized_errors, request_id=request_id))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
  """Render HTTP errors (401, 404, 405 ...) in the uniform error shape."""
  request_id = _request_id(request)
  if exc.status_code >= 500:
    logger.error("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=_error_payload("internal_error", "Internal Server Error", request_id=request_id))

  if get_settings().log_http_4xx:
    logger.warning("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail)

  reason = _HTTP_REASONS.get(exc.status_code, "http_error")
  message = exc.detail if isinstance(exc.detail, str) else reason
  return JSONResponse(status_code=exc.status_code, content=_error_payload(reason, message, request_id=request_id), headers=getattr(exc, "headers", None))


async def orchestration_exception_handler(request: Request, exc: OrchestrationError) -> JSONResponse:
  """Render a mapped pipeline failure with its status, reason and diagnostic detail."""
  request_id = _request_id(request)
  if exc.status_code >= 500:
    logger.error("Orchestration failure request_id=%s path=%s reason=%s message=%s", request_id, request.url.path, exc.reason, exc.message)
  else:
    logger.info("Request rejected request_id=%s path=%s status=%s reason=%s", request_id, request.url.path, exc.status_code, exc.reason)
  return JSONResponse(status_code=exc.status_code, content=_error_payload(exc.reason, exc.message, detail=exc.detail, request_id=request_id, extra=exc.extra))
