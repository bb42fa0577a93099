from __future__ import annotations

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from lessonai.ai.orchestrator import OrchestrationError
from lessonai.api.models import HealthResponse
from lessonai.api.routes import lessons
from lessonai.config import APP_VERSION, get_settings
from lessonai.core.exceptions import global_exception_handler, http_exception_handler, orchestration_exception_handler, request_validation_exception_handler
from lessonai.core.lifespan import lifespan
from lessonai.core.middleware import RequestLoggingMiddleware

CORS_ALLOWED_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]

settings = get_settings()

app = FastAPI(title="Lesson AI Engine", version=APP_VERSION, lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url="/openapi.json" if settings.debug else None)

app.add_middleware(CORSMiddleware, allow_origin_regex=settings.allowed_origin_regex, allow_methods=["POST", "OPTIONS"], allow_headers=CORS_ALLOWED_HEADERS, expose_headers=["x-request-id"], max_age=86400)

app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(OrchestrationError, orchestration_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

app.add_middleware(RequestLoggingMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> HealthResponse:
  """Return a simple health status."""
  return HealthResponse(status="ok", version=APP_VERSION)


app.include_router(lessons.router, prefix="/functions/v1", tags=["lessons"])
