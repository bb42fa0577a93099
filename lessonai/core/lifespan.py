import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from lessonai.api.deps import close_clients
from lessonai.config import get_settings
from lessonai.core.database import dispose_engine
from lessonai.core.logging import initialize_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Initialize logging on startup and release pooled connections on shutdown."""
  settings = get_settings()
  logger = logging.getLogger("lessonai.core.lifespan")

  try:
    initialize_logging(settings)
  except RuntimeError:
    # The service can still run with default stderr logging.
    logger.warning("Logging setup failed; continuing with default handlers.", exc_info=True)

  logger.info("Startup complete env=%s quota_backend=%s lock_scope=%s daily_limit=%s", settings.environment, settings.quota_backend, settings.lock_scope, settings.daily_generation_limit)
  if not settings.auth_jwt_secret:
    logger.warning("LESSONAI_AUTH_JWT_SECRET is not set; every authenticated request will fail.")

  try:
    yield
  finally:
    await close_clients()
    await dispose_engine()
    logger.info("Shutdown complete.")
