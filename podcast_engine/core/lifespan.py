import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from podcast_engine.core.database import dispose_db_engine
from podcast_engine.core.firebase import initialize_firebase
from podcast_engine.core.logging import _initialize_logging
from podcast_engine.services.blob_storage import build_blob_storage


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging, Firebase and the audio bucket before serving requests."""
  from podcast_engine.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("podcast_engine.core.lifespan")

  try:
    _initialize_logging(settings)
    logger.info("Startup complete - logging verified.")
    initialize_firebase(settings)
    if settings.job_store == "postgres":
      logger.info("Job store: postgres (%s)", _redact_dsn(settings.pg_dsn))
    else:
      logger.info("Job store: %s", settings.job_store)

    try:
      storage = build_blob_storage(settings)
      await storage.ensure_bucket()
      logger.info("Audio bucket ensured: %s", storage.bucket_name)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Failed to ensure audio bucket at startup: %s", exc)
  except Exception:
    # Startup problems are logged; requests surface their own errors.
    logger.warning("Service initialization incomplete.", exc_info=True)

  yield

  await dispose_db_engine()


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
