from __future__ import annotations

import logging
from urllib.parse import urlparse

import httpx

from podcast_engine.config import Settings
from podcast_engine.jobs.models import StageType
from podcast_engine.services.tasks.interface import ADVANCE_PATH, TASK_SECRET_HEADER, StageDispatcher

logger = logging.getLogger(__name__)


class LocalHttpDispatcher(StageDispatcher):
  """Triggers stages by POSTing to this service's internal task endpoint."""

  def __init__(self, settings: Settings) -> None:
    self.settings = settings

  def _should_use_asgi_transport(self, base_url: str) -> bool:
    """Decide if requests should be routed in-process via ASGITransport."""
    parsed = urlparse(base_url)
    hostname = (parsed.hostname or "").lower()
    return hostname in {"localhost", "127.0.0.1", "::1", "0.0.0.0"}

  def _build_client(self, base_url: str) -> httpx.AsyncClient:
    # Never trust environment proxy variables for internal task dispatch.
    if self._should_use_asgi_transport(base_url):
      from podcast_engine.main import app

      transport = httpx.ASGITransport(app=app)
      return httpx.AsyncClient(transport=transport, base_url=base_url, trust_env=False)
    return httpx.AsyncClient(trust_env=False)

  def _task_headers(self) -> dict[str, str]:
    if not self.settings.task_secret:
      raise RuntimeError("Task secret not configured.")
    return {TASK_SECRET_HEADER: self.settings.task_secret}

  async def dispatch(self, job_id: str, stage: StageType) -> None:
    if not self.settings.base_url:
      raise RuntimeError("Base URL not configured, strictly required for LocalHttpDispatcher.")

    url = f"{self.settings.base_url.rstrip('/')}{ADVANCE_PATH}"
    try:
      async with self._build_client(self.settings.base_url) as client:
        logger.info("Dispatching %s for job %s to %s", stage, job_id, url)
        # The endpoint claims synchronously and runs the stage in the background.
        response = await client.post(url, json={"job_id": job_id, "stage": stage}, headers=self._task_headers(), timeout=30.0)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
      logger.error("Local dispatch returned %s for job %s stage %s: %s", exc.response.status_code, job_id, stage, exc.response.text)
      raise
    except httpx.RequestError as exc:
      logger.error("Failed to dispatch %s for job %s: %s", stage, job_id, exc)
      raise
