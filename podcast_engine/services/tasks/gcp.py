from __future__ import annotations

import json
import logging
from typing import Any

from google.cloud import tasks_v2
from starlette.concurrency import run_in_threadpool

from podcast_engine.config import Settings
from podcast_engine.jobs.models import StageType
from podcast_engine.services.tasks.interface import ADVANCE_PATH, TASK_SECRET_HEADER, StageDispatcher

logger = logging.getLogger(__name__)


class CloudTasksDispatcher(StageDispatcher):
  """Enqueues stage triggers as Google Cloud Tasks HTTP tasks."""

  def __init__(self, settings: Settings) -> None:
    if not settings.cloud_tasks_queue_path:
      raise RuntimeError("Cloud Tasks queue path not configured.")
    if not settings.base_url:
      raise RuntimeError("Base URL not configured.")
    if not settings.task_secret:
      raise RuntimeError("Task secret not configured.")
    self.settings = settings
    self.client = tasks_v2.CloudTasksClient()

  def _build_task(self, job_id: str, stage: StageType) -> dict[str, Any]:
    http_request: dict[str, Any] = {
      "http_method": tasks_v2.HttpMethod.POST,
      "url": f"{self.settings.base_url}{ADVANCE_PATH}",
      "headers": {"Content-Type": "application/json", TASK_SECRET_HEADER: self.settings.task_secret},
      "body": json.dumps({"job_id": job_id, "stage": stage}).encode(),
    }
    # Cloud Run invoker auth needs an OIDC token minted for a service account.
    if self.settings.cloud_run_invoker_service_account:
      http_request["oidc_token"] = {"service_account_email": self.settings.cloud_run_invoker_service_account}
    return {"http_request": http_request}

  async def dispatch(self, job_id: str, stage: StageType) -> None:
    task = self._build_task(job_id, stage)
    response = await run_in_threadpool(self.client.create_task, request={"parent": self.settings.cloud_tasks_queue_path, "task": task})
    logger.info("Enqueued task %s for job %s stage %s", response.name, job_id, stage)
