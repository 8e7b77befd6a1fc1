from __future__ import annotations

from podcast_engine.config import Settings
from podcast_engine.services.tasks.gcp import CloudTasksDispatcher
from podcast_engine.services.tasks.interface import StageDispatcher
from podcast_engine.services.tasks.local import LocalHttpDispatcher


def get_stage_dispatcher(settings: Settings) -> StageDispatcher:
  """Factory to get the configured stage dispatcher."""
  if settings.task_service_provider == "gcp":
    return CloudTasksDispatcher(settings)
  return LocalHttpDispatcher(settings)
