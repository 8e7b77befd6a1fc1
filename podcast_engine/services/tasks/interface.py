from __future__ import annotations

from typing import Protocol

from podcast_engine.jobs.models import StageType


class StageDispatcher(Protocol):
  """Hands a job off to the next stage through an external trigger."""

  async def dispatch(self, job_id: str, stage: StageType) -> None:
    """Request that `stage` runs for the job."""
    ...


ADVANCE_PATH = "/internal/tasks/advance"
TASK_SECRET_HEADER = "X-Podcast-Task-Secret"
