"""Progress reporting for a single stage run."""

from __future__ import annotations

from podcast_engine.jobs.models import GenerationJob, StageType
from podcast_engine.pipeline.errors import JobCanceled
from podcast_engine.storage.jobs_repo import GenerationJobsRepository


class StageProgress:
  """Persist monotonic step progress and surface cancellation.

  Every report is a transactional read-modify-write, so it doubles as the
  cancellation checkpoint: a job marked canceled raises JobCanceled here.
  """

  def __init__(self, *, job_id: str, stage: StageType, jobs_repo: GenerationJobsRepository) -> None:
    self._job_id = job_id
    self._stage = stage
    self._jobs_repo = jobs_repo

  async def report(self, percent: float) -> None:
    value = max(0, min(int(round(percent)), 100))

    def _apply(job: GenerationJob) -> None:
      if job.status == "canceled":
        raise JobCanceled(f"Job {self._job_id} was canceled.")
      step = job.step(self._stage)
      # Lower values than the stored one are ignored.
      if step.status == "processing" and value > step.progress:
        step.progress = value

    await self._jobs_repo.mutate(self._job_id, _apply)
