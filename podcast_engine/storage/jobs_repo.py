"""Typed access to generation jobs on top of a document store."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

from podcast_engine.jobs.models import GenerationJob
from podcast_engine.pipeline.errors import JobNotFound, PipelineError
from podcast_engine.storage.job_store import JobStore, JobTransaction
from podcast_engine.utils.ids import now_iso

T = TypeVar("T")


def _changed_fields(before: dict[str, Any], after: dict[str, Any]) -> dict[str, Any]:
  return {key: value for key, value in after.items() if before.get(key) != value}


class GenerationJobsRepository:
  """Loads, creates and atomically mutates GenerationJob documents."""

  def __init__(self, store: JobStore) -> None:
    self._store = store

  async def create(self, job: GenerationJob) -> None:
    await self._store.set(job.job_id, job.to_document())

  async def get(self, job_id: str) -> GenerationJob | None:
    document = await self._store.get(job_id)
    if document is None:
      return None
    return GenerationJob.from_document(document)

  async def require(self, job_id: str) -> GenerationJob:
    job = await self.get(job_id)
    if job is None:
      raise JobNotFound(f"Job {job_id} not found.")
    return job

  async def mutate(self, job_id: str, mutator: Callable[[GenerationJob], T], *, missing: Callable[[], PipelineError] | None = None) -> tuple[GenerationJob, T]:
    """Read-modify-write one job inside a store transaction.

    The mutator edits the loaded job in place and may raise to abort; nothing is
    written in that case. Only top-level fields that actually changed are sent
    to the store, so concurrent-safe partial updates stay small.
    """

    async def _apply(transaction: JobTransaction) -> tuple[GenerationJob, T]:
      before = await transaction.get(job_id)
      if before is None:
        raise missing() if missing else JobNotFound(f"Job {job_id} not found.")

      job = GenerationJob.from_document(before)
      result = mutator(job)
      after = job.to_document()
      changes = _changed_fields(before, after)
      if changes:
        job.updated_at = now_iso()
        changes["updated_at"] = job.updated_at
        transaction.update(job_id, changes)
      return job, result

    return await self._store.run_transaction(_apply)
