"""Shared contract for the four stage runners."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar

from podcast_engine.jobs.models import GenerationJob, StageType
from podcast_engine.pipeline.errors import JobNotFound, PipelineError
from podcast_engine.pipeline.progress import StageProgress


@dataclass(frozen=True)
class StageResult:
  """Outputs a runner hands back for the orchestrator to persist."""

  outputs: dict[str, Any]


@dataclass(frozen=True)
class CleanupReport:
  """Best-effort cleanup outcome; logged, never raised."""

  removed: tuple[str, ...] = ()
  errors: tuple[str, ...] = field(default=())

  @property
  def ok(self) -> bool:
    return not self.errors


class StageRunner(ABC):
  """Executes one stage for one job.

  Subclasses declare which error reports a missing job, which error wraps
  unexpected failures, and optionally which error reports a failed completion
  write.
  """

  stage: ClassVar[StageType]
  not_found_error: ClassVar[type[PipelineError]] = JobNotFound
  failure_error: ClassVar[type[PipelineError]] = PipelineError
  commit_error: ClassVar[type[PipelineError] | None] = None

  def check_preconditions(self, job: GenerationJob) -> None:
    """Raise when upstream inputs are missing; runs inside the claim transaction."""
    return None

  @abstractmethod
  async def run(self, job: GenerationJob, progress: StageProgress) -> StageResult:
    """Do the stage's work and return its outputs."""

  async def cleanup(self, job: GenerationJob) -> CleanupReport | None:
    """Release local resources after a run, whatever its outcome."""
    return None
