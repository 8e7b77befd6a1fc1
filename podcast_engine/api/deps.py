"""Shared FastAPI dependencies."""

from __future__ import annotations

import logging
from functools import lru_cache

from podcast_engine.config import get_settings
from podcast_engine.pipeline.errors import PipelineError
from podcast_engine.pipeline.factory import build_orchestrator
from podcast_engine.pipeline.orchestrator import PipelineOrchestrator, StageClaim

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_orchestrator() -> PipelineOrchestrator:
  """Build the process-wide orchestrator on first use."""
  return build_orchestrator(get_settings())


async def run_claimed_stage(orchestrator: PipelineOrchestrator, claim: StageClaim) -> None:
  """Background entry point; the outcome is already persisted on the job."""
  try:
    await orchestrator.execute(claim)
  except PipelineError as exc:
    logger.warning("Stage %s for job %s ended with %s: %s", claim.stage, claim.job.job_id, exc.code, exc.message)
  except Exception:
    logger.error("Stage %s for job %s crashed outside the pipeline", claim.stage, claim.job.job_id, exc_info=True)
