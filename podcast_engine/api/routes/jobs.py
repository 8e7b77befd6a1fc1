from __future__ import annotations

import logging
from typing import Annotated, Literal

from fastapi import APIRouter, BackgroundTasks, Depends, status

from podcast_engine.api.deps import get_orchestrator, run_claimed_stage
from podcast_engine.api.models import CreateJobRequest, CreateJobResponse, JobResponse, StageTriggerResponse
from podcast_engine.core.security import get_current_user_id
from podcast_engine.jobs.models import GenerationJob
from podcast_engine.pipeline.errors import JobNotFound
from podcast_engine.pipeline.orchestrator import PipelineOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)

Orchestrator = Annotated[PipelineOrchestrator, Depends(get_orchestrator)]
CurrentUserId = Annotated[str, Depends(get_current_user_id)]


async def _owned_job(orchestrator: PipelineOrchestrator, job_id: str, user_id: str) -> GenerationJob:
  job = await orchestrator.get_job(job_id)
  # Other users' jobs are reported as missing.
  if job.user_id != user_id:
    raise JobNotFound(f"Job {job_id} not found.")
  return job


@router.post("", status_code=status.HTTP_201_CREATED, response_model=CreateJobResponse)
async def create_job(request: CreateJobRequest, user_id: CurrentUserId, orchestrator: Orchestrator) -> CreateJobResponse:
  """Price the job, reserve credits and start research."""
  job = await orchestrator.create_job(user_id=user_id, config=request.to_config(), scheduled_episode_count=request.scheduled_episode_count)
  return CreateJobResponse(job_id=job.job_id, credits_used=job.credits_used, status=job.status)


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, user_id: CurrentUserId, orchestrator: Orchestrator) -> JobResponse:
  job = await _owned_job(orchestrator, job_id, user_id)
  return JobResponse.from_job(job)


@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(job_id: str, user_id: CurrentUserId, orchestrator: Orchestrator) -> JobResponse:
  await _owned_job(orchestrator, job_id, user_id)
  job = await orchestrator.cancel(job_id)
  return JobResponse.from_job(job)


@router.post("/{job_id}/stages/{stage}", status_code=status.HTTP_202_ACCEPTED, response_model=StageTriggerResponse)
async def trigger_stage(
  job_id: str, stage: Literal["research", "script", "voice", "finalize"], user_id: CurrentUserId, background_tasks: BackgroundTasks, orchestrator: Orchestrator
) -> StageTriggerResponse:
  """Retry or resume one stage; preconditions are checked before accepting."""
  await _owned_job(orchestrator, job_id, user_id)
  claim = await orchestrator.claim(job_id, stage)
  if claim.skipped:
    return StageTriggerResponse(job_id=job_id, stage=stage, status="skipped")

  logger.info("User %s triggered %s for job %s", user_id, stage, job_id)
  background_tasks.add_task(run_claimed_stage, orchestrator, claim)
  return StageTriggerResponse(job_id=job_id, stage=stage, status="accepted")
