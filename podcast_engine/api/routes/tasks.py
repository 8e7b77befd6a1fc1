from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, status

from podcast_engine.api.deps import get_orchestrator, run_claimed_stage
from podcast_engine.api.models import AdvanceStageRequest, RefundRequest, RefundResponse, StageTriggerResponse
from podcast_engine.config import Settings, get_settings
from podcast_engine.pipeline.orchestrator import PipelineOrchestrator

router = APIRouter(prefix="/tasks", tags=["tasks"])
logger = logging.getLogger(__name__)


def require_task_secret(settings: Annotated[Settings, Depends(get_settings)], authorization: str | None = Header(default=None), x_podcast_task_secret: str | None = Header(default=None)) -> None:
  """Reject internal calls that do not carry the shared task secret."""
  if not settings.task_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Task authentication is not configured.")
  # Cloud Tasks OIDC occupies Authorization, so the dedicated header is checked first.
  shared_secret_valid = secrets.compare_digest(x_podcast_task_secret or "", settings.task_secret)
  bearer_valid = secrets.compare_digest(authorization or "", f"Bearer {settings.task_secret}")
  if not shared_secret_valid and not bearer_valid:
    logger.warning("Unauthorized access attempt to internal task endpoint")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid task secret.")


@router.post("/advance", status_code=status.HTTP_202_ACCEPTED, response_model=StageTriggerResponse, dependencies=[Depends(require_task_secret)])
async def advance_stage_task(payload: AdvanceStageRequest, background_tasks: BackgroundTasks, orchestrator: Annotated[PipelineOrchestrator, Depends(get_orchestrator)]) -> StageTriggerResponse:
  """
  Dispatcher target for local HTTP and Cloud Tasks.
  Claims synchronously so precondition failures reach the caller, then runs the stage in the background.
  """
  logger.info("Received %s task for job %s", payload.stage, payload.job_id)
  claim = await orchestrator.claim(payload.job_id, payload.stage)
  if claim.skipped:
    return StageTriggerResponse(job_id=payload.job_id, stage=payload.stage, status="skipped")

  background_tasks.add_task(run_claimed_stage, orchestrator, claim)
  return StageTriggerResponse(job_id=payload.job_id, stage=payload.stage, status="accepted")


@router.post("/refund", response_model=RefundResponse, dependencies=[Depends(require_task_secret)])
async def refund_job_task(payload: RefundRequest, orchestrator: Annotated[PipelineOrchestrator, Depends(get_orchestrator)]) -> RefundResponse:
  """Operator refund; repeated calls for the same job return zero."""
  amount = await orchestrator.refund_job(payload.job_id)
  logger.info("Refund for job %s returned %s credits", payload.job_id, amount)
  return RefundResponse(job_id=payload.job_id, refunded_credits=amount)
