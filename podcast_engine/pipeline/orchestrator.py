"""Drives a generation job through research, script, voice and finalize."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

from podcast_engine.jobs.models import STAGE_ORDER, STAGE_OUTPUT_FIELDS, GenerationJob, JobConfig, StageType, Step, next_stage
from podcast_engine.notifications.webhook import CompletionNotifier, DeliveryResult
from podcast_engine.pipeline.errors import JobCanceled, PipelineError, StageAlreadyRunning, ValidationFailed
from podcast_engine.pipeline.progress import StageProgress
from podcast_engine.pipeline.stages.base import StageResult, StageRunner
from podcast_engine.services.credits import CreditLedger, price_job
from podcast_engine.services.tasks.interface import StageDispatcher
from podcast_engine.storage.jobs_repo import GenerationJobsRepository
from podcast_engine.utils.ids import generate_job_id, now_iso, parse_iso, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageClaim:
  """A stage that passed its preconditions and was marked processing."""

  job: GenerationJob
  stage: StageType
  skipped: bool = False


@dataclass(frozen=True)
class StageOutcome:
  job: GenerationJob
  stage: StageType
  status: Literal["completed", "skipped"]
  next_stage: StageType | None = None
  dispatched: bool = False
  notification: DeliveryResult | None = None


class PipelineOrchestrator:
  """Prices and creates jobs, then runs one stage per external trigger."""

  def __init__(
    self,
    *,
    jobs_repo: GenerationJobsRepository,
    ledger: CreditLedger,
    runners: Mapping[StageType, StageRunner],
    dispatcher: StageDispatcher,
    notifier: CompletionNotifier,
    stage_lease_seconds: int = 1800,
  ) -> None:
    missing = [stage for stage in STAGE_ORDER if stage not in runners]
    if missing:
      raise ValueError(f"Missing stage runners: {', '.join(missing)}")
    self._jobs_repo = jobs_repo
    self._ledger = ledger
    self._runners = dict(runners)
    self._dispatcher = dispatcher
    self._notifier = notifier
    self._stage_lease = timedelta(seconds=stage_lease_seconds)

  async def get_job(self, job_id: str) -> GenerationJob:
    return await self._jobs_repo.require(job_id)

  async def create_job(self, *, user_id: str, config: JobConfig, scheduled_episode_count: int = 0) -> GenerationJob:
    """Validate, price and reserve credits, persist the job and trigger research."""
    problems = config.validation_errors()
    if not 0 <= scheduled_episode_count <= config.episode_count:
      problems.append("scheduled_episode_count must be between 0 and episode_count")
    if problems:
      raise ValidationFailed("; ".join(problems), details={"errors": problems})

    plan = await self._ledger.plan_for(user_id)
    credits = price_job(config.episode_length_tier, config.episode_count, config.promo_word_count, scheduled_episode_count, plan)
    # No job or step exists until the debit succeeds.
    await self._ledger.reserve(user_id, credits)

    job = GenerationJob.new(job_id=generate_job_id(), user_id=user_id, config=config, credits_used=credits, now=now_iso())
    try:
      await self._jobs_repo.create(job)
    except Exception:
      logger.error("Failed to persist job for user %s; refunding %s credits", user_id, credits, exc_info=True)
      await self._ledger.refund(user_id, credits)
      raise

    logger.info("Created job %s for user %s (%s credits, plan %s)", job.job_id, user_id, credits, plan)
    await self._dispatch(job.job_id, "research")
    return job

  async def advance(self, job_id: str, stage: StageType) -> StageOutcome:
    """Claim and run one stage to completion or failure."""
    claim = await self.claim(job_id, stage)
    return await self.execute(claim)

  async def claim(self, job_id: str, stage: StageType) -> StageClaim:
    """Check preconditions and mark the step processing in one transaction.

    Completed steps are skipped without side effects. Any failure here leaves
    the job untouched.
    """
    runner = self._runner(stage)
    now = utc_now()

    def _claim(job: GenerationJob) -> bool:
      if job.status == "canceled":
        raise JobCanceled(f"Job {job_id} was canceled.")
      step = job.step(stage)
      if step.status == "completed":
        return False

      running = job.processing_step()
      if running is not None:
        if not self._lease_expired(running, now):
          raise StageAlreadyRunning(f"Stage {running.type} is already processing for job {job_id}.", details={"running_stage": running.type})
        logger.warning("Reclaiming abandoned %s step for job %s (started %s)", running.type, job_id, running.started_at)
        running.status = "error"
        running.error = "Stage run was abandoned."
        running.error_code = "STAGE_ABANDONED"

      runner.check_preconditions(job)

      step.status = "processing"
      step.started_at = now_iso()
      step.completed_at = None
      step.error = None
      step.error_code = None
      step.progress = 0
      return True

    job, claimed = await self._jobs_repo.mutate(job_id, _claim, missing=lambda: runner.not_found_error(f"Job {job_id} not found."))
    return StageClaim(job=job, stage=stage, skipped=not claimed)

  async def execute(self, claim: StageClaim) -> StageOutcome:
    """Run a claimed stage, persist its outcome and hand off to the next stage."""
    job_id = claim.job.job_id
    stage = claim.stage
    if claim.skipped:
      logger.info("Stage %s already completed for job %s; skipping", stage, job_id)
      return StageOutcome(job=claim.job, stage=stage, status="skipped")

    runner = self._runner(stage)
    progress = StageProgress(job_id=job_id, stage=stage, jobs_repo=self._jobs_repo)
    logger.info("Running stage %s for job %s", stage, job_id)
    try:
      try:
        result = await runner.run(claim.job, progress)
      except PipelineError:
        raise
      except Exception as exc:
        logger.error("Stage %s crashed for job %s", stage, job_id, exc_info=True)
        raise runner.failure_error(str(exc) or type(exc).__name__) from exc
      job = await self._complete(job_id, stage, result, runner)
    except PipelineError as exc:
      await self._record_failure(job_id, stage, exc)
      raise
    finally:
      await self._cleanup(runner, claim.job)

    logger.info("Stage %s completed for job %s", stage, job_id)
    following = next_stage(stage)
    if following is None:
      notification = await self._notify(job)
      return StageOutcome(job=job, stage=stage, status="completed", notification=notification)

    dispatched = await self._dispatch(job_id, following)
    return StageOutcome(job=job, stage=stage, status="completed", next_stage=following, dispatched=dispatched)

  async def cancel(self, job_id: str) -> GenerationJob:
    """Mark a job canceled; running stages stop at their next progress report."""

    def _cancel(job: GenerationJob) -> None:
      if job.finalized:
        raise ValidationFailed(f"Job {job_id} is already finalized.")
      job.status = "canceled"

    job, _ = await self._jobs_repo.mutate(job_id, _cancel)
    logger.info("Canceled job %s", job_id)
    return job

  async def refund_job(self, job_id: str) -> int:
    """Return a job's credits to its owner once; finalized jobs are not refundable."""

    def _mark_refunded(job: GenerationJob) -> int:
      if job.refunded:
        return 0
      if job.finalized:
        raise ValidationFailed(f"Job {job_id} is finalized and cannot be refunded.")
      job.refunded = True
      return job.credits_used

    job, amount = await self._jobs_repo.mutate(job_id, _mark_refunded)
    if amount:
      await self._ledger.refund(job.user_id, amount)
    return amount

  def _runner(self, stage: StageType) -> StageRunner:
    try:
      return self._runners[stage]
    except KeyError as exc:
      raise ValidationFailed(f"Unknown stage {stage!r}.") from exc

  def _lease_expired(self, step: Step, now: datetime) -> bool:
    if not step.started_at:
      return False
    return now - parse_iso(step.started_at) > self._stage_lease

  async def _complete(self, job_id: str, stage: StageType, result: StageResult, runner: StageRunner) -> GenerationJob:
    unexpected = set(result.outputs) - STAGE_OUTPUT_FIELDS[stage]
    if unexpected:
      raise runner.failure_error(f"Stage {stage} produced fields it does not own: {', '.join(sorted(unexpected))}")

    def _apply(job: GenerationJob) -> None:
      if job.status == "canceled":
        raise JobCanceled(f"Job {job_id} was canceled.")
      for name, value in result.outputs.items():
        setattr(job, name, value)
      step = job.step(stage)
      step.status = "completed"
      step.completed_at = now_iso()
      step.progress = 100
      step.error = None
      step.error_code = None
      job.status = "completed" if stage == "finalize" else stage

    try:
      job, _ = await self._jobs_repo.mutate(job_id, _apply)
    except PipelineError:
      raise
    except Exception as exc:
      error_type = runner.commit_error or runner.failure_error
      raise error_type(f"Failed to record {stage} results: {exc}") from exc
    return job

  async def _record_failure(self, job_id: str, stage: StageType, error: PipelineError) -> None:
    logger.warning("Stage %s failed for job %s: %s %s", stage, job_id, error.code, error.message)

    def _fail(job: GenerationJob) -> None:
      step = job.step(stage)
      step.status = "error"
      step.error = error.message
      step.error_code = error.code
      if job.status != "canceled":
        job.status = "error"

    try:
      await self._jobs_repo.mutate(job_id, _fail)
    except Exception:
      logger.error("Could not record %s failure for job %s", stage, job_id, exc_info=True)

  async def _cleanup(self, runner: StageRunner, job: GenerationJob) -> None:
    try:
      report = await runner.cleanup(job)
    except Exception:
      logger.error("Cleanup crashed for job %s stage %s", job.job_id, runner.stage, exc_info=True)
      return
    if report is None:
      return
    if report.ok:
      logger.info("Cleaned %s scratch files for job %s", len(report.removed), job.job_id)
    else:
      logger.warning("Cleanup for job %s left files behind: %s", job.job_id, "; ".join(report.errors))

  async def _dispatch(self, job_id: str, stage: StageType) -> bool:
    try:
      await self._dispatcher.dispatch(job_id, stage)
    except Exception:
      # The stage can still be triggered again; the job record is already durable.
      logger.error("Failed to dispatch %s for job %s", stage, job_id, exc_info=True)
      return False
    return True

  async def _notify(self, job: GenerationJob) -> DeliveryResult:
    try:
      result = await self._notifier.notify_finalized(job)
    except Exception as exc:
      logger.error("Completion notifier crashed for job %s", job.job_id, exc_info=True)
      return DeliveryResult(delivered=False, error=str(exc))
    if result.skipped:
      logger.info("No completion webhook configured; skipped for job %s", job.job_id)
    elif result.delivered:
      logger.info("Completion webhook delivered for job %s", job.job_id)
    else:
      logger.warning("Completion webhook failed for job %s: %s", job.job_id, result.error)
    return result
