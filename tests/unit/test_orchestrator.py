from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from podcast_engine.pipeline.errors import AudioNotFound, EpisodeNotFound, FinalUpdateFailed, InsufficientCredits, InvalidAudioData, JobCanceled, JobNotFound, ResearchGenerationError, ResearchNotFound, StageAlreadyRunning, ValidationFailed
from podcast_engine.pipeline.orchestrator import PipelineOrchestrator
from podcast_engine.pipeline.stages.research import ResearchConfig, ResearchRunner
from podcast_engine.pipeline.stages.script import ScriptRunner
from podcast_engine.pipeline.stages.voice import VoiceRunner
from podcast_engine.services.credits import CreditLedger
from podcast_engine.utils.ids import now_iso
from tests.fakes import FakeResearchProvider, FakeScriptProvider, make_config, make_script

STAGES = ("research", "script", "voice", "finalize")


async def _run_through(orchestrator: PipelineOrchestrator, job_id: str, *stages: str) -> None:
  for stage in stages:
    await orchestrator.advance(job_id, stage)


@pytest.mark.anyio
async def test_create_job_debits_persists_and_triggers_research(orchestrator, accounts, dispatcher) -> None:
  job = await orchestrator.create_job(user_id="user-1", config=make_config())

  assert job.credits_used == 6
  assert await accounts.get_balance("user-1") == 94
  stored = await orchestrator.get_job(job.job_id)
  assert stored.status == "pending"
  assert [step.status for step in stored.steps] == ["pending"] * 4
  assert dispatcher.calls == [(job.job_id, "research")]


@pytest.mark.anyio
async def test_create_job_with_insufficient_credits_creates_nothing(orchestrator, accounts, job_store, dispatcher) -> None:
  accounts.add_account("user-2", 5)

  with pytest.raises(InsufficientCredits):
    await orchestrator.create_job(user_id="user-2", config=make_config())

  assert job_store._documents == {}
  assert await accounts.get_balance("user-2") == 5
  assert dispatcher.calls == []


@pytest.mark.anyio
async def test_create_job_rejects_invalid_config_before_charging(orchestrator, accounts) -> None:
  with pytest.raises(ValidationFailed) as excinfo:
    await orchestrator.create_job(user_id="user-1", config=make_config(), scheduled_episode_count=3)

  assert excinfo.value.details["errors"]
  assert await accounts.get_balance("user-1") == 100


@pytest.mark.anyio
async def test_create_job_refunds_when_persisting_fails(orchestrator, accounts, jobs_repo, monkeypatch) -> None:
  monkeypatch.setattr(jobs_repo, "create", AsyncMock(side_effect=RuntimeError("database unavailable")))

  with pytest.raises(RuntimeError):
    await orchestrator.create_job(user_id="user-1", config=make_config())

  assert await accounts.get_balance("user-1") == 100


@pytest.mark.anyio
async def test_create_job_survives_dispatch_failure(orchestrator, dispatcher) -> None:
  dispatcher.fail = True
  job = await orchestrator.create_job(user_id="user-1", config=make_config())
  assert (await orchestrator.get_job(job.job_id)).status == "pending"


@pytest.mark.anyio
async def test_full_pipeline_completes_and_notifies(orchestrator, dispatcher, notifier, blob_storage) -> None:
  job = await orchestrator.create_job(user_id="user-1", config=make_config())

  outcomes = [await orchestrator.advance(job.job_id, stage) for stage in STAGES]

  assert [outcome.next_stage for outcome in outcomes] == ["script", "voice", "finalize", None]
  assert all(outcome.status == "completed" for outcome in outcomes[:3])
  assert [stage for _, stage in dispatcher.calls] == list(STAGES)
  final = await orchestrator.get_job(job.job_id)
  assert final.status == "completed"
  assert final.finalized is True
  assert final.public_audio_url == f"https://storage.test/episodes/{job.job_id}/{job.job_id}_final.mp3"
  assert [(step.status, step.progress) for step in final.steps] == [("completed", 100)] * 4
  assert len(final.scripts) == 2
  assert [entry["line_id"] for entry in final.audio] == ["line_1", "line_2", "line_3"]
  assert [notified.job_id for notified in notifier.jobs] == [job.job_id]
  assert outcomes[-1].notification.delivered


@pytest.mark.anyio
async def test_completed_stage_is_skipped_without_rerunning(orchestrator, dispatcher) -> None:
  job = await orchestrator.create_job(user_id="user-1", config=make_config())
  await orchestrator.advance(job.job_id, "research")
  before = await orchestrator.get_job(job.job_id)

  outcome = await orchestrator.advance(job.job_id, "research")

  assert outcome.status == "skipped"
  assert (await orchestrator.get_job(job.job_id)).research == before.research
  assert [stage for _, stage in dispatcher.calls] == ["research", "script"]


@pytest.mark.anyio
async def test_stage_preconditions_leave_job_untouched(orchestrator) -> None:
  job = await orchestrator.create_job(user_id="user-1", config=make_config())

  with pytest.raises(ResearchNotFound):
    await orchestrator.advance(job.job_id, "script")

  stored = await orchestrator.get_job(job.job_id)
  assert stored.status == "pending"
  assert stored.step("script").status == "pending"


@pytest.mark.anyio
async def test_concurrent_trigger_is_rejected_while_processing(orchestrator, jobs_repo) -> None:
  job = await orchestrator.create_job(user_id="user-1", config=make_config())
  await orchestrator.claim(job.job_id, "research")

  with pytest.raises(StageAlreadyRunning):
    await orchestrator.claim(job.job_id, "research")


@pytest.mark.anyio
async def test_abandoned_stage_is_reclaimed_after_lease(orchestrator, jobs_repo) -> None:
  job = await orchestrator.create_job(user_id="user-1", config=make_config())

  def _stale(record) -> None:
    step = record.step("research")
    step.status = "processing"
    step.started_at = "2020-01-01T00:00:00Z"

  await jobs_repo.mutate(job.job_id, _stale)

  claim = await orchestrator.claim(job.job_id, "research")

  assert not claim.skipped
  step = claim.job.step("research")
  assert step.status == "processing"
  assert step.started_at != "2020-01-01T00:00:00Z"


@pytest.mark.anyio
async def test_failed_stage_records_error_and_can_be_retried(jobs_repo, accounts, tts, blob_storage, voice_config, finalize_runner, dispatcher, notifier) -> None:
  provider = FakeResearchProvider(text="Too short.")
  runners = {
    "research": ResearchRunner(provider=provider, config=ResearchConfig()),
    "script": ScriptRunner(provider=FakeScriptProvider()),
    "voice": VoiceRunner(tts=tts, storage=blob_storage, config=voice_config),
    "finalize": finalize_runner,
  }
  orchestrator = PipelineOrchestrator(jobs_repo=jobs_repo, ledger=CreditLedger(accounts), runners=runners, dispatcher=dispatcher, notifier=notifier)
  job = await orchestrator.create_job(user_id="user-1", config=make_config())

  with pytest.raises(ResearchGenerationError):
    await orchestrator.advance(job.job_id, "research")

  failed = await orchestrator.get_job(job.job_id)
  assert failed.status == "error"
  assert failed.step("research").status == "error"
  assert failed.step("research").error_code == "RESEARCH_GENERATION_ERROR"
  assert [stage for _, stage in dispatcher.calls] == ["research"]

  provider.text = FakeResearchProvider().text
  outcome = await orchestrator.advance(job.job_id, "research")

  assert outcome.status == "completed"
  retried = await orchestrator.get_job(job.job_id)
  assert retried.status == "research"
  assert retried.step("research").error is None
  assert retried.step("research").error_code is None


@pytest.mark.anyio
async def test_unexpected_runner_crash_is_wrapped(orchestrator, jobs_repo, monkeypatch) -> None:
  job = await orchestrator.create_job(user_id="user-1", config=make_config())
  runner = orchestrator._runners["research"]
  monkeypatch.setattr(runner, "run", AsyncMock(side_effect=KeyError("facts")))

  with pytest.raises(ResearchGenerationError):
    await orchestrator.advance(job.job_id, "research")

  assert (await jobs_repo.require(job.job_id)).step("research").status == "error"


@pytest.mark.anyio
async def test_canceled_job_cannot_start_a_stage(orchestrator) -> None:
  job = await orchestrator.create_job(user_id="user-1", config=make_config())
  await _run_through(orchestrator, job.job_id, "research", "script")
  await orchestrator.cancel(job.job_id)

  with pytest.raises(JobCanceled):
    await orchestrator.advance(job.job_id, "voice")

  stored = await orchestrator.get_job(job.job_id)
  assert stored.status == "canceled"
  assert stored.audio == []


@pytest.mark.anyio
async def test_cancel_during_run_stops_at_next_progress_report(orchestrator, tts) -> None:
  job = await orchestrator.create_job(user_id="user-1", config=make_config())
  await _run_through(orchestrator, job.job_id, "research", "script")
  claim = await orchestrator.claim(job.job_id, "voice")
  await orchestrator.cancel(job.job_id)

  with pytest.raises(JobCanceled):
    await orchestrator.execute(claim)

  stored = await orchestrator.get_job(job.job_id)
  assert stored.status == "canceled"
  assert stored.step("voice").status == "error"
  assert stored.step("voice").error_code == "JOB_CANCELED"
  assert len(tts.texts) == 1


@pytest.mark.anyio
async def test_finalized_job_cannot_be_canceled_or_refunded(orchestrator) -> None:
  job = await orchestrator.create_job(user_id="user-1", config=make_config())
  await _run_through(orchestrator, job.job_id, *STAGES)

  with pytest.raises(ValidationFailed):
    await orchestrator.cancel(job.job_id)
  with pytest.raises(ValidationFailed):
    await orchestrator.refund_job(job.job_id)


@pytest.mark.anyio
async def test_refund_is_applied_once(orchestrator, accounts) -> None:
  job = await orchestrator.create_job(user_id="user-1", config=make_config())
  await orchestrator.cancel(job.job_id)

  assert await orchestrator.refund_job(job.job_id) == 6
  assert await orchestrator.refund_job(job.job_id) == 0
  assert await accounts.get_balance("user-1") == 100


@pytest.mark.anyio
async def test_unknown_job_uses_stage_specific_not_found(orchestrator) -> None:
  with pytest.raises(JobNotFound) as excinfo:
    await orchestrator.advance("ghost", "research")
  assert excinfo.value.code == "JOB_NOT_FOUND"

  with pytest.raises(EpisodeNotFound):
    await orchestrator.advance("ghost", "finalize")


@pytest.mark.anyio
async def test_unknown_stage_is_rejected(orchestrator) -> None:
  with pytest.raises(ValidationFailed):
    await orchestrator.claim("job-1", "publish")


def test_missing_runner_is_a_wiring_error(jobs_repo, accounts, dispatcher, notifier) -> None:
  with pytest.raises(ValueError):
    PipelineOrchestrator(jobs_repo=jobs_repo, ledger=CreditLedger(accounts), runners={}, dispatcher=dispatcher, notifier=notifier)


@pytest.mark.anyio
async def test_fresh_processing_step_from_now_is_not_expired(orchestrator, jobs_repo) -> None:
  job = await orchestrator.create_job(user_id="user-1", config=make_config())

  def _running(record) -> None:
    record.step("research").status = "processing"
    record.step("research").started_at = now_iso()

  await jobs_repo.mutate(job.job_id, _running)

  with pytest.raises(StageAlreadyRunning) as excinfo:
    await orchestrator.claim(job.job_id, "research")
  assert excinfo.value.details == {"running_stage": "research"}


@pytest.mark.anyio
@pytest.mark.parametrize(("audio", "error"), [([], AudioNotFound), ([{"url": "not a url"}], InvalidAudioData)])
async def test_finalize_without_usable_audio_changes_nothing(orchestrator, jobs_repo, job_store, finalize_runner, audio, error) -> None:
  job = await orchestrator.create_job(user_id="user-1", config=make_config())

  def _ready(record) -> None:
    record.scripts = [make_script()]
    record.audio = audio

  await jobs_repo.mutate(job.job_id, _ready)
  before = await job_store.get(job.job_id)

  with pytest.raises(error):
    await orchestrator.advance(job.job_id, "finalize")

  assert await job_store.get(job.job_id) == before
  stored = await orchestrator.get_job(job.job_id)
  assert stored.step("finalize").status == "pending"
  assert stored.finalized is False
  assert not finalize_runner.work_dir(job.job_id).exists()


@pytest.mark.anyio
async def test_reclaiming_failed_step_resets_error_and_progress(orchestrator, jobs_repo) -> None:
  job = await orchestrator.create_job(user_id="user-1", config=make_config())

  def _failed(record) -> None:
    step = record.step("research")
    step.status = "error"
    step.progress = 60
    step.error = "tavily: HTTP 500"
    step.error_code = "RESEARCH_GENERATION_ERROR"
    step.completed_at = "2026-01-01T00:05:00Z"
    record.status = "error"

  await jobs_repo.mutate(job.job_id, _failed)

  claim = await orchestrator.claim(job.job_id, "research")

  step = (await orchestrator.get_job(job.job_id)).step("research")
  assert not claim.skipped
  assert (step.status, step.error, step.error_code, step.progress, step.completed_at) == ("processing", None, None, 0, None)
  assert step.started_at is not None


@pytest.mark.anyio
async def test_failed_completion_write_reports_final_update_failed(orchestrator, jobs_repo, finalize_runner, monkeypatch) -> None:
  job = await orchestrator.create_job(user_id="user-1", config=make_config())
  await _run_through(orchestrator, job.job_id, "research", "script", "voice")
  real_mutate = jobs_repo.mutate

  async def _mutate(job_id, mutator, **kwargs):
    if "_complete" in mutator.__qualname__:
      raise RuntimeError("document store unavailable")
    return await real_mutate(job_id, mutator, **kwargs)

  monkeypatch.setattr(jobs_repo, "mutate", _mutate)

  with pytest.raises(FinalUpdateFailed):
    await orchestrator.advance(job.job_id, "finalize")

  stored = await orchestrator.get_job(job.job_id)
  step = stored.step("finalize")
  assert (step.status, step.error_code, step.progress) == ("error", "FINAL_UPDATE_FAILED", 80)
  assert stored.finalized is False
  assert stored.public_audio_url is None
  assert stored.status == "error"
  assert not finalize_runner.work_dir(job.job_id).exists()
