"""Wire the orchestrator from runtime settings."""

from __future__ import annotations

import logging
from pathlib import Path

from podcast_engine.config import Settings
from podcast_engine.core.firebase import get_async_firestore_client
from podcast_engine.notifications.webhook import build_completion_notifier
from podcast_engine.pipeline.audio import FfmpegAudioMerger, HttpSegmentDownloader
from podcast_engine.pipeline.orchestrator import PipelineOrchestrator
from podcast_engine.pipeline.stages.finalize import FinalizeConfig, FinalizeRunner
from podcast_engine.pipeline.stages.research import ResearchConfig, ResearchRunner
from podcast_engine.pipeline.stages.script import ScriptRunner
from podcast_engine.pipeline.stages.voice import VoiceConfig, VoiceRunner
from podcast_engine.providers.gemini import GeminiScriptProvider, GeminiSpeechProvider
from podcast_engine.providers.tavily import MAX_QUERY_CHARS, TavilyResearchProvider
from podcast_engine.services.blob_storage import build_blob_storage
from podcast_engine.services.credits import CreditLedger
from podcast_engine.services.tasks.factory import get_stage_dispatcher
from podcast_engine.storage.credit_accounts_repo import CreditAccountStore
from podcast_engine.storage.job_store import JobStore
from podcast_engine.storage.jobs_repo import GenerationJobsRepository
from podcast_engine.storage.memory_store import InMemoryCreditAccountStore, InMemoryJobStore

logger = logging.getLogger(__name__)


def build_stores(settings: Settings) -> tuple[JobStore, CreditAccountStore]:
  """Return the job and credit-account stores for the configured backend."""
  if settings.job_store == "memory":
    logger.warning("Using in-memory job store; jobs and balances are lost on restart.")
    return InMemoryJobStore(), InMemoryCreditAccountStore()

  if settings.job_store == "firestore":
    from podcast_engine.storage.firestore_store import FirestoreCreditAccountStore, FirestoreJobStore

    client = get_async_firestore_client(settings)
    return FirestoreJobStore(client, settings.firestore_jobs_collection), FirestoreCreditAccountStore(client, settings.firestore_users_collection)

  from podcast_engine.storage.postgres_store import PostgresCreditAccountStore, PostgresJobStore

  return PostgresJobStore(), PostgresCreditAccountStore()


def build_orchestrator(settings: Settings) -> PipelineOrchestrator:
  job_store, accounts = build_stores(settings)
  storage = build_blob_storage(settings)

  research = ResearchRunner(
    provider=TavilyResearchProvider(api_key=settings.tavily_api_key, max_results=settings.research_max_results, timeout_seconds=settings.research_timeout_seconds),
    config=ResearchConfig(max_prompt_chars=MAX_QUERY_CHARS),
  )
  script = ScriptRunner(provider=GeminiScriptProvider(api_key=settings.gemini_api_key, model=settings.script_model, timeout_seconds=settings.script_timeout_seconds))
  voice = VoiceRunner(
    tts=GeminiSpeechProvider(api_key=settings.gemini_api_key, model=settings.tts_model, timeout_seconds=settings.tts_timeout_seconds),
    storage=storage,
    config=VoiceConfig(
      fallback_audio_url=settings.fallback_audio_url,
      url_expires_at=settings.public_url_expires_at,
      default_voice=settings.tts_default_voice,
      speaker_voices=dict(settings.tts_voices),
    ),
  )
  finalize = FinalizeRunner(
    storage=storage,
    downloader=HttpSegmentDownloader(timeout_seconds=settings.download_timeout_seconds),
    merger=FfmpegAudioMerger(codec=settings.merge_codec, bitrate=settings.merge_bitrate, ffmpeg_binary=settings.ffmpeg_binary, ffprobe_binary=settings.ffprobe_binary),
    config=FinalizeConfig(scratch_dir=Path(settings.scratch_dir), url_expires_at=settings.public_url_expires_at),
  )

  return PipelineOrchestrator(
    jobs_repo=GenerationJobsRepository(job_store),
    ledger=CreditLedger(accounts),
    runners={"research": research, "script": script, "voice": voice, "finalize": finalize},
    dispatcher=get_stage_dispatcher(settings),
    notifier=build_completion_notifier(url=settings.completion_webhook_url, secret=settings.completion_webhook_secret, timeout_seconds=settings.completion_webhook_timeout_seconds),
    stage_lease_seconds=settings.stage_lease_seconds,
  )
