"""Shared fixtures: in-memory stores and fake providers wired into an orchestrator."""

from __future__ import annotations

from pathlib import Path

import pytest

from podcast_engine.pipeline.orchestrator import PipelineOrchestrator
from podcast_engine.pipeline.stages.finalize import FinalizeConfig, FinalizeRunner
from podcast_engine.pipeline.stages.research import ResearchConfig, ResearchRunner
from podcast_engine.pipeline.stages.script import ScriptRunner
from podcast_engine.pipeline.stages.voice import VoiceConfig, VoiceRunner
from podcast_engine.services.credits import CreditLedger
from podcast_engine.storage.jobs_repo import GenerationJobsRepository
from podcast_engine.storage.memory_store import InMemoryCreditAccountStore, InMemoryJobStore
from tests.fakes import EXPIRES_AT, FALLBACK_URL, FakeBlobStorage, FakeDownloader, FakeMerger, FakeResearchProvider, FakeScriptProvider, FakeTTS, RecordingDispatcher, RecordingNotifier


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
def job_store() -> InMemoryJobStore:
  return InMemoryJobStore()


@pytest.fixture
def accounts() -> InMemoryCreditAccountStore:
  store = InMemoryCreditAccountStore()
  store.add_account("user-1", 100)
  return store


@pytest.fixture
def jobs_repo(job_store: InMemoryJobStore) -> GenerationJobsRepository:
  return GenerationJobsRepository(job_store)


@pytest.fixture
def blob_storage() -> FakeBlobStorage:
  return FakeBlobStorage()


@pytest.fixture
def tts() -> FakeTTS:
  return FakeTTS()


@pytest.fixture
def downloader() -> FakeDownloader:
  return FakeDownloader()


@pytest.fixture
def merger() -> FakeMerger:
  return FakeMerger()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
  return RecordingDispatcher()


@pytest.fixture
def notifier() -> RecordingNotifier:
  return RecordingNotifier()


@pytest.fixture
def voice_config() -> VoiceConfig:
  return VoiceConfig(fallback_audio_url=FALLBACK_URL, url_expires_at=EXPIRES_AT, default_voice="Kore", speaker_voices={"Guest": "Puck"})


@pytest.fixture
def finalize_runner(blob_storage: FakeBlobStorage, downloader: FakeDownloader, merger: FakeMerger, tmp_path: Path) -> FinalizeRunner:
  return FinalizeRunner(storage=blob_storage, downloader=downloader, merger=merger, config=FinalizeConfig(scratch_dir=tmp_path / "scratch", url_expires_at=EXPIRES_AT))


@pytest.fixture
def orchestrator(
  jobs_repo: GenerationJobsRepository,
  accounts: InMemoryCreditAccountStore,
  tts: FakeTTS,
  blob_storage: FakeBlobStorage,
  voice_config: VoiceConfig,
  finalize_runner: FinalizeRunner,
  dispatcher: RecordingDispatcher,
  notifier: RecordingNotifier,
) -> PipelineOrchestrator:
  runners = {
    "research": ResearchRunner(provider=FakeResearchProvider(), config=ResearchConfig()),
    "script": ScriptRunner(provider=FakeScriptProvider()),
    "voice": VoiceRunner(tts=tts, storage=blob_storage, config=voice_config),
    "finalize": finalize_runner,
  }
  return PipelineOrchestrator(jobs_repo=jobs_repo, ledger=CreditLedger(accounts), runners=runners, dispatcher=dispatcher, notifier=notifier)
