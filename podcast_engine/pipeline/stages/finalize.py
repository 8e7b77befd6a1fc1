"""Finalize stage: merge ordered line audio into one published episode."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, HttpUrl, TypeAdapter, ValidationError

from podcast_engine.jobs.models import GenerationJob
from podcast_engine.pipeline.audio import AudioMerger, SegmentDownloader
from podcast_engine.pipeline.errors import AudioDownloadFailed, AudioMergeFailed, AudioNotFound, EpisodeNotFound, FinalizeError, FinalUpdateFailed, InvalidAudioData, ScriptNotFound, UploadFailed
from podcast_engine.pipeline.progress import StageProgress
from podcast_engine.pipeline.stages.base import CleanupReport, StageResult, StageRunner
from podcast_engine.services.blob_storage import BlobStorage
from podcast_engine.utils.ids import now_iso

logger = logging.getLogger(__name__)

DOWNLOAD_PROGRESS_SHARE = 40
MERGE_START_PROGRESS = 50
UPLOAD_START_PROGRESS = 80
_AUDIO_SUFFIXES = {".mp3", ".wav", ".ogg", ".m4a", ".aac", ".flac"}


class _AudioEntry(BaseModel):
  url: HttpUrl
  line_id: str | None = None
  model_config = ConfigDict(extra="ignore")


_AUDIO_LIST = TypeAdapter(list[_AudioEntry])


@dataclass(frozen=True)
class FinalizeConfig:
  scratch_dir: Path
  url_expires_at: datetime
  content_type: str = "audio/mpeg"


def validate_audio_segments(audio: list[object]) -> list[str]:
  """Return the ordered segment URLs or raise AudioNotFound / InvalidAudioData."""
  if not audio:
    raise AudioNotFound()
  try:
    entries = _AUDIO_LIST.validate_python(audio)
  except ValidationError as exc:
    raise InvalidAudioData(details={"errors": [f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()]}) from exc
  return [str(entry.url) for entry in entries]


def final_object_key(job_id: str) -> str:
  return f"episodes/{job_id}/{job_id}_final.mp3"


def _segment_suffix(url: str) -> str:
  suffix = Path(urlparse(url).path).suffix.lower()
  return suffix if suffix in _AUDIO_SUFFIXES else ".mp3"


class FinalizeRunner(StageRunner):
  stage = "finalize"
  not_found_error = EpisodeNotFound
  failure_error = FinalizeError
  commit_error = FinalUpdateFailed

  def __init__(self, *, storage: BlobStorage, downloader: SegmentDownloader, merger: AudioMerger, config: FinalizeConfig) -> None:
    self._storage = storage
    self._downloader = downloader
    self._merger = merger
    self._config = config

  def work_dir(self, job_id: str) -> Path:
    return self._config.scratch_dir / job_id

  def check_preconditions(self, job: GenerationJob) -> None:
    if not job.scripts:
      raise ScriptNotFound(f"Job {job.job_id} has no script.")
    validate_audio_segments(job.audio)

  async def run(self, job: GenerationJob, progress: StageProgress) -> StageResult:
    urls = validate_audio_segments(job.audio)
    work_dir = self.work_dir(job.job_id)
    work_dir.mkdir(parents=True, exist_ok=True)

    local_files: list[Path] = []
    for index, url in enumerate(urls):
      destination = work_dir / f"segment_{index:04d}{_segment_suffix(url)}"
      try:
        await self._downloader.download(url, destination)
      except Exception as exc:
        raise AudioDownloadFailed(f"Segment {index} could not be downloaded: {exc}", details={"index": index, "url": url}) from exc
      local_files.append(destination)
      # Also the cancellation checkpoint between segments.
      await progress.report((index + 1) / len(urls) * DOWNLOAD_PROGRESS_SHARE)

    await progress.report(MERGE_START_PROGRESS)
    merged = work_dir / f"{job.job_id}_final.mp3"
    try:
      duration = await self._merger.merge(local_files, merged)
    except Exception as exc:
      raise AudioMergeFailed(str(exc)) from exc

    await progress.report(UPLOAD_START_PROGRESS)
    key = final_object_key(job.job_id)
    try:
      await self._storage.upload(merged, key, self._config.content_type)
      public_url = await self._storage.get_read_url(key, self._config.url_expires_at)
    except Exception as exc:
      raise UploadFailed(str(exc), details={"key": key}) from exc

    logger.info("Finalized job %s: %s segments, %.2fs", job.job_id, len(local_files), duration)
    return StageResult(outputs={"finalized": True, "finalized_at": now_iso(), "public_audio_url": public_url, "duration": duration})

  async def cleanup(self, job: GenerationJob) -> CleanupReport | None:
    work_dir = self.work_dir(job.job_id)
    if not work_dir.exists():
      return CleanupReport()

    removed: list[str] = []
    errors: list[str] = []
    for path in sorted(work_dir.iterdir()):
      try:
        if path.is_dir():
          shutil.rmtree(path)
        else:
          path.unlink()
        removed.append(path.name)
      except OSError as exc:
        errors.append(f"{path.name}: {exc}")
    try:
      work_dir.rmdir()
    except OSError as exc:
      errors.append(f"{work_dir.name}: {exc}")
    return CleanupReport(removed=tuple(removed), errors=tuple(errors))
