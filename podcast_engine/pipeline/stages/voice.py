"""Voice stage: sequential line-by-line synthesis with fallback audio."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from podcast_engine.jobs.models import AudioSegment, GenerationJob, TTSLine
from podcast_engine.pipeline.errors import NoAudioGenerated, ScriptNotFound, VoiceGenerationError
from podcast_engine.pipeline.progress import StageProgress
from podcast_engine.pipeline.stages.base import StageResult, StageRunner
from podcast_engine.providers.base import TTSProvider, VoiceSettings
from podcast_engine.services.blob_storage import BlobStorage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VoiceConfig:
  fallback_audio_url: str
  url_expires_at: datetime
  default_voice: str
  speaker_voices: dict[str, str] = field(default_factory=dict, hash=False)
  stability: float = 0.5
  similarity_boost: float = 0.75

  def voice_for(self, line: TTSLine) -> VoiceSettings:
    voice = self.speaker_voices.get(line.speaker, self.default_voice)
    return VoiceSettings(voice=voice, stability=self.stability, similarity_boost=self.similarity_boost, emotion=line.emotion)


@dataclass(frozen=True)
class BatchSynthesisResult:
  segments: list[AudioSegment]
  failed_line_ids: list[str]


def extract_tts_lines(script: dict[str, Any]) -> list[TTSLine]:
  """Flatten a script into ordered lines; entries without speaker or text are skipped."""
  lines: list[TTSLine] = []
  for segment in script.get("segments") or []:
    for entry in segment.get("lines") or []:
      speaker = str(entry.get("speaker") or "").strip()
      text = str(entry.get("text") or "").strip()
      if not speaker or not text:
        continue
      lines.append(TTSLine(line_id=f"line_{len(lines) + 1}", speaker=speaker, text=text, emotion=entry.get("emotion") or None))
  return lines


async def synthesize_batch(
  lines: list[TTSLine],
  *,
  job_id: str,
  tts: TTSProvider,
  storage: BlobStorage,
  config: VoiceConfig,
  on_line_done: Callable[[int, int], Awaitable[None]] | None = None,
) -> BatchSynthesisResult:
  """Synthesize lines one at a time; the output always has one entry per input line."""
  segments: list[AudioSegment] = []
  failed: list[str] = []

  for index, line in enumerate(lines):
    try:
      audio = await tts.synthesize(line.text, config.voice_for(line))
      key = f"episodes/{job_id}/lines/{line.line_id}{tts.file_extension}"
      await storage.upload_bytes(audio, key, tts.content_type)
      url = await storage.get_read_url(key, config.url_expires_at)
      segments.append(AudioSegment(url=url, line_id=line.line_id))
    except Exception as exc:
      # One bad line gets the fallback clip instead of failing the episode.
      logger.warning("TTS failed for job %s %s: %s", job_id, line.line_id, exc)
      segments.append(AudioSegment(url=config.fallback_audio_url, line_id=line.line_id))
      failed.append(line.line_id)

    # Outside the per-line guard so cancellation is never masked as a line failure.
    if on_line_done is not None:
      await on_line_done(index + 1, len(lines))

  return BatchSynthesisResult(segments=segments, failed_line_ids=failed)


class VoiceRunner(StageRunner):
  stage = "voice"
  failure_error = VoiceGenerationError

  def __init__(self, *, tts: TTSProvider, storage: BlobStorage, config: VoiceConfig) -> None:
    self._tts = tts
    self._storage = storage
    self._config = config

  def check_preconditions(self, job: GenerationJob) -> None:
    if not job.scripts:
      raise ScriptNotFound(f"Job {job.job_id} has no script.")

  async def run(self, job: GenerationJob, progress: StageProgress) -> StageResult:
    lines = extract_tts_lines(job.scripts[0])

    async def _report(done: int, total: int) -> None:
      await progress.report(done / total * 95)

    result = await synthesize_batch(lines, job_id=job.job_id, tts=self._tts, storage=self._storage, config=self._config, on_line_done=_report)
    if result.failed_line_ids:
      logger.warning("Job %s used fallback audio for %s/%s lines: %s", job.job_id, len(result.failed_line_ids), len(lines), ", ".join(result.failed_line_ids))
    if not result.segments:
      raise NoAudioGenerated(f"Script for job {job.job_id} has no speakable lines.")

    return StageResult(outputs={"audio": [segment.to_dict() for segment in result.segments]})
