from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from podcast_engine.jobs.models import TTSLine
from podcast_engine.pipeline.errors import JobCanceled, NoAudioGenerated, ScriptNotFound
from podcast_engine.pipeline.stages.voice import VoiceRunner, extract_tts_lines, synthesize_batch
from tests.fakes import FALLBACK_URL, FakeBlobStorage, FakeTTS, make_job, make_script


def _lines(count: int) -> list[TTSLine]:
  return [TTSLine(line_id=f"line_{index}", speaker="Host", text=f"Line {index}") for index in range(1, count + 1)]


def test_extract_tts_lines_numbers_across_segments_and_skips_incomplete() -> None:
  script = make_script()
  script["segments"][1]["lines"].append({"speaker": "", "text": "orphan"})
  script["segments"][1]["lines"].append({"speaker": "Guest", "text": "Closing words.", "emotion": "warm"})

  lines = extract_tts_lines(script)

  assert [line.line_id for line in lines] == ["line_1", "line_2", "line_3", "line_4"]
  assert lines[-1].emotion == "warm"
  assert all(line.text != "orphan" for line in lines)


@pytest.mark.anyio
async def test_synthesize_batch_uses_fallback_for_failed_line(voice_config) -> None:
  tts = FakeTTS(fail_on={"Line 3"})
  storage = FakeBlobStorage()

  result = await synthesize_batch(_lines(5), job_id="job-1", tts=tts, storage=storage, config=voice_config)

  urls = [segment.url for segment in result.segments]
  assert len(urls) == 5
  assert urls[2] == FALLBACK_URL
  assert [url for index, url in enumerate(urls) if index != 2] == [f"https://storage.test/episodes/job-1/lines/line_{index}.wav" for index in (1, 2, 4, 5)]
  assert result.failed_line_ids == ["line_3"]
  assert storage.content_types["episodes/job-1/lines/line_1.wav"] == "audio/wav"


@pytest.mark.anyio
async def test_synthesize_batch_output_matches_input_when_everything_fails(voice_config) -> None:
  lines = _lines(3)
  tts = FakeTTS(fail_on={line.text for line in lines})

  result = await synthesize_batch(lines, job_id="job-1", tts=tts, storage=FakeBlobStorage(), config=voice_config)

  assert [segment.url for segment in result.segments] == [FALLBACK_URL] * 3
  assert [segment.line_id for segment in result.segments] == ["line_1", "line_2", "line_3"]


@pytest.mark.anyio
async def test_synthesize_batch_does_not_swallow_cancellation(voice_config) -> None:
  on_line_done = AsyncMock(side_effect=[None, JobCanceled("canceled")])
  tts = FakeTTS()

  with pytest.raises(JobCanceled):
    await synthesize_batch(_lines(4), job_id="job-1", tts=tts, storage=FakeBlobStorage(), config=voice_config, on_line_done=on_line_done)

  assert tts.texts == ["Line 1", "Line 2"]


def test_voice_settings_per_speaker(voice_config) -> None:
  guest = voice_config.voice_for(TTSLine(line_id="line_1", speaker="Guest", text="hi", emotion="excited"))
  host = voice_config.voice_for(TTSLine(line_id="line_2", speaker="Host", text="hi"))
  assert (guest.voice, guest.emotion, guest.stability, guest.similarity_boost) == ("Puck", "excited", 0.5, 0.75)
  assert host.voice == "Kore"


def test_voice_runner_requires_script(voice_config) -> None:
  runner = VoiceRunner(tts=FakeTTS(), storage=FakeBlobStorage(), config=voice_config)
  with pytest.raises(ScriptNotFound):
    runner.check_preconditions(make_job())


@pytest.mark.anyio
async def test_voice_runner_outputs_ordered_audio(voice_config) -> None:
  progress = MagicMock()
  progress.report = AsyncMock()
  runner = VoiceRunner(tts=FakeTTS(fail_on={"Fact number 1."}), storage=FakeBlobStorage(), config=voice_config)

  result = await runner.run(make_job(scripts=[make_script()]), progress)

  audio = result.outputs["audio"]
  assert [entry["line_id"] for entry in audio] == ["line_1", "line_2", "line_3"]
  assert audio[1]["url"] == FALLBACK_URL
  assert progress.report.await_count == 3


@pytest.mark.anyio
async def test_voice_runner_without_speakable_lines(voice_config) -> None:
  script = make_script()
  for segment in script["segments"]:
    segment["lines"] = [{"speaker": "Host", "text": " "}]
  runner = VoiceRunner(tts=FakeTTS(), storage=FakeBlobStorage(), config=voice_config)

  with pytest.raises(NoAudioGenerated):
    await runner.run(make_job(scripts=[script]), MagicMock())
