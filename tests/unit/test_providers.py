from __future__ import annotations

import io
import logging
import wave
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest

from podcast_engine.providers.backoff import retry_with_backoff
from podcast_engine.providers.base import ProviderError, ProviderTimeout, VoiceSettings, with_timeout
from podcast_engine.providers.gemini import GeminiScriptProvider, GeminiSpeechProvider, _pcm_to_wav, _strip_json_fences
from podcast_engine.providers.tavily import MAX_QUERY_CHARS, TavilyResearchProvider


@pytest.mark.anyio
async def test_retry_with_backoff_retries_only_rate_limits() -> None:
  func = AsyncMock(side_effect=[RuntimeError("429 Too Many Requests"), RuntimeError("RESOURCE_EXHAUSTED"), "ok"])
  with patch("podcast_engine.providers.backoff.asyncio.sleep", new_callable=AsyncMock) as sleep:
    assert await retry_with_backoff(func, "arg", retries=3) == "ok"
  assert func.await_count == 3
  assert sleep.await_count == 2

  failing = AsyncMock(side_effect=ValueError("bad request"))
  with pytest.raises(ValueError):
    await retry_with_backoff(failing, retries=3)
  assert failing.await_count == 1


@pytest.mark.anyio
async def test_retry_with_backoff_gives_up_after_last_attempt() -> None:
  func = AsyncMock(side_effect=RuntimeError("429"))
  with patch("podcast_engine.providers.backoff.asyncio.sleep", new_callable=AsyncMock):
    with pytest.raises(RuntimeError):
      await retry_with_backoff(func, retries=2)
  assert func.await_count == 2


@pytest.mark.anyio
async def test_with_timeout_raises_provider_timeout() -> None:
  never = AsyncMock(side_effect=TimeoutError())
  with pytest.raises(ProviderTimeout) as excinfo:
    await with_timeout("tavily", never(), 0.01)
  assert excinfo.value.provider == "tavily"


def test_providers_require_api_keys() -> None:
  with pytest.raises(ValueError):
    TavilyResearchProvider(api_key=None)
  with pytest.raises(ValueError):
    GeminiScriptProvider(api_key="", model="gemini-2.5-flash")


@pytest.mark.anyio
async def test_tavily_condenses_answer_and_sources() -> None:
  provider = TavilyResearchProvider(api_key="tvly-test", max_results=3)
  response = {"answer": "Coffee spread from Yemen.", "results": [{"url": "https://example.com/a", "content": "Venice opened coffee houses in 1645."}, {"url": "https://example.com/b", "content": "  "}]}
  provider._client = MagicMock(search=Mock(return_value=response))

  result = await provider.research("history of coffee " * 100)

  assert result.text == "Coffee spread from Yemen.\n\nVenice opened coffee houses in 1645."
  assert result.source_url == "https://example.com/a"
  kwargs = provider._client.search.call_args.kwargs
  assert len(kwargs["query"]) <= MAX_QUERY_CHARS
  assert kwargs["max_results"] == 3


@pytest.mark.anyio
async def test_tavily_logs_when_query_is_clamped(caplog: pytest.LogCaptureFixture) -> None:
  provider = TavilyResearchProvider(api_key="tvly-test")
  provider._client = MagicMock(search=Mock(return_value={"answer": "Coffee spread from Yemen."}))

  with caplog.at_level(logging.WARNING, logger="podcast_engine.providers.tavily"):
    await provider.research("coffee")
  assert "truncated" not in caplog.text

  with caplog.at_level(logging.WARNING, logger="podcast_engine.providers.tavily"):
    await provider.research("x" * (MAX_QUERY_CHARS + 25))
  assert f"truncated from {MAX_QUERY_CHARS + 25} to {MAX_QUERY_CHARS}" in caplog.text
  assert len(provider._client.search.call_args.kwargs["query"]) == MAX_QUERY_CHARS


@pytest.mark.anyio
async def test_tavily_failures_become_provider_errors() -> None:
  provider = TavilyResearchProvider(api_key="tvly-test")
  provider._client = MagicMock(search=Mock(side_effect=RuntimeError("HTTP 500")))
  with pytest.raises(ProviderError):
    await provider.research("coffee")

  provider._client = MagicMock(search=Mock(return_value={"results": []}))
  with pytest.raises(ProviderError):
    await provider.research("coffee")


def test_strip_json_fences() -> None:
  assert _strip_json_fences('```json\n{"title": "x"}\n```') == '{"title": "x"}'
  assert _strip_json_fences('{"title": "x"}') == '{"title": "x"}'


@pytest.mark.anyio
async def test_gemini_script_provider_parses_fenced_json() -> None:
  provider = GeminiScriptProvider(api_key="test-key", model="gemini-2.5-flash")
  provider._client = MagicMock()
  provider._client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(text='```json\n{"title": "Coffee", "segments": []}\n```'))

  script = await provider.generate_script([{"role": "system", "content": "You write podcasts."}, {"role": "user", "content": "Episode 1"}])

  assert script == {"title": "Coffee", "segments": []}
  kwargs = provider._client.aio.models.generate_content.await_args.kwargs
  assert kwargs["contents"] == "Episode 1"
  assert kwargs["config"].system_instruction == "You write podcasts."


@pytest.mark.anyio
@pytest.mark.parametrize("text", ["", "not json", "[1, 2]"])
async def test_gemini_script_provider_rejects_unusable_responses(text: str) -> None:
  provider = GeminiScriptProvider(api_key="test-key", model="gemini-2.5-flash")
  provider._client = MagicMock()
  provider._client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(text=text))
  with pytest.raises(ProviderError):
    await provider.generate_script([{"role": "user", "content": "Episode 1"}])


@pytest.mark.anyio
async def test_gemini_speech_wraps_pcm_in_wav() -> None:
  provider = GeminiSpeechProvider(api_key="test-key", model="gemini-2.5-flash-preview-tts")
  part = SimpleNamespace(inline_data=SimpleNamespace(data=b"\x00\x01" * 240))
  response = SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])
  provider._client = MagicMock()
  provider._client.aio.models.generate_content = AsyncMock(return_value=response)

  audio = await provider.synthesize("Hello there.", VoiceSettings(voice="Puck", emotion="cheerful"))

  with wave.open(io.BytesIO(audio), "rb") as wav_file:
    assert wav_file.getframerate() == 24000
    assert wav_file.getnframes() == 240
  assert provider._client.aio.models.generate_content.await_args.kwargs["contents"] == "Say in a cheerful tone: Hello there."


@pytest.mark.anyio
async def test_gemini_speech_without_audio_raises() -> None:
  provider = GeminiSpeechProvider(api_key="test-key", model="gemini-2.5-flash-preview-tts")
  provider._client = MagicMock()
  provider._client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(candidates=[]))
  with pytest.raises(ProviderError):
    await provider.synthesize("Hello there.", VoiceSettings(voice="Kore"))


def test_pcm_to_wav_is_mono_16_bit() -> None:
  with wave.open(io.BytesIO(_pcm_to_wav(b"\x00\x00" * 10)), "rb") as wav_file:
    assert wav_file.getnchannels() == 1
    assert wav_file.getsampwidth() == 2
