"""Gemini providers for script generation and speech using the google-genai SDK."""

from __future__ import annotations

import io
import json
import logging
import re
import wave
from typing import Any

from google import genai
from google.genai import types

from podcast_engine.providers.backoff import retry_with_backoff
from podcast_engine.providers.base import ProviderError, ScriptProvider, TTSProvider, VoiceSettings, with_timeout

logger = logging.getLogger(__name__)

_JSON_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")
# Gemini TTS returns 16-bit mono PCM at 24kHz.
_PCM_SAMPLE_RATE = 24000
_PCM_SAMPLE_WIDTH = 2


def _build_client(api_key: str | None) -> genai.Client:
  if not api_key:
    raise ValueError("GEMINI_API_KEY environment variable is required")
  return genai.Client(api_key=api_key)


def _strip_json_fences(text: str) -> str:
  return _JSON_FENCE.sub("", text.strip())


class GeminiScriptProvider(ScriptProvider):
  """Generates podcast scripts in Gemini JSON mode."""

  def __init__(self, *, api_key: str | None, model: str, timeout_seconds: float = 120.0) -> None:
    self._client = _build_client(api_key)
    self._model = model
    self._timeout_seconds = timeout_seconds

  async def generate_script(self, messages: list[dict[str, str]]) -> dict[str, Any]:
    system_prompt = "\n\n".join(message["content"] for message in messages if message.get("role") == "system")
    user_prompt = "\n\n".join(message["content"] for message in messages if message.get("role") != "system")
    config = types.GenerateContentConfig(system_instruction=system_prompt or None, response_mime_type="application/json", temperature=0.7)

    try:
      # Use the async client to avoid blocking the event loop.
      call = retry_with_backoff(self._client.aio.models.generate_content, model=self._model, contents=user_prompt, config=config)
      response = await with_timeout("gemini", call, self._timeout_seconds)
    except ProviderError:
      raise
    except Exception as exc:
      raise ProviderError("gemini", f"script generation failed: {exc}") from exc

    if not response.text:
      raise ProviderError("gemini", "empty script response")

    try:
      parsed = json.loads(_strip_json_fences(response.text))
    except json.JSONDecodeError as exc:
      raise ProviderError("gemini", f"returned invalid JSON: {exc}") from exc

    if not isinstance(parsed, dict):
      raise ProviderError("gemini", "script response is not a JSON object")
    return parsed


class GeminiSpeechProvider(TTSProvider):
  """Synthesizes one line with a prebuilt Gemini voice; returns WAV bytes.

  Gemini has no stability/similarity knobs, so only the voice name and the
  emotion hint from VoiceSettings are used.
  """

  content_type = "audio/wav"
  file_extension = ".wav"

  def __init__(self, *, api_key: str | None, model: str, timeout_seconds: float = 60.0) -> None:
    self._client = _build_client(api_key)
    self._model = model
    self._timeout_seconds = timeout_seconds

  async def synthesize(self, text: str, voice_settings: VoiceSettings) -> bytes:
    prompt = f"Say in a {voice_settings.emotion} tone: {text}" if voice_settings.emotion else text
    speech_config = types.SpeechConfig(voice_config=types.VoiceConfig(prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice_settings.voice)))
    config = types.GenerateContentConfig(response_modalities=["AUDIO"], speech_config=speech_config)

    try:
      call = retry_with_backoff(self._client.aio.models.generate_content, model=self._model, contents=prompt, config=config)
      response = await with_timeout("gemini-tts", call, self._timeout_seconds)
    except ProviderError:
      raise
    except Exception as exc:
      raise ProviderError("gemini-tts", f"speech generation failed: {exc}") from exc

    pcm = _first_inline_audio(response)
    if not pcm:
      raise ProviderError("gemini-tts", "no audio data received")
    return _pcm_to_wav(pcm)


def _first_inline_audio(response: types.GenerateContentResponse) -> bytes | None:
  for candidate in response.candidates or []:
    content = candidate.content
    for part in (content.parts if content else None) or []:
      if part.inline_data and part.inline_data.data:
        return part.inline_data.data
  return None


def _pcm_to_wav(pcm: bytes) -> bytes:
  buffer = io.BytesIO()
  with wave.open(buffer, "wb") as wav_file:
    wav_file.setnchannels(1)
    wav_file.setsampwidth(_PCM_SAMPLE_WIDTH)
    wav_file.setframerate(_PCM_SAMPLE_RATE)
    wav_file.writeframes(pcm)
  return buffer.getvalue()
