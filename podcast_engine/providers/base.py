"""Provider contracts for research, script generation and speech synthesis."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

T = TypeVar("T")


class ProviderError(RuntimeError):
  """Raised when an upstream AI or search provider fails."""

  def __init__(self, provider: str, message: str) -> None:
    self.provider = provider
    super().__init__(f"{provider}: {message}")


class ProviderTimeout(ProviderError):
  """Raised when an upstream provider does not answer in time."""


@dataclass(frozen=True)
class ResearchResult:
  text: str
  source_url: str | None = None


@dataclass(frozen=True)
class VoiceSettings:
  """Per-line voice parameters handed to the TTS provider."""

  voice: str
  stability: float = 0.5
  similarity_boost: float = 0.75
  emotion: str | None = None


class ResearchProvider(Protocol):
  async def research(self, prompt: str) -> ResearchResult:
    """Return research text for the prompt."""
    ...


class ScriptProvider(Protocol):
  async def generate_script(self, messages: list[dict[str, str]]) -> dict[str, Any]:
    """Return the raw script JSON for the prompt messages."""
    ...


class TTSProvider(Protocol):
  content_type: str
  file_extension: str

  async def synthesize(self, text: str, voice_settings: VoiceSettings) -> bytes:
    """Return encoded audio bytes for one line."""
    ...


async def with_timeout(provider: str, awaitable: Awaitable[T], timeout_seconds: float) -> T:
  """Bound a provider call, surfacing expiry as ProviderTimeout."""
  try:
    return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
  except TimeoutError as exc:
    raise ProviderTimeout(provider, f"timed out after {timeout_seconds}s") from exc
