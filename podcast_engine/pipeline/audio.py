"""Segment download and ffmpeg-based merging for the finalize stage."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)


class AudioToolError(RuntimeError):
  """Raised when ffmpeg or ffprobe fails."""


class SegmentDownloader(Protocol):
  async def download(self, url: str, destination: Path) -> None:
    ...


class AudioMerger(Protocol):
  async def merge(self, inputs: list[Path], output: Path) -> float:
    """Merge inputs in order into output; return the duration in seconds."""
    ...


class HttpSegmentDownloader(SegmentDownloader):
  """Streams one URL to disk with a bounded timeout."""

  def __init__(self, *, timeout_seconds: float = 30.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._timeout_seconds = timeout_seconds
    self._transport = transport

  async def download(self, url: str, destination: Path) -> None:
    async with httpx.AsyncClient(timeout=self._timeout_seconds, transport=self._transport, follow_redirects=True) as client:
      async with client.stream("GET", url) as response:
        response.raise_for_status()
        with destination.open("wb") as handle:
          async for chunk in response.aiter_bytes():
            handle.write(chunk)


class FfmpegAudioMerger(AudioMerger):
  """Concatenates heterogeneous inputs with ffmpeg's concat filter and re-encodes once."""

  def __init__(self, *, codec: str = "libmp3lame", bitrate: str = "192k", ffmpeg_binary: str = "ffmpeg", ffprobe_binary: str = "ffprobe", timeout_seconds: float = 600.0) -> None:
    self._codec = codec
    self._bitrate = bitrate
    self._ffmpeg = ffmpeg_binary
    self._ffprobe = ffprobe_binary
    self._timeout_seconds = timeout_seconds

  def build_command(self, inputs: list[Path], output: Path) -> list[str]:
    command = [self._ffmpeg, "-y", "-hide_banner", "-loglevel", "error"]
    for path in inputs:
      command.extend(["-i", str(path)])
    streams = "".join(f"[{index}:a]" for index in range(len(inputs)))
    command.extend(["-filter_complex", f"{streams}concat=n={len(inputs)}:v=0:a=1[out]", "-map", "[out]", "-c:a", self._codec, "-b:a", self._bitrate, str(output)])
    return command

  async def merge(self, inputs: list[Path], output: Path) -> float:
    if not inputs:
      raise AudioToolError("No audio inputs to merge.")
    await self._run(self.build_command(inputs, output))
    if not output.exists():
      raise AudioToolError(f"ffmpeg did not produce {output.name}")
    return await self.probe_duration(output)

  async def probe_duration(self, path: Path) -> float:
    stdout = await self._run([self._ffprobe, "-v", "error", "-show_entries", "format=duration", "-of", "default=noprint_wrappers=1:nokey=1", str(path)])
    try:
      return round(float(stdout.strip()), 2)
    except ValueError as exc:
      raise AudioToolError(f"ffprobe returned no duration for {path.name}") from exc

  async def _run(self, command: list[str]) -> str:
    try:
      process = await asyncio.create_subprocess_exec(*command, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE)
    except FileNotFoundError as exc:
      raise AudioToolError(f"{command[0]} is not installed") from exc

    try:
      stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout_seconds)
    except TimeoutError as exc:
      process.kill()
      await process.wait()
      raise AudioToolError(f"{command[0]} timed out after {self._timeout_seconds}s") from exc

    if process.returncode != 0:
      message = stderr.decode(errors="replace")[:500]
      logger.error("%s exited with %s: %s", command[0], process.returncode, message)
      raise AudioToolError(f"{command[0]} exited with {process.returncode}: {message}")
    return stdout.decode(errors="replace")
