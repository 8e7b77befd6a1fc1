"""Script stage: one validated script per requested episode."""

from __future__ import annotations

import logging
import math
from typing import Any

from pydantic import ValidationError

from podcast_engine.jobs.models import GenerationJob, JobConfig
from podcast_engine.pipeline.errors import InvalidScript, ResearchNotFound, ScriptGenerationError
from podcast_engine.pipeline.progress import StageProgress
from podcast_engine.pipeline.stages.base import StageResult, StageRunner
from podcast_engine.providers.base import ProviderError, ScriptProvider
from podcast_engine.schema.scripts import ScriptDocument
from podcast_engine.services.credits import TIER_DURATION_MINUTES

logger = logging.getLogger(__name__)

SCRIPT_OUTPUT_FORMAT = """{
  "title": "Compelling episode title",
  "description": "SEO-friendly episode description",
  "segments": [
    {
      "type": "intro" | "main" | "outro",
      "duration": "MM:SS",
      "lines": [{"speaker": "Host", "text": "Line content", "emotion": "optional emotion"}]
    }
  ]
}"""


def partition_facts(facts: list[str], episode_count: int) -> list[list[str]]:
  """Split facts into contiguous, non-overlapping chunks, one per episode."""
  if episode_count <= 0:
    raise ValueError("episode_count must be positive")
  per_episode = math.ceil(len(facts) / episode_count) if facts else 0
  return [facts[index * per_episode : (index + 1) * per_episode] for index in range(episode_count)]


def build_script_messages(config: JobConfig, facts: list[str], *, episode_index: int, first_fact_number: int) -> list[dict[str, str]]:
  """Build the system and user messages for one episode."""
  low, high = TIER_DURATION_MINUTES[config.episode_length_tier]
  audience = ", ".join(config.target_audience)
  system = (
    f"You are an expert podcast scriptwriter specializing in {config.tone} content for {audience}.\n"
    "Write engaging, well-structured scripts that keep a consistent tone, use natural transitions "
    f"between segments, balance education with entertainment and run {low}-{high} minutes of speaking time.\n\n"
    f"Respond with JSON only, in this format:\n{SCRIPT_OUTPUT_FORMAT}"
  )

  numbered = "\n".join(f"{number}. {fact}" for number, fact in enumerate(facts, start=1))
  parts = [f"Generate Episode {episode_index + 1} of {config.episode_count} on: {config.topic}", f"RESEARCH INSIGHTS:\n{numbered or 'Use general knowledge of the topic.'}"]
  if config.promo_text:
    parts.append(f"PROMOTIONAL MESSAGE TO INCLUDE:\n{config.promo_text}")
  if config.custom_instructions:
    parts.append(f"ADDITIONAL INSTRUCTIONS:\n{config.custom_instructions}")
  last_fact_number = first_fact_number + max(len(facts), 1) - 1
  parts.append(
    "REQUIREMENTS:\n"
    f"1. Target {low}-{high} minutes\n"
    f"2. Use a {config.tone} tone for {audience}\n"
    f"3. Focus on facts {first_fact_number}-{last_fact_number}\n"
    "4. Include a clear intro and outro\n"
    "5. Every segment has at least one line; every line names its speaker\n\n"
    "Make each episode unique while keeping the series coherent."
  )
  return [{"role": "system", "content": system}, {"role": "user", "content": "\n\n".join(parts)}]


def validate_script(raw: dict[str, Any]) -> dict[str, Any]:
  """Return the normalized script or raise InvalidScript."""
  try:
    document = ScriptDocument.model_validate(raw)
  except ValidationError as exc:
    problems = [f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()]
    raise InvalidScript(details={"errors": problems}) from exc
  return document.model_dump(exclude_none=True)


class ScriptRunner(StageRunner):
  stage = "script"
  failure_error = ScriptGenerationError

  def __init__(self, *, provider: ScriptProvider) -> None:
    self._provider = provider

  def check_preconditions(self, job: GenerationJob) -> None:
    if not job.research:
      raise ResearchNotFound(f"Job {job.job_id} has no research.")

  async def run(self, job: GenerationJob, progress: StageProgress) -> StageResult:
    facts = list((job.research or {}).get("facts") or [])
    chunks = partition_facts(facts, job.config.episode_count)
    scripts: list[dict[str, Any]] = []
    first_fact_number = 1

    for index, chunk in enumerate(chunks):
      messages = build_script_messages(job.config, chunk, episode_index=index, first_fact_number=first_fact_number)
      first_fact_number += len(chunk)
      try:
        raw = await self._provider.generate_script(messages)
      except ProviderError as exc:
        raise ScriptGenerationError(str(exc), details={"provider": exc.provider, "episode": index + 1}) from exc

      scripts.append(validate_script(raw))
      logger.info("Generated script %s/%s for job %s", index + 1, len(chunks), job.job_id)
      await progress.report((index + 1) / len(chunks) * 95)

    return StageResult(outputs={"scripts": scripts})
