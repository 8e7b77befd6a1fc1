"""Research stage: gather source material for the series."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from podcast_engine.jobs.models import GenerationJob, JobConfig
from podcast_engine.pipeline.errors import ResearchGenerationError
from podcast_engine.pipeline.progress import StageProgress
from podcast_engine.pipeline.stages.base import StageResult, StageRunner
from podcast_engine.providers.base import ProviderError, ResearchProvider
from podcast_engine.utils.ids import now_iso

logger = logging.getLogger(__name__)

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_BULLET_PREFIX = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")
MIN_FACT_WORDS = 5


@dataclass(frozen=True)
class ResearchConfig:
  max_facts: int = 40
  # Upper bound on the prompt length the research provider accepts; None means unbounded.
  max_prompt_chars: int | None = None


def _truncate_words(text: str, max_chars: int) -> str:
  if len(text) <= max_chars:
    return text
  head = text[: max_chars + 1]
  if " " in head:
    return head.rsplit(" ", 1)[0].rstrip()
  return text[:max_chars]


def build_research_prompt(config: JobConfig, max_chars: int | None = None) -> str:
  """Describe the research needed for a podcast on the configured topic.

  The topic always leads. Under a character budget the remaining context is
  kept in priority order (audience, tone and series size, the research brief,
  then style guidance) and whatever does not fit is dropped whole. A topic that
  alone exceeds the budget is cut at a word boundary.
  """
  topic = " ".join(config.topic.split())
  audience = ", ".join(item.strip() for item in config.target_audience)
  context = [
    f"Audience: {audience}.",
    f"Tone: {config.tone} podcast series of {config.episode_count} episode(s).",
    "Find key facts, statistics, recent developments, historical context, expert perspectives and practical applications.",
    "Prefer surprising or lesser-known information, cite sources where possible, and note areas of debate.",
  ]
  if max_chars is None:
    return "\n".join([topic, *context])

  if len(topic) > max_chars:
    logger.warning("Research topic truncated from %s to %s characters", len(topic), max_chars)
    return _truncate_words(topic, max_chars)

  prompt = topic
  dropped = 0
  for part in context:
    if len(prompt) + 1 + len(part) > max_chars:
      dropped += 1
      continue
    prompt = f"{prompt}\n{part}"
  if dropped:
    logger.info("Research prompt limited to %s characters; dropped %s context line(s)", max_chars, dropped)
  return prompt


def extract_facts(text: str, limit: int) -> list[str]:
  """Split research text into distinct fact sentences, preserving order."""
  facts: list[str] = []
  seen: set[str] = set()
  for raw_line in text.splitlines():
    line = _BULLET_PREFIX.sub("", raw_line).strip()
    if not line:
      continue
    for sentence in _SENTENCE_SPLIT.split(line):
      sentence = sentence.strip()
      key = sentence.lower()
      if len(sentence.split()) < MIN_FACT_WORDS or key in seen:
        continue
      seen.add(key)
      facts.append(sentence)
      if len(facts) >= limit:
        return facts
  return facts


class ResearchRunner(StageRunner):
  stage = "research"
  failure_error = ResearchGenerationError

  def __init__(self, *, provider: ResearchProvider, config: ResearchConfig) -> None:
    self._provider = provider
    self._config = config

  async def run(self, job: GenerationJob, progress: StageProgress) -> StageResult:
    prompt = build_research_prompt(job.config, self._config.max_prompt_chars)
    await progress.report(10)

    try:
      result = await self._provider.research(prompt)
    except ProviderError as exc:
      raise ResearchGenerationError(str(exc), details={"provider": exc.provider}) from exc

    facts = extract_facts(result.text, self._config.max_facts)
    if not facts:
      raise ResearchGenerationError("Research returned no usable facts.")

    logger.info("Research for job %s produced %s facts", job.job_id, len(facts))
    research = {"text": result.text, "source_url": result.source_url, "facts": facts, "generated_at": now_iso()}
    return StageResult(outputs={"research": research})
