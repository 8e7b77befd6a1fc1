"""Domain models for podcast generation jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, cast, get_args

StageType = Literal["research", "script", "voice", "finalize"]
StepStatus = Literal["pending", "processing", "completed", "error"]
JobStatus = Literal["pending", "research", "script", "voice", "completed", "error", "canceled"]
LengthTier = Literal["mini", "standard", "deep"]
Visibility = Literal["public", "private", "unlisted"]

STAGE_ORDER: tuple[StageType, ...] = get_args(StageType)
LENGTH_TIERS: tuple[LengthTier, ...] = get_args(LengthTier)
VISIBILITIES: tuple[Visibility, ...] = get_args(Visibility)
MAX_TOPIC_CHARS = 500
MAX_EPISODE_COUNT = 10

# Fields each stage may write on completion; nothing else touches them.
STAGE_OUTPUT_FIELDS: dict[StageType, frozenset[str]] = {
  "research": frozenset({"research"}),
  "script": frozenset({"scripts"}),
  "voice": frozenset({"audio"}),
  "finalize": frozenset({"public_audio_url", "duration", "finalized", "finalized_at"}),
}


def next_stage(stage: StageType) -> StageType | None:
  """Return the stage that follows `stage`, or None after finalize."""
  index = STAGE_ORDER.index(stage)
  if index + 1 >= len(STAGE_ORDER):
    return None
  return STAGE_ORDER[index + 1]


@dataclass
class Step:
  """Persisted status record for one stage of one job."""

  type: StageType
  status: StepStatus = "pending"
  started_at: str | None = None
  completed_at: str | None = None
  error: str | None = None
  error_code: str | None = None
  progress: int = 0

  def to_dict(self) -> dict[str, Any]:
    return {
      "type": self.type,
      "status": self.status,
      "started_at": self.started_at,
      "completed_at": self.completed_at,
      "error": self.error,
      "error_code": self.error_code,
      "progress": self.progress,
    }

  @classmethod
  def from_dict(cls, stage: StageType, data: dict[str, Any] | None) -> Step:
    if not data:
      return cls(type=stage)
    return cls(
      type=stage,
      status=cast(StepStatus, data.get("status") or "pending"),
      started_at=data.get("started_at"),
      completed_at=data.get("completed_at"),
      error=data.get("error"),
      error_code=data.get("error_code"),
      progress=int(data.get("progress") or 0),
    )


@dataclass(frozen=True)
class JobConfig:
  """User-supplied generation settings for a job."""

  topic: str
  target_audience: tuple[str, ...]
  tone: str
  episode_length_tier: LengthTier
  episode_count: int
  visibility: Visibility = "private"
  promo_text: str | None = None
  custom_instructions: str | None = None

  @property
  def promo_word_count(self) -> int:
    if not self.promo_text:
      return 0
    return len(self.promo_text.split())

  def validation_errors(self) -> list[str]:
    """Return human-readable problems with this configuration."""
    errors: list[str] = []
    topic = self.topic.strip()
    if not topic:
      errors.append("topic must not be empty")
    elif len(topic) > MAX_TOPIC_CHARS:
      errors.append(f"topic must be at most {MAX_TOPIC_CHARS} characters")
    if not self.target_audience or any(not audience.strip() for audience in self.target_audience):
      errors.append("target_audience must contain at least one non-empty entry")
    if not self.tone.strip():
      errors.append("tone must not be empty")
    if self.episode_length_tier not in LENGTH_TIERS:
      errors.append(f"episode_length_tier must be one of {', '.join(LENGTH_TIERS)}")
    if not 1 <= self.episode_count <= MAX_EPISODE_COUNT:
      errors.append(f"episode_count must be between 1 and {MAX_EPISODE_COUNT}")
    if self.visibility not in VISIBILITIES:
      errors.append(f"visibility must be one of {', '.join(VISIBILITIES)}")
    return errors

  def to_dict(self) -> dict[str, Any]:
    return {
      "topic": self.topic,
      "target_audience": list(self.target_audience),
      "tone": self.tone,
      "episode_length_tier": self.episode_length_tier,
      "episode_count": self.episode_count,
      "visibility": self.visibility,
      "promo_text": self.promo_text,
      "custom_instructions": self.custom_instructions,
    }

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> JobConfig:
    return cls(
      topic=str(data["topic"]),
      target_audience=tuple(data.get("target_audience") or ()),
      tone=str(data.get("tone") or ""),
      episode_length_tier=cast(LengthTier, data["episode_length_tier"]),
      episode_count=int(data["episode_count"]),
      visibility=cast(Visibility, data.get("visibility") or "private"),
      promo_text=data.get("promo_text"),
      custom_instructions=data.get("custom_instructions"),
    )


@dataclass(frozen=True)
class TTSLine:
  """One speaker line extracted from a script for synthesis."""

  line_id: str
  speaker: str
  text: str
  emotion: str | None = None


@dataclass(frozen=True)
class AudioSegment:
  """Ordered reference to one synthesized line."""

  url: str
  line_id: str | None = None

  def to_dict(self) -> dict[str, Any]:
    payload: dict[str, Any] = {"url": self.url}
    if self.line_id is not None:
      payload["line_id"] = self.line_id
    return payload


@dataclass
class GenerationJob:
  """A single user request to produce a podcast series."""

  job_id: str
  user_id: str
  config: JobConfig
  steps: list[Step]
  credits_used: int
  status: JobStatus
  created_at: str
  updated_at: str
  research: dict[str, Any] | None = None
  scripts: list[dict[str, Any]] = field(default_factory=list)
  audio: list[dict[str, Any]] = field(default_factory=list)
  public_audio_url: str | None = None
  duration: float | None = None
  finalized: bool = False
  finalized_at: str | None = None
  refunded: bool = False

  @classmethod
  def new(cls, *, job_id: str, user_id: str, config: JobConfig, credits_used: int, now: str) -> GenerationJob:
    """Build a job with all four steps pending."""
    steps = [Step(type=stage) for stage in STAGE_ORDER]
    return cls(job_id=job_id, user_id=user_id, config=config, steps=steps, credits_used=credits_used, status="pending", created_at=now, updated_at=now)

  def step(self, stage: StageType) -> Step:
    return self.steps[STAGE_ORDER.index(stage)]

  def processing_step(self) -> Step | None:
    """Return the step currently marked processing, if any."""
    for step in self.steps:
      if step.status == "processing":
        return step
    return None

  def to_document(self) -> dict[str, Any]:
    return {
      "job_id": self.job_id,
      "user_id": self.user_id,
      "config": self.config.to_dict(),
      "steps": [step.to_dict() for step in self.steps],
      "credits_used": self.credits_used,
      "status": self.status,
      "created_at": self.created_at,
      "updated_at": self.updated_at,
      "research": self.research,
      "scripts": list(self.scripts),
      "audio": list(self.audio),
      "public_audio_url": self.public_audio_url,
      "duration": self.duration,
      "finalized": self.finalized,
      "finalized_at": self.finalized_at,
      "refunded": self.refunded,
    }

  @classmethod
  def from_document(cls, document: dict[str, Any]) -> GenerationJob:
    # Rebuild the fixed step layout regardless of how the stored array is shaped.
    stored_steps = {entry.get("type"): entry for entry in document.get("steps") or [] if isinstance(entry, dict)}
    steps = [Step.from_dict(stage, stored_steps.get(stage)) for stage in STAGE_ORDER]
    return cls(
      job_id=str(document["job_id"]),
      user_id=str(document["user_id"]),
      config=JobConfig.from_dict(document["config"]),
      steps=steps,
      credits_used=int(document["credits_used"]),
      status=cast(JobStatus, document.get("status") or "pending"),
      created_at=str(document["created_at"]),
      updated_at=str(document.get("updated_at") or document["created_at"]),
      research=document.get("research"),
      scripts=list(document.get("scripts") or []),
      audio=list(document.get("audio") or []),
      public_audio_url=document.get("public_audio_url"),
      duration=document.get("duration"),
      finalized=bool(document.get("finalized")),
      finalized_at=document.get("finalized_at"),
      refunded=bool(document.get("refunded")),
    )
