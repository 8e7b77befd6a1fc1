"""Request and response bodies for the HTTP surface."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

from podcast_engine.jobs.models import MAX_EPISODE_COUNT, MAX_TOPIC_CHARS, GenerationJob, JobConfig


class CreateJobRequest(BaseModel):
  """Request payload for starting a podcast generation job."""

  topic: StrictStr = Field(min_length=1, max_length=MAX_TOPIC_CHARS, description="Topic of the podcast series.", examples=["The history of coffee"])
  target_audience: list[StrictStr] = Field(min_length=1, description="Audiences the series is written for.", examples=[["students", "curious listeners"]])
  tone: StrictStr = Field(min_length=1, description="Overall tone, e.g. conversational or educational.")
  episode_length_tier: Literal["mini", "standard", "deep"] = Field(description="Episode length tier (mini 3-5 min, standard 7-10 min, deep 12-15 min).")
  episode_count: StrictInt = Field(ge=1, le=MAX_EPISODE_COUNT, description="Number of episodes in the series.")
  visibility: Literal["public", "private", "unlisted"] = Field(default="private")
  promo_text: StrictStr | None = Field(default=None, description="Optional promotional message read in each episode.")
  custom_instructions: StrictStr | None = Field(default=None, description="Optional extra guidance for the scriptwriter.")
  scheduled_episode_count: StrictInt = Field(default=0, ge=0, description="Episodes to publish on a schedule; each adds a scheduling surcharge.")
  model_config = ConfigDict(extra="forbid")

  def to_config(self) -> JobConfig:
    return JobConfig(
      topic=self.topic,
      target_audience=tuple(self.target_audience),
      tone=self.tone,
      episode_length_tier=self.episode_length_tier,
      episode_count=self.episode_count,
      visibility=self.visibility,
      promo_text=self.promo_text,
      custom_instructions=self.custom_instructions,
    )


class CreateJobResponse(BaseModel):
  job_id: str
  credits_used: int
  status: str


class StepResponse(BaseModel):
  type: str
  status: str
  started_at: str | None = None
  completed_at: str | None = None
  error: str | None = None
  error_code: str | None = None
  progress: int = 0


class JobResponse(BaseModel):
  """Owner-facing view of a generation job."""

  job_id: str
  status: str
  config: dict[str, Any]
  steps: list[StepResponse]
  credits_used: int
  created_at: str
  updated_at: str
  research: dict[str, Any] | None = None
  scripts: list[dict[str, Any]] = Field(default_factory=list)
  audio: list[dict[str, Any]] = Field(default_factory=list)
  public_audio_url: str | None = None
  duration: float | None = None
  finalized: bool = False
  finalized_at: str | None = None
  refunded: bool = False

  @classmethod
  def from_job(cls, job: GenerationJob) -> JobResponse:
    document = job.to_document()
    document.pop("user_id", None)
    return cls.model_validate(document)


class StageTriggerResponse(BaseModel):
  job_id: str
  stage: str
  status: Literal["accepted", "skipped"]


class AdvanceStageRequest(BaseModel):
  """Body posted by the stage dispatcher."""

  job_id: StrictStr = Field(min_length=1)
  stage: Literal["research", "script", "voice", "finalize"]
  model_config = ConfigDict(extra="forbid")


class RefundRequest(BaseModel):
  job_id: StrictStr = Field(min_length=1)
  model_config = ConfigDict(extra="forbid")


class RefundResponse(BaseModel):
  job_id: str
  refunded_credits: int
