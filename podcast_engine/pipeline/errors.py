"""Typed failures raised by the ledger, the orchestrator and the stage runners."""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
  """Base error carrying a stable machine-readable code and an HTTP status."""

  code = "PIPELINE_ERROR"
  status_code = 500
  default_message = "Pipeline failure."

  def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None) -> None:
    self.message = message or self.default_message
    self.details = details or {}
    super().__init__(self.message)

  def to_dict(self) -> dict[str, Any]:
    return {"code": self.code, "message": self.message, "details": self.details}


class ValidationFailed(PipelineError):
  code = "VALIDATION_ERROR"
  status_code = 422
  default_message = "Invalid job configuration."


class JobNotFound(PipelineError):
  code = "JOB_NOT_FOUND"
  status_code = 404
  default_message = "Job not found."


class EpisodeNotFound(JobNotFound):
  code = "EPISODE_NOT_FOUND"
  default_message = "Episode not found."


class UserNotFound(PipelineError):
  code = "USER_NOT_FOUND"
  status_code = 404
  default_message = "User not found."


class InsufficientCredits(PipelineError):
  code = "INSUFFICIENT_CREDITS"
  status_code = 402
  default_message = "Insufficient credits."


class ResearchNotFound(PipelineError):
  code = "RESEARCH_NOT_FOUND"
  status_code = 409
  default_message = "Research has not been generated for this job."


class ScriptNotFound(PipelineError):
  code = "SCRIPT_NOT_FOUND"
  status_code = 409
  default_message = "Script has not been generated for this job."


class AudioNotFound(PipelineError):
  code = "AUDIO_NOT_FOUND"
  status_code = 409
  default_message = "No audio segments found for this job."


class InvalidAudioData(PipelineError):
  code = "INVALID_AUDIO_DATA"
  status_code = 422
  default_message = "Audio segments are malformed."


class StageAlreadyRunning(PipelineError):
  code = "STAGE_ALREADY_RUNNING"
  status_code = 409
  default_message = "Another stage is already processing for this job."


class JobCanceled(PipelineError):
  code = "JOB_CANCELED"
  status_code = 409
  default_message = "Job was canceled."


class ResearchGenerationError(PipelineError):
  code = "RESEARCH_GENERATION_ERROR"
  status_code = 502
  default_message = "Research generation failed."


class ScriptGenerationError(PipelineError):
  code = "SCRIPT_GENERATION_ERROR"
  status_code = 502
  default_message = "Script generation failed."


class InvalidScript(ScriptGenerationError):
  code = "INVALID_SCRIPT"
  default_message = "Generated script failed validation."


class VoiceGenerationError(PipelineError):
  code = "VOICE_GENERATION_ERROR"
  status_code = 502
  default_message = "Voice generation failed."


class NoAudioGenerated(VoiceGenerationError):
  code = "NO_AUDIO_GENERATED"
  default_message = "No audio was generated for this script."


class FinalizeError(PipelineError):
  code = "FINALIZE_ERROR"
  status_code = 500
  default_message = "Finalize failed."


class AudioDownloadFailed(FinalizeError):
  code = "AUDIO_DOWNLOAD_FAILED"
  status_code = 502
  default_message = "Failed to download an audio segment."


class AudioMergeFailed(FinalizeError):
  code = "AUDIO_MERGE_FAILED"
  default_message = "Failed to merge audio segments."


class UploadFailed(FinalizeError):
  code = "UPLOAD_FAILED"
  status_code = 502
  default_message = "Failed to upload the final audio."


class FinalUpdateFailed(FinalizeError):
  code = "FINAL_UPDATE_FAILED"
  default_message = "Failed to record the finalized episode."
