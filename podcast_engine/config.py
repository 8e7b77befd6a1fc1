"""Application configuration loaded from environment variables."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import lru_cache

from podcast_engine.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

DEFAULT_FALLBACK_AUDIO_URL = "https://storage.googleapis.com/podcastai-fallback/silence.mp3"
_JOB_STORE_BACKENDS = {"memory", "postgres", "firestore"}
_TASK_PROVIDERS = {"local-http", "gcp"}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the podcast generation service."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  job_store: str
  pg_dsn: str | None
  pg_connect_timeout: int
  firebase_project_id: str | None
  firebase_service_account_json_path: str | None
  firestore_jobs_collection: str
  firestore_users_collection: str
  gcp_project_id: str | None
  audio_bucket: str
  gcs_storage_host: str | None
  public_url_expires_at: datetime
  scratch_dir: str
  fallback_audio_url: str
  completion_webhook_url: str | None
  completion_webhook_secret: str | None
  completion_webhook_timeout_seconds: float
  tavily_api_key: str | None
  research_max_results: int
  research_timeout_seconds: float
  gemini_api_key: str | None
  script_model: str
  script_timeout_seconds: float
  tts_model: str
  tts_timeout_seconds: float
  tts_voices: dict[str, str] = field(hash=False)
  tts_default_voice: str
  download_timeout_seconds: float
  merge_codec: str
  merge_bitrate: str
  ffmpeg_binary: str
  ffprobe_binary: str
  stage_lease_seconds: int
  task_service_provider: str
  cloud_tasks_queue_path: str | None
  base_url: str | None
  task_secret: str | None
  cloud_run_invoker_service_account: str | None


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    return ("http://localhost:3000",)

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("PODCAST_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("PODCAST_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_json_dict(raw: str | None, default: dict[str, str]) -> dict[str, str]:
  if not raw:
    return default
  try:
    parsed = json.loads(raw)
  except json.JSONDecodeError:
    return default
  if not isinstance(parsed, dict):
    return default
  return {str(key): str(value) for key, value in parsed.items()}


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


def _parse_positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _parse_positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


def _parse_expiry(raw: str | None) -> datetime:
  """Parse the read-URL expiry date for published episodes."""
  value = _optional_str(raw) or "2100-01-01"
  parsed = datetime.fromisoformat(value)
  if parsed.tzinfo is None:
    parsed = parsed.replace(tzinfo=UTC)
  return parsed


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("PODCAST_ENV", "development").lower()
  debug = _parse_bool(os.getenv("PODCAST_DEBUG"))

  log_max_bytes = _parse_positive_int("PODCAST_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("PODCAST_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("PODCAST_LOG_BACKUP_COUNT must be zero or a positive integer.")

  job_store = (os.getenv("PODCAST_JOB_STORE") or "postgres").strip().lower()
  if job_store not in _JOB_STORE_BACKENDS:
    raise ValueError(f"PODCAST_JOB_STORE must be one of {sorted(_JOB_STORE_BACKENDS)}.")

  task_service_provider = (os.getenv("PODCAST_TASK_SERVICE_PROVIDER") or "local-http").strip().lower()
  if task_service_provider not in _TASK_PROVIDERS:
    raise ValueError(f"PODCAST_TASK_SERVICE_PROVIDER must be one of {sorted(_TASK_PROVIDERS)}.")

  # Speaker name -> TTS voice name, e.g. {"Host": "Kore", "Guest": "Puck"}.
  tts_voices = _parse_json_dict(os.getenv("PODCAST_TTS_VOICES"), {})

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("PODCAST_ALLOWED_ORIGINS")),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("PODCAST_LOG_HTTP_4XX")),
    job_store=job_store,
    pg_dsn=os.getenv("PODCAST_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=_parse_positive_int("PODCAST_PG_CONNECT_TIMEOUT", "5"),
    firebase_project_id=_optional_str(os.getenv("FIREBASE_PROJECT_ID")),
    firebase_service_account_json_path=_optional_str(os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON_PATH")),
    firestore_jobs_collection=os.getenv("PODCAST_FIRESTORE_JOBS_COLLECTION", "generationJobs"),
    firestore_users_collection=os.getenv("PODCAST_FIRESTORE_USERS_COLLECTION", "users"),
    gcp_project_id=_optional_str(os.getenv("GCP_PROJECT_ID")),
    audio_bucket=os.getenv("PODCAST_AUDIO_BUCKET", "podcast-engine-audio"),
    gcs_storage_host=_optional_str(os.getenv("GCS_STORAGE_HOST")),
    public_url_expires_at=_parse_expiry(os.getenv("PODCAST_PUBLIC_URL_EXPIRES_AT")),
    scratch_dir=os.getenv("PODCAST_SCRATCH_DIR", "./tmp/finalize").strip(),
    fallback_audio_url=_optional_str(os.getenv("PODCAST_FALLBACK_AUDIO_URL")) or DEFAULT_FALLBACK_AUDIO_URL,
    completion_webhook_url=_optional_str(os.getenv("PODCAST_COMPLETION_WEBHOOK_URL")),
    completion_webhook_secret=_optional_str(os.getenv("PODCAST_COMPLETION_WEBHOOK_SECRET")),
    completion_webhook_timeout_seconds=_parse_positive_float("PODCAST_COMPLETION_WEBHOOK_TIMEOUT_SECONDS", "5"),
    tavily_api_key=_optional_str(os.getenv("TAVILY_API_KEY")),
    research_max_results=_parse_positive_int("PODCAST_RESEARCH_MAX_RESULTS", "5"),
    research_timeout_seconds=_parse_positive_float("PODCAST_RESEARCH_TIMEOUT_SECONDS", "60"),
    gemini_api_key=_optional_str(os.getenv("GEMINI_API_KEY")),
    script_model=os.getenv("PODCAST_SCRIPT_MODEL", "gemini-2.5-flash"),
    script_timeout_seconds=_parse_positive_float("PODCAST_SCRIPT_TIMEOUT_SECONDS", "120"),
    tts_model=os.getenv("PODCAST_TTS_MODEL", "gemini-2.5-flash-preview-tts"),
    tts_timeout_seconds=_parse_positive_float("PODCAST_TTS_TIMEOUT_SECONDS", "60"),
    tts_voices=tts_voices,
    tts_default_voice=os.getenv("PODCAST_TTS_DEFAULT_VOICE", "Kore"),
    download_timeout_seconds=_parse_positive_float("PODCAST_DOWNLOAD_TIMEOUT_SECONDS", "30"),
    merge_codec=os.getenv("PODCAST_MERGE_CODEC", "libmp3lame"),
    merge_bitrate=os.getenv("PODCAST_MERGE_BITRATE", "192k"),
    ffmpeg_binary=os.getenv("PODCAST_FFMPEG_BINARY", "ffmpeg"),
    ffprobe_binary=os.getenv("PODCAST_FFPROBE_BINARY", "ffprobe"),
    stage_lease_seconds=_parse_positive_int("PODCAST_STAGE_LEASE_SECONDS", "1800"),
    task_service_provider=task_service_provider,
    cloud_tasks_queue_path=_optional_str(os.getenv("PODCAST_CLOUD_TASKS_QUEUE_PATH")),
    base_url=_optional_str(os.getenv("PODCAST_BASE_URL")),
    task_secret=_optional_str(os.getenv("PODCAST_TASK_SECRET")),
    cloud_run_invoker_service_account=_optional_str(os.getenv("PODCAST_CLOUD_RUN_INVOKER_SERVICE_ACCOUNT")),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration."""
  # Keep database configuration isolated so migrations don't require unrelated env vars.
  debug = _parse_bool(os.getenv("PODCAST_DEBUG"))
  pg_connect_timeout = _parse_positive_int("PODCAST_PG_CONNECT_TIMEOUT", "5")
  pg_dsn = os.getenv("PODCAST_PG_DSN") or os.getenv("DATABASE_URL")

  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)
