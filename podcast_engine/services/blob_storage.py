"""Object storage for synthesized lines and published episodes."""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from typing import Protocol
from urllib.parse import urlparse, urlunparse

from google.auth.credentials import AnonymousCredentials
from google.cloud import storage
from starlette.concurrency import run_in_threadpool

from podcast_engine.config import Settings


class BlobStorage(Protocol):
  """Upload audio objects and hand out read URLs."""

  async def upload(self, local_path: Path, destination_key: str, content_type: str) -> None:
    ...

  async def upload_bytes(self, data: bytes, destination_key: str, content_type: str) -> None:
    ...

  async def get_read_url(self, destination_key: str, expires_at: datetime) -> str:
    ...


class GcsBlobStorage(BlobStorage):
  """Thin wrapper over GCS and emulator access for audio objects."""

  def __init__(self, *, bucket_name: str, project_id: str | None, storage_host: str | None = None) -> None:
    self._bucket_name = bucket_name
    self._storage_host = storage_host
    # Ensure the emulator endpoint is visible to the SDK in local development.
    if storage_host:
      emulator_endpoint = _normalize_emulator_endpoint(storage_host)
      os.environ["STORAGE_EMULATOR_HOST"] = emulator_endpoint
      self._client = storage.Client(project=project_id or "local-dev", credentials=AnonymousCredentials(), client_options={"api_endpoint": emulator_endpoint})
    else:
      self._client = storage.Client(project=project_id)

  @property
  def bucket_name(self) -> str:
    return self._bucket_name

  async def ensure_bucket(self) -> None:
    """Create the bucket when missing; only in emulator mode."""
    if not self._storage_host:
      return
    bucket = self._client.bucket(self._bucket_name)

    def _create_if_missing() -> None:
      if not bucket.exists(client=self._client):
        self._client.create_bucket(bucket)

    await run_in_threadpool(_create_if_missing)

  async def upload(self, local_path: Path, destination_key: str, content_type: str) -> None:
    blob = self._client.bucket(self._bucket_name).blob(destination_key)
    await run_in_threadpool(blob.upload_from_filename, str(local_path), content_type=content_type)

  async def upload_bytes(self, data: bytes, destination_key: str, content_type: str) -> None:
    blob = self._client.bucket(self._bucket_name).blob(destination_key)
    await run_in_threadpool(blob.upload_from_string, data, content_type=content_type)

  async def get_read_url(self, destination_key: str, expires_at: datetime) -> str:
    blob = self._client.bucket(self._bucket_name).blob(destination_key)
    # The emulator cannot sign URLs; its objects are readable directly.
    if self._storage_host:
      return blob.public_url
    # V4 signatures cap out at seven days, so long-lived links use V2.
    return await run_in_threadpool(blob.generate_signed_url, expiration=expires_at, version="v2", method="GET")


def build_blob_storage(settings: Settings) -> GcsBlobStorage:
  """Create a storage client with environment-aware credentials."""
  return GcsBlobStorage(bucket_name=settings.audio_bucket, project_id=settings.gcp_project_id, storage_host=settings.gcs_storage_host)


def _normalize_emulator_endpoint(raw_endpoint: str) -> str:
  """Normalize emulator endpoint so the SDK receives scheme+host+port only."""
  parsed = urlparse(raw_endpoint)
  if not parsed.scheme or not parsed.netloc:
    return raw_endpoint.rstrip("/")
  return urlunparse((parsed.scheme, parsed.netloc, "", "", "", "")).rstrip("/")
