"""Identifier and timestamp utilities."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime


def generate_job_id() -> str:
  """Return a new generation job identifier."""
  return str(uuid.uuid4())


def utc_now() -> datetime:
  return datetime.now(UTC)


def now_iso() -> str:
  """Return the current UTC time in the persisted ISO-8601 format."""
  return utc_now().strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_iso(value: str) -> datetime:
  """Parse a timestamp written by now_iso()."""
  return datetime.strptime(value, "%Y-%m-%dT%H:%M:%SZ").replace(tzinfo=UTC)
