"""Read a root-level .env file into the process environment for local runs."""

from __future__ import annotations

import os
from pathlib import Path

_QUOTES = {'"', "'"}


def default_env_path() -> Path:
  return Path(__file__).resolve().parents[2] / ".env"


def parse_env_line(raw_line: str) -> tuple[str, str] | None:
  """Return (key, value) for an assignment line, or None for blanks, comments and junk.

  Quoted values keep everything between the quotes, including `#`; unquoted
  values drop a trailing ` # comment`.
  """
  line = raw_line.strip()
  if line.startswith("export "):
    line = line.removeprefix("export ").lstrip()
  if not line or line.startswith("#") or "=" not in line:
    return None

  key, _, value = line.partition("=")
  key = key.strip()
  if not key:
    return None

  value = value.strip()
  if len(value) >= 2 and value[0] in _QUOTES and value[-1] == value[0]:
    return key, value[1:-1]
  comment_at = value.find(" #")
  if comment_at != -1:
    value = value[:comment_at].rstrip()
  return key, value


def load_env_file(path: Path, *, override: bool = False) -> list[str]:
  """Export the file's assignments; existing variables win unless override is set.

  Returns the keys that were written.
  """
  if not path.is_file():
    return []

  applied: list[str] = []
  for raw_line in path.read_text(encoding="utf-8").splitlines():
    parsed = parse_env_line(raw_line)
    if parsed is None:
      continue
    key, value = parsed
    if key in os.environ and not override:
      continue
    os.environ[key] = value
    applied.append(key)
  return applied
