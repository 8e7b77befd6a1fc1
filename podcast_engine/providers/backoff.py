"""Retry logic for rate-limited provider calls."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


def _is_rate_limited(error: Exception) -> bool:
  message = str(error)
  return "429" in message or "Too Many Requests" in message or "RESOURCE_EXHAUSTED" in message or "Resource Exhausted" in message


async def retry_with_backoff(func: Callable[..., Awaitable[T]], *args: Any, retries: int = 3, base_delay: float = 1.0, **kwargs: Any) -> T:
  """Call func, retrying 429/quota errors with jittered exponential backoff."""
  for attempt in range(retries):
    try:
      return await func(*args, **kwargs)
    except Exception as exc:
      # Non-retryable errors propagate immediately.
      if not _is_rate_limited(exc) or attempt == retries - 1:
        raise
      delay = base_delay * (2**attempt) + random.uniform(0, 1)
      logger.warning("Rate limited (attempt %s/%s); retrying in %.1fs: %s", attempt + 1, retries, delay, exc)
      await asyncio.sleep(delay)
  raise RuntimeError("retry_with_backoff exhausted without a result")
