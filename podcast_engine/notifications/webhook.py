"""Best-effort completion webhook for finalized episodes."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from podcast_engine.jobs.models import GenerationJob
from podcast_engine.utils.ids import now_iso

WEBHOOK_SECRET_HEADER = "X-Webhook-Secret"


@dataclass(frozen=True)
class DeliveryResult:
  """Outcome of one notification attempt; never raised."""

  delivered: bool
  skipped: bool = False
  status_code: int | None = None
  error: str | None = None


class CompletionNotifier(Protocol):
  async def notify_finalized(self, job: GenerationJob) -> DeliveryResult:
    ...


class NullCompletionNotifier(CompletionNotifier):
  """Used when no webhook URL is configured."""

  async def notify_finalized(self, job: GenerationJob) -> DeliveryResult:
    return DeliveryResult(delivered=False, skipped=True)


class WebhookCompletionNotifier(CompletionNotifier):
  """POSTs `{jobId, userId, event, timestamp}` to a configured endpoint."""

  def __init__(self, *, url: str, secret: str | None, timeout_seconds: float = 5.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._url = url
    self._secret = secret
    self._timeout_seconds = timeout_seconds
    self._transport = transport

  def _payload(self, job: GenerationJob) -> dict[str, Any]:
    return {"jobId": job.job_id, "userId": job.user_id, "event": "finalized", "timestamp": now_iso()}

  async def notify_finalized(self, job: GenerationJob) -> DeliveryResult:
    headers = {WEBHOOK_SECRET_HEADER: self._secret} if self._secret else {}
    try:
      async with httpx.AsyncClient(timeout=self._timeout_seconds, transport=self._transport, trust_env=False) as client:
        # httpx timeouts are per phase; the deadline covers the whole delivery.
        response = await asyncio.wait_for(client.post(self._url, json=self._payload(job), headers=headers), timeout=self._timeout_seconds)
    except (httpx.HTTPError, TimeoutError) as exc:
      return DeliveryResult(delivered=False, error=f"{type(exc).__name__}: {exc}")

    if response.is_success:
      return DeliveryResult(delivered=True, status_code=response.status_code)
    return DeliveryResult(delivered=False, status_code=response.status_code, error=f"HTTP {response.status_code}")


def build_completion_notifier(*, url: str | None, secret: str | None, timeout_seconds: float) -> CompletionNotifier:
  if not url:
    return NullCompletionNotifier()
  return WebhookCompletionNotifier(url=url, secret=secret, timeout_seconds=timeout_seconds)
