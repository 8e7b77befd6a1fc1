"""Tavily-backed research provider."""

from __future__ import annotations

import logging
from typing import Any

from starlette.concurrency import run_in_threadpool
from tavily import TavilyClient

from podcast_engine.providers.base import ProviderError, ResearchProvider, ResearchResult, with_timeout

logger = logging.getLogger(__name__)

# Tavily rejects very long queries.
MAX_QUERY_CHARS = 400


class TavilyResearchProvider(ResearchProvider):
  """Runs an advanced Tavily search and condenses the answer and sources."""

  def __init__(self, *, api_key: str | None, max_results: int = 5, timeout_seconds: float = 60.0) -> None:
    if not api_key:
      raise ValueError("Tavily API key is required.")
    self._client = TavilyClient(api_key=api_key)
    self._max_results = max_results
    self._timeout_seconds = timeout_seconds

  async def research(self, prompt: str) -> ResearchResult:
    query = " ".join(prompt.split())
    if len(query) > MAX_QUERY_CHARS:
      logger.warning("Tavily query truncated from %s to %s characters", len(query), MAX_QUERY_CHARS)
      query = query[:MAX_QUERY_CHARS]
    try:
      # Tavily client is synchronous.
      call = run_in_threadpool(self._client.search, query=query, search_depth="advanced", include_answer=True, max_results=self._max_results)
      response = await with_timeout("tavily", call, self._timeout_seconds)
    except ProviderError:
      raise
    except Exception as exc:
      logger.error("Tavily search failed: %s", exc)
      raise ProviderError("tavily", str(exc)) from exc

    return _to_result(response)


def _to_result(response: dict[str, Any]) -> ResearchResult:
  results = [item for item in response.get("results") or [] if isinstance(item, dict)]
  sections: list[str] = []
  answer = (response.get("answer") or "").strip()
  if answer:
    sections.append(answer)
  for item in results:
    content = (item.get("content") or "").strip()
    if content:
      sections.append(content)

  if not sections:
    raise ProviderError("tavily", "search returned no content")

  source_url = results[0].get("url") if results else None
  return ResearchResult(text="\n\n".join(sections), source_url=source_url)
