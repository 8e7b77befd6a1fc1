from __future__ import annotations

from dataclasses import replace
from unittest.mock import AsyncMock, Mock, patch

import pytest

from podcast_engine.config import get_settings
from podcast_engine.services.tasks.factory import get_stage_dispatcher
from podcast_engine.services.tasks.interface import TASK_SECRET_HEADER
from podcast_engine.services.tasks.local import LocalHttpDispatcher


@pytest.mark.anyio
async def test_local_dispatch_posts_stage_to_advance_endpoint() -> None:
  """The local dispatcher posts the job and stage to the internal advance endpoint."""
  settings = replace(get_settings(), base_url="https://podcast.internal/", task_secret="test-task-secret", task_service_provider="local-http")

  with patch("podcast_engine.services.tasks.local.httpx.AsyncClient") as mock_client_cls:
    mock_client = AsyncMock()
    mock_client_cls.return_value.__aenter__.return_value = mock_client
    mock_response = Mock()
    mock_response.raise_for_status = Mock()
    mock_client.post.return_value = mock_response

    dispatcher = get_stage_dispatcher(settings)
    assert isinstance(dispatcher, LocalHttpDispatcher)
    await dispatcher.dispatch("job-abc", "voice")

  mock_client.post.assert_called_once()
  args, kwargs = mock_client.post.call_args
  assert args[0] == "https://podcast.internal/internal/tasks/advance"
  assert kwargs["json"] == {"job_id": "job-abc", "stage": "voice"}
  assert kwargs["headers"] == {TASK_SECRET_HEADER: "test-task-secret"}


@pytest.mark.anyio
async def test_local_dispatch_requires_base_url_and_secret() -> None:
  with pytest.raises(RuntimeError):
    await LocalHttpDispatcher(replace(get_settings(), base_url=None, task_secret="x")).dispatch("job-abc", "research")

  with patch("podcast_engine.services.tasks.local.httpx.AsyncClient"):
    with pytest.raises(RuntimeError):
      await LocalHttpDispatcher(replace(get_settings(), base_url="https://podcast.internal", task_secret=None)).dispatch("job-abc", "research")


def test_loopback_urls_route_in_process() -> None:
  dispatcher = LocalHttpDispatcher(get_settings())
  assert dispatcher._should_use_asgi_transport("http://localhost:8080")
  assert dispatcher._should_use_asgi_transport("http://127.0.0.1:8080")
  assert not dispatcher._should_use_asgi_transport("https://podcast.internal")
