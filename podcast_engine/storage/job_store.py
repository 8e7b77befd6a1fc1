"""Document store contracts used by the pipeline."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

T = TypeVar("T")


class DocumentNotFoundError(KeyError):
  """Raised when a partial update targets a missing document."""


class JobTransaction(Protocol):
  """Handle passed to transaction callbacks; writes apply only on commit."""

  async def get(self, doc_id: str) -> dict[str, Any] | None:
    """Read a document inside the transaction."""
    ...

  def set(self, doc_id: str, document: dict[str, Any], *, merge: bool = False) -> None:
    """Stage a full (or merged) document write."""
    ...

  def update(self, doc_id: str, fields: dict[str, Any]) -> None:
    """Stage a top-level field update on an existing document."""
    ...


class JobStore(Protocol):
  """Persistence for generation job documents."""

  async def get(self, doc_id: str) -> dict[str, Any] | None:
    """Return a copy of the stored document or None."""
    ...

  async def set(self, doc_id: str, document: dict[str, Any], *, merge: bool = False) -> None:
    """Create or replace a document, or merge top-level fields into it."""
    ...

  async def update(self, doc_id: str, fields: dict[str, Any]) -> None:
    """Update top-level fields of an existing document."""
    ...

  async def run_transaction(self, fn: Callable[[JobTransaction], Awaitable[T]]) -> T:
    """Run fn atomically; staged writes commit only if fn returns."""
    ...
