"""Postgres-backed job documents and credit balances using SQLAlchemy."""

from __future__ import annotations

import copy
from collections.abc import Awaitable, Callable
from typing import Any, Literal, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from podcast_engine.core.database import get_session_factory
from podcast_engine.pipeline.errors import InsufficientCredits, UserNotFound
from podcast_engine.schema.sql import CreditAccountRow, GenerationJobRow
from podcast_engine.storage.credit_accounts_repo import CreditAccount, CreditAccountStore
from podcast_engine.storage.job_store import DocumentNotFoundError, JobStore, JobTransaction
from podcast_engine.utils.ids import now_iso

T = TypeVar("T")
_WriteKind = Literal["set", "merge", "update"]


class _PostgresTransaction(JobTransaction):
  """Row-locking transaction handle; staged writes are flushed by apply()."""

  def __init__(self, session: AsyncSession) -> None:
    self._session = session
    self._rows: dict[str, GenerationJobRow | None] = {}
    self._writes: list[tuple[_WriteKind, str, dict[str, Any]]] = []

  async def _locked_row(self, doc_id: str) -> GenerationJobRow | None:
    if doc_id not in self._rows:
      stmt = select(GenerationJobRow).where(GenerationJobRow.job_id == doc_id).with_for_update()
      result = await self._session.execute(stmt)
      self._rows[doc_id] = result.scalar_one_or_none()
    return self._rows[doc_id]

  async def get(self, doc_id: str) -> dict[str, Any] | None:
    row = await self._locked_row(doc_id)
    if row is None:
      return None
    return copy.deepcopy(row.document)

  def set(self, doc_id: str, document: dict[str, Any], *, merge: bool = False) -> None:
    self._writes.append(("merge" if merge else "set", doc_id, copy.deepcopy(document)))

  def update(self, doc_id: str, fields: dict[str, Any]) -> None:
    self._writes.append(("update", doc_id, copy.deepcopy(fields)))

  async def apply(self) -> None:
    for kind, doc_id, payload in self._writes:
      row = await self._locked_row(doc_id)
      timestamp = now_iso()
      if row is None:
        if kind == "update":
          raise DocumentNotFoundError(doc_id)
        row = GenerationJobRow(job_id=doc_id, user_id=payload.get("user_id"), document=payload, created_at=timestamp, updated_at=timestamp)
        self._session.add(row)
        self._rows[doc_id] = row
        continue

      # Reassign the JSONB value so SQLAlchemy detects the change.
      if kind == "set":
        row.document = payload
      else:
        row.document = {**row.document, **payload}
      row.updated_at = timestamp


class PostgresJobStore(JobStore):
  """Stores each generation job as one JSONB document row."""

  def __init__(self) -> None:
    self._session_factory = get_session_factory()

  async def get(self, doc_id: str) -> dict[str, Any] | None:
    async with self._session_factory() as session:
      row = await session.get(GenerationJobRow, doc_id)
      if row is None:
        return None
      return copy.deepcopy(row.document)

  async def set(self, doc_id: str, document: dict[str, Any], *, merge: bool = False) -> None:
    async def _write(transaction: JobTransaction) -> None:
      transaction.set(doc_id, document, merge=merge)

    await self.run_transaction(_write)

  async def update(self, doc_id: str, fields: dict[str, Any]) -> None:
    async def _write(transaction: JobTransaction) -> None:
      transaction.update(doc_id, fields)

    await self.run_transaction(_write)

  async def run_transaction(self, fn: Callable[[JobTransaction], Awaitable[T]]) -> T:
    async with self._session_factory() as session:
      async with session.begin():
        transaction = _PostgresTransaction(session)
        result = await fn(transaction)
        await transaction.apply()
      return result


class PostgresCreditAccountStore(CreditAccountStore):
  """Credit balances guarded by row locks and a non-negative check constraint."""

  def __init__(self) -> None:
    self._session_factory = get_session_factory()

  async def get_account(self, user_id: str) -> CreditAccount | None:
    async with self._session_factory() as session:
      row = await session.get(CreditAccountRow, user_id)
      if row is None:
        return None
      return CreditAccount(user_id=row.user_id, balance=row.balance, plan=row.plan)

  async def get_balance(self, user_id: str) -> int:
    account = await self.get_account(user_id)
    if account is None:
      raise UserNotFound(f"User {user_id} not found.")
    return account.balance

  async def debit(self, user_id: str, amount: int) -> int:
    async with self._session_factory() as session:
      async with session.begin():
        row = await self._locked_account(session, user_id)
        # Compare and write under the row lock so concurrent debits serialize.
        if row.balance < amount:
          raise InsufficientCredits(details={"required": amount, "available": row.balance})
        row.balance = row.balance - amount
        row.updated_at = now_iso()
        return row.balance

  async def credit(self, user_id: str, amount: int) -> int:
    async with self._session_factory() as session:
      async with session.begin():
        row = await self._locked_account(session, user_id)
        row.balance = row.balance + amount
        row.updated_at = now_iso()
        return row.balance

  async def _locked_account(self, session: AsyncSession, user_id: str) -> CreditAccountRow:
    stmt = select(CreditAccountRow).where(CreditAccountRow.user_id == user_id).with_for_update()
    row = (await session.execute(stmt)).scalar_one_or_none()
    if row is None:
      raise UserNotFound(f"User {user_id} not found.")
    return row
