"""In-process stores for local development and tests."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from podcast_engine.pipeline.errors import InsufficientCredits, UserNotFound
from podcast_engine.storage.credit_accounts_repo import CreditAccount, CreditAccountStore
from podcast_engine.storage.job_store import DocumentNotFoundError, JobStore, JobTransaction

T = TypeVar("T")


class _MemoryTransaction(JobTransaction):
  """Buffers writes until the owning store commits them."""

  def __init__(self, documents: dict[str, dict[str, Any]]) -> None:
    self._documents = documents
    self._staged: dict[str, dict[str, Any]] = {}

  def _current(self, doc_id: str) -> dict[str, Any] | None:
    if doc_id in self._staged:
      return self._staged[doc_id]
    return self._documents.get(doc_id)

  async def get(self, doc_id: str) -> dict[str, Any] | None:
    current = self._current(doc_id)
    return copy.deepcopy(current) if current is not None else None

  def set(self, doc_id: str, document: dict[str, Any], *, merge: bool = False) -> None:
    current = self._current(doc_id)
    if merge and current is not None:
      merged = copy.deepcopy(current)
      merged.update(copy.deepcopy(document))
      self._staged[doc_id] = merged
      return
    self._staged[doc_id] = copy.deepcopy(document)

  def update(self, doc_id: str, fields: dict[str, Any]) -> None:
    current = self._current(doc_id)
    if current is None:
      raise DocumentNotFoundError(doc_id)
    updated = copy.deepcopy(current)
    updated.update(copy.deepcopy(fields))
    self._staged[doc_id] = updated

  def commit(self) -> None:
    self._documents.update(self._staged)


class InMemoryJobStore(JobStore):
  """Dictionary-backed job store serialized by a single asyncio lock."""

  def __init__(self) -> None:
    self._documents: dict[str, dict[str, Any]] = {}
    self._lock = asyncio.Lock()

  async def get(self, doc_id: str) -> dict[str, Any] | None:
    async with self._lock:
      document = self._documents.get(doc_id)
      return copy.deepcopy(document) if document is not None else None

  async def set(self, doc_id: str, document: dict[str, Any], *, merge: bool = False) -> None:
    async with self._lock:
      transaction = _MemoryTransaction(self._documents)
      transaction.set(doc_id, document, merge=merge)
      transaction.commit()

  async def update(self, doc_id: str, fields: dict[str, Any]) -> None:
    async with self._lock:
      transaction = _MemoryTransaction(self._documents)
      transaction.update(doc_id, fields)
      transaction.commit()

  async def run_transaction(self, fn: Callable[[JobTransaction], Awaitable[T]]) -> T:
    async with self._lock:
      transaction = _MemoryTransaction(self._documents)
      result = await fn(transaction)
      transaction.commit()
      return result


class InMemoryCreditAccountStore(CreditAccountStore):
  """Credit balances held in memory; debits are serialized by a lock."""

  def __init__(self, accounts: dict[str, CreditAccount] | None = None) -> None:
    self._accounts: dict[str, CreditAccount] = dict(accounts or {})
    self._lock = asyncio.Lock()

  def add_account(self, user_id: str, balance: int, plan: str = "personal") -> None:
    self._accounts[user_id] = CreditAccount(user_id=user_id, balance=balance, plan=plan)

  async def get_account(self, user_id: str) -> CreditAccount | None:
    async with self._lock:
      return self._accounts.get(user_id)

  async def get_balance(self, user_id: str) -> int:
    account = await self.get_account(user_id)
    if account is None:
      raise UserNotFound(f"User {user_id} not found.")
    return account.balance

  async def debit(self, user_id: str, amount: int) -> int:
    async with self._lock:
      account = self._accounts.get(user_id)
      if account is None:
        raise UserNotFound(f"User {user_id} not found.")
      if account.balance < amount:
        raise InsufficientCredits(details={"required": amount, "available": account.balance})
      self._accounts[user_id] = account.with_balance(account.balance - amount)
      return account.balance - amount

  async def credit(self, user_id: str, amount: int) -> int:
    async with self._lock:
      account = self._accounts.get(user_id)
      if account is None:
        raise UserNotFound(f"User {user_id} not found.")
      self._accounts[user_id] = account.with_balance(account.balance + amount)
      return account.balance + amount
