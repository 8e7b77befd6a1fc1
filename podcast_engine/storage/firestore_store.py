"""Firestore-backed job documents and credit balances."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from google.api_core.exceptions import NotFound
from google.cloud.firestore import AsyncClient, AsyncTransaction, async_transactional

from podcast_engine.pipeline.errors import InsufficientCredits, UserNotFound
from podcast_engine.storage.credit_accounts_repo import CreditAccount, CreditAccountStore
from podcast_engine.storage.job_store import DocumentNotFoundError, JobStore, JobTransaction

T = TypeVar("T")


class _FirestoreTransaction(JobTransaction):
  """Adapts a Firestore transaction to the job store transaction contract."""

  def __init__(self, client: AsyncClient, collection: str, transaction: AsyncTransaction) -> None:
    self._client = client
    self._collection = collection
    self._transaction = transaction

  def _ref(self, doc_id: str):  # type: ignore[no-untyped-def]
    return self._client.collection(self._collection).document(doc_id)

  async def get(self, doc_id: str) -> dict[str, Any] | None:
    snapshot = await self._ref(doc_id).get(transaction=self._transaction)
    if not snapshot.exists:
      return None
    return snapshot.to_dict()

  def set(self, doc_id: str, document: dict[str, Any], *, merge: bool = False) -> None:
    self._transaction.set(self._ref(doc_id), document, merge=merge)

  def update(self, doc_id: str, fields: dict[str, Any]) -> None:
    self._transaction.update(self._ref(doc_id), fields)


class FirestoreJobStore(JobStore):
  """Stores each generation job as one Firestore document."""

  def __init__(self, client: AsyncClient, collection: str) -> None:
    self._client = client
    self._collection = collection

  async def get(self, doc_id: str) -> dict[str, Any] | None:
    snapshot = await self._client.collection(self._collection).document(doc_id).get()
    if not snapshot.exists:
      return None
    return snapshot.to_dict()

  async def set(self, doc_id: str, document: dict[str, Any], *, merge: bool = False) -> None:
    await self._client.collection(self._collection).document(doc_id).set(document, merge=merge)

  async def update(self, doc_id: str, fields: dict[str, Any]) -> None:
    try:
      await self._client.collection(self._collection).document(doc_id).update(fields)
    except NotFound as exc:
      raise DocumentNotFoundError(doc_id) from exc

  async def run_transaction(self, fn: Callable[[JobTransaction], Awaitable[T]]) -> T:
    @async_transactional
    async def _run(transaction: AsyncTransaction) -> T:
      return await fn(_FirestoreTransaction(self._client, self._collection, transaction))

    return await _run(self._client.transaction())


class FirestoreCreditAccountStore(CreditAccountStore):
  """Reads `credits` and `plan` from user documents; debits run in a transaction."""

  def __init__(self, client: AsyncClient, collection: str) -> None:
    self._client = client
    self._collection = collection

  async def get_account(self, user_id: str) -> CreditAccount | None:
    snapshot = await self._client.collection(self._collection).document(user_id).get()
    if not snapshot.exists:
      return None
    data = snapshot.to_dict() or {}
    return CreditAccount(user_id=user_id, balance=int(data.get("credits") or 0), plan=str(data.get("plan") or "personal"))

  async def get_balance(self, user_id: str) -> int:
    account = await self.get_account(user_id)
    if account is None:
      raise UserNotFound(f"User {user_id} not found.")
    return account.balance

  async def debit(self, user_id: str, amount: int) -> int:
    return await self._adjust(user_id, -amount)

  async def credit(self, user_id: str, amount: int) -> int:
    return await self._adjust(user_id, amount)

  async def _adjust(self, user_id: str, delta: int) -> int:
    ref = self._client.collection(self._collection).document(user_id)

    @async_transactional
    async def _run(transaction: AsyncTransaction) -> int:
      snapshot = await ref.get(transaction=transaction)
      if not snapshot.exists:
        raise UserNotFound(f"User {user_id} not found.")
      balance = int((snapshot.to_dict() or {}).get("credits") or 0)
      if balance + delta < 0:
        raise InsufficientCredits(details={"required": -delta, "available": balance})
      transaction.update(ref, {"credits": balance + delta})
      return balance + delta

    return await _run(self._client.transaction())
