"""Credit account persistence contract."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Protocol


@dataclass(frozen=True)
class CreditAccount:
  """One user's spendable credit balance and subscription plan."""

  user_id: str
  balance: int
  plan: str = "personal"

  def with_balance(self, balance: int) -> CreditAccount:
    return replace(self, balance=balance)


class CreditAccountStore(Protocol):
  """Balance reads and atomic conditional debits."""

  async def get_account(self, user_id: str) -> CreditAccount | None:
    """Return the account or None when the user is unknown."""
    ...

  async def get_balance(self, user_id: str) -> int:
    """Return the current balance; raises UserNotFound."""
    ...

  async def debit(self, user_id: str, amount: int) -> int:
    """Atomically subtract amount when balance allows; returns the new balance.

    Raises InsufficientCredits (balance untouched) or UserNotFound.
    """
    ...

  async def credit(self, user_id: str, amount: int) -> int:
    """Atomically add amount; returns the new balance."""
    ...
