"""Credit pricing and reservation for generation jobs."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Final

from podcast_engine.jobs.models import LENGTH_TIERS, MAX_EPISODE_COUNT, LengthTier
from podcast_engine.pipeline.errors import UserNotFound, ValidationFailed
from podcast_engine.storage.credit_accounts_repo import CreditAccountStore

logger = logging.getLogger(__name__)

LENGTH_TIER_COSTS: Final[dict[str, int]] = {"mini": 3, "standard": 6, "deep": 9}
SCHEDULING_COST_PER_EPISODE: Final[int] = 1
PROMO_WORDS_PER_CREDIT: Final[int] = 500
# Whole percentages keep the discount math exact.
PLAN_DISCOUNT_PERCENT: Final[dict[str, int]] = {"personal": 100, "creator": 90, "business": 80, "enterprise": 70}
DEFAULT_PLAN: Final[str] = "personal"

TIER_DURATION_MINUTES: Final[dict[str, tuple[int, int]]] = {"mini": (3, 5), "standard": (7, 10), "deep": (12, 15)}


def length_tier_for_minutes(minutes: int) -> LengthTier:
  """Map a requested episode length in minutes to a pricing tier."""
  if minutes <= 3:
    return "mini"
  if minutes <= 7:
    return "standard"
  return "deep"


def normalize_plan(plan: str | None) -> str:
  normalized = (plan or "").strip().lower()
  if normalized not in PLAN_DISCOUNT_PERCENT:
    logger.warning("Unknown plan %r; pricing as %s", plan, DEFAULT_PLAN)
    return DEFAULT_PLAN
  return normalized


def promo_surcharge(promo_word_count: int) -> int:
  """Credits added once per job for promotional text."""
  if promo_word_count <= 0:
    return 0
  return math.ceil(promo_word_count / PROMO_WORDS_PER_CREDIT)


def price_job(length_tier: str, episode_count: int, promo_word_count: int = 0, scheduled_episode_count: int = 0, plan: str | None = DEFAULT_PLAN) -> int:
  """Return the credit cost of a job.

  Each episode costs its tier base plus the scheduling fee for every scheduled
  episode; the promo surcharge is charged once per job. The plan discount is
  applied to the sum and the result is rounded up, never below one credit.
  """
  if length_tier not in LENGTH_TIERS:
    raise ValidationFailed(f"Unknown length tier {length_tier!r}.", details={"field": "episode_length_tier"})
  if not 1 <= episode_count <= MAX_EPISODE_COUNT:
    raise ValidationFailed(f"episode_count must be between 1 and {MAX_EPISODE_COUNT}.", details={"field": "episode_count"})
  if promo_word_count < 0 or scheduled_episode_count < 0:
    raise ValidationFailed("Word and schedule counts must not be negative.")

  per_episode = LENGTH_TIER_COSTS[length_tier] + scheduled_episode_count * SCHEDULING_COST_PER_EPISODE
  total = per_episode * episode_count + promo_surcharge(promo_word_count)
  discount = PLAN_DISCOUNT_PERCENT[normalize_plan(plan)]
  # Integer ceil division avoids float drift (e.g. 0.9 * 10).
  discounted = -(-total * discount // 100)
  return max(discounted, 1)


@dataclass(frozen=True)
class CreditReservation:
  """Result of a successful debit."""

  user_id: str
  amount: int
  balance_after: int


class CreditLedger:
  """Prices jobs and moves credits against user accounts."""

  def __init__(self, accounts: CreditAccountStore) -> None:
    self._accounts = accounts

  async def plan_for(self, user_id: str) -> str:
    account = await self._accounts.get_account(user_id)
    if account is None:
      raise UserNotFound(f"User {user_id} not found.")
    return normalize_plan(account.plan)

  async def balance(self, user_id: str) -> int:
    return await self._accounts.get_balance(user_id)

  async def reserve(self, user_id: str, amount: int) -> CreditReservation:
    """Atomically debit amount; raises InsufficientCredits or UserNotFound."""
    if amount <= 0:
      raise ValueError("Reservation amount must be positive.")
    balance_after = await self._accounts.debit(user_id, amount)
    logger.info("Reserved %s credits for user %s (balance now %s)", amount, user_id, balance_after)
    return CreditReservation(user_id=user_id, amount=amount, balance_after=balance_after)

  async def refund(self, user_id: str, amount: int) -> int:
    if amount <= 0:
      raise ValueError("Refund amount must be positive.")
    balance_after = await self._accounts.credit(user_id, amount)
    logger.info("Refunded %s credits to user %s (balance now %s)", amount, user_id, balance_after)
    return balance_after
