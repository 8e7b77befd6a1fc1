from __future__ import annotations

import asyncio

import pytest

from podcast_engine.pipeline.errors import InsufficientCredits, UserNotFound, ValidationFailed
from podcast_engine.services.credits import CreditLedger, length_tier_for_minutes, normalize_plan, price_job, promo_surcharge
from podcast_engine.storage.memory_store import InMemoryCreditAccountStore


def test_price_job_examples() -> None:
  assert price_job("mini", 2, 0, 0, "personal") == 6
  assert price_job("deep", 2, 0, 2, "personal") == 22
  assert price_job("standard", 1) == 6


def test_price_job_promo_surcharge_is_per_job() -> None:
  assert promo_surcharge(0) == 0
  assert promo_surcharge(1) == 1
  assert promo_surcharge(500) == 1
  assert promo_surcharge(501) == 2
  # 3 * 3 episodes + 1 promo credit
  assert price_job("mini", 3, promo_word_count=20) == 10


def test_price_job_applies_plan_discount_with_ceiling() -> None:
  # 10 credits at 90% is exactly 9; no float drift upwards.
  assert price_job("mini", 3, promo_word_count=1, plan="creator") == 9
  # 6 * 0.7 = 4.2 rounds up.
  assert price_job("mini", 2, plan="enterprise") == 5
  assert price_job("mini", 2, plan="business") == 5


@pytest.mark.parametrize("tier", ["mini", "standard", "deep"])
@pytest.mark.parametrize("plan", ["personal", "creator", "business", "enterprise"])
def test_price_job_is_positive_and_monotonic_in_episodes(tier: str, plan: str) -> None:
  prices = [price_job(tier, count, plan=plan) for count in range(1, 11)]
  assert all(price >= 1 for price in prices)
  assert prices == sorted(prices)


def test_price_job_unknown_plan_prices_as_personal() -> None:
  assert normalize_plan("gold") == "personal"
  assert normalize_plan(None) == "personal"
  assert price_job("mini", 2, plan="gold") == price_job("mini", 2, plan="personal")


@pytest.mark.parametrize(("tier", "count", "words", "scheduled"), [("huge", 1, 0, 0), ("mini", 0, 0, 0), ("mini", 11, 0, 0), ("mini", 1, -1, 0), ("mini", 1, 0, -2)])
def test_price_job_rejects_invalid_input(tier: str, count: int, words: int, scheduled: int) -> None:
  with pytest.raises(ValidationFailed):
    price_job(tier, count, words, scheduled)


def test_length_tier_for_minutes() -> None:
  assert length_tier_for_minutes(3) == "mini"
  assert length_tier_for_minutes(5) == "standard"
  assert length_tier_for_minutes(7) == "standard"
  assert length_tier_for_minutes(12) == "deep"


@pytest.mark.anyio
async def test_reserve_debits_and_reports_balance() -> None:
  accounts = InMemoryCreditAccountStore()
  accounts.add_account("user-1", 10, plan="creator")
  ledger = CreditLedger(accounts)

  reservation = await ledger.reserve("user-1", 6)

  assert reservation.balance_after == 4
  assert await ledger.balance("user-1") == 4
  assert await ledger.plan_for("user-1") == "creator"


@pytest.mark.anyio
async def test_reserve_insufficient_leaves_balance_untouched() -> None:
  accounts = InMemoryCreditAccountStore()
  accounts.add_account("user-1", 5)
  ledger = CreditLedger(accounts)

  with pytest.raises(InsufficientCredits) as excinfo:
    await ledger.reserve("user-1", 6)

  assert excinfo.value.details == {"required": 6, "available": 5}
  assert await ledger.balance("user-1") == 5


@pytest.mark.anyio
async def test_reserve_unknown_user() -> None:
  ledger = CreditLedger(InMemoryCreditAccountStore())
  with pytest.raises(UserNotFound):
    await ledger.reserve("ghost", 1)
  with pytest.raises(UserNotFound):
    await ledger.plan_for("ghost")


@pytest.mark.anyio
async def test_concurrent_reservations_never_overdraw() -> None:
  accounts = InMemoryCreditAccountStore()
  accounts.add_account("user-1", 10)
  ledger = CreditLedger(accounts)

  results = await asyncio.gather(*(ledger.reserve("user-1", 6) for _ in range(2)), return_exceptions=True)

  succeeded = [result for result in results if not isinstance(result, Exception)]
  failed = [result for result in results if isinstance(result, InsufficientCredits)]
  assert len(succeeded) == 1
  assert len(failed) == 1
  assert await ledger.balance("user-1") == 4


@pytest.mark.anyio
async def test_refund_credits_back() -> None:
  accounts = InMemoryCreditAccountStore()
  accounts.add_account("user-1", 4)
  ledger = CreditLedger(accounts)

  assert await ledger.refund("user-1", 6) == 10
  with pytest.raises(ValueError):
    await ledger.refund("user-1", 0)
