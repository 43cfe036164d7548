"""Credit ledger services: reservations, settlement and top-ups with an audit log."""

from __future__ import annotations

import datetime
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InsufficientCreditsError, LedgerError
from app.jobs.models import CreditOutcome
from app.schema.credits import CreditAction, CreditTransaction, UserCredits

logger = logging.getLogger(__name__)


class CreditBalance(Protocol):
  available_credits: int
  reserved_credits: int
  total_credits: int


@dataclass(frozen=True)
class CreditSnapshot:
  """Point-in-time view of a user's balance."""

  user_id: str
  available: int
  reserved: int
  total: int
  period_end: datetime.datetime | None = None

  @property
  def spendable(self) -> int:
    return max(self.available - self.reserved, 0)


def _utc_now() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


def spendable_credits(balance: CreditBalance) -> int:
  return max(int(balance.available_credits) - int(balance.reserved_credits), 0)


def snapshot_of(user_id: str, balance: CreditBalance | None) -> CreditSnapshot:
  if balance is None:
    return CreditSnapshot(user_id=user_id, available=0, reserved=0, total=0)
  return CreditSnapshot(user_id=user_id, available=int(balance.available_credits), reserved=int(balance.reserved_credits), total=int(balance.total_credits), period_end=getattr(balance, "period_end", None))


def resolve_credit_outcome(status: str, *, credits: int, reservation_held: bool, refund_on_failure: bool) -> CreditOutcome:
  """Decide how a terminal status settles a job's credits."""
  if credits <= 0:
    return "none"
  if status == "succeeded":
    return "debited"
  if not refund_on_failure:
    return "debited"
  # Nothing was held, so there is nothing to give back.
  return "released" if reservation_held else "none"


def apply_reservation(balance: CreditBalance, quantity: int) -> None:
  """Move quantity into reserved_credits when the spendable balance allows it."""
  if quantity <= 0:
    raise ValueError("quantity must be positive.")
  available = spendable_credits(balance)
  if available < quantity:
    raise InsufficientCreditsError(required=quantity, available=available)
  balance.reserved_credits = int(balance.reserved_credits) + int(quantity)


def apply_debit(balance: CreditBalance, quantity: int, *, held: bool) -> int:
  """Convert a hold into a spend, or spend directly when no hold was placed.

  Returns the shortfall when an unheld debit exceeds the available balance.
  """
  if quantity <= 0:
    raise ValueError("quantity must be positive.")
  if held:
    balance.reserved_credits = max(int(balance.reserved_credits) - int(quantity), 0)
  shortfall = max(int(quantity) - int(balance.available_credits), 0)
  balance.available_credits = max(int(balance.available_credits) - int(quantity), 0)
  return shortfall


def apply_release(balance: CreditBalance, quantity: int) -> None:
  """Drop a hold without touching available_credits."""
  if quantity <= 0:
    raise ValueError("quantity must be positive.")
  balance.reserved_credits = max(int(balance.reserved_credits) - int(quantity), 0)


def apply_top_up(balance: CreditBalance, quantity: int) -> None:
  if quantity <= 0:
    raise ValueError("quantity must be positive.")
  balance.available_credits = int(balance.available_credits) + int(quantity)
  balance.total_credits = int(balance.total_credits) + int(quantity)


@asynccontextmanager
async def _ledger_transaction(session: AsyncSession):
  """Start a transaction appropriate for the current session state.

  AsyncSession autobegins on the first statement, so callers that already ran a
  query (the job insert or the finalize UPDATE) get a SAVEPOINT instead.
  """
  if session.in_transaction():
    async with session.begin_nested():
      yield
    return
  async with session.begin():
    yield


async def _lock_balance(session: AsyncSession, *, user_id: str) -> UserCredits | None:
  stmt = select(UserCredits).where(UserCredits.user_id == user_id).with_for_update()
  result = await session.execute(stmt)
  return result.scalar_one_or_none()


def _log_entry(*, user_id: str, job_id: str | None, action: CreditAction, quantity: int, balance: CreditBalance, metadata: dict[str, Any] | None = None) -> CreditTransaction:
  return CreditTransaction(user_id=user_id, job_id=job_id, action=action, quantity=int(quantity), balance_after=spendable_credits(balance), metadata_json=metadata)


async def get_credit_snapshot(session: AsyncSession, *, user_id: str) -> CreditSnapshot:
  """Return the current balance without locking."""
  result = await session.execute(select(UserCredits).where(UserCredits.user_id == user_id))
  return snapshot_of(user_id, result.scalar_one_or_none())


async def reserve_credits(session: AsyncSession, *, user_id: str, job_id: str, quantity: int, metadata: dict[str, Any] | None = None) -> CreditSnapshot:
  """Place a hold for a job; raises InsufficientCreditsError when a concurrent reservation won."""
  async with _ledger_transaction(session):
    # Lock the balance row so concurrent reservations serialize.
    balance = await _lock_balance(session, user_id=user_id)
    if balance is None:
      raise InsufficientCreditsError(required=quantity, available=0)
    apply_reservation(balance, quantity)
    balance.updated_at = _utc_now()
    session.add(_log_entry(user_id=user_id, job_id=job_id, action=CreditAction.RESERVE, quantity=quantity, balance=balance, metadata=metadata))
  return snapshot_of(user_id, balance)


async def settle_job_credits(session: AsyncSession, *, user_id: str, job_id: str, quantity: int, outcome: CreditOutcome, reservation_held: bool) -> CreditSnapshot | None:
  """Apply a finalize outcome to the balance inside the caller's finalize transaction."""
  if outcome == "none" or quantity <= 0:
    return None

  async with _ledger_transaction(session):
    balance = await _lock_balance(session, user_id=user_id)
    if balance is None:
      raise LedgerError(f"credit balance missing for user {user_id}")

    if outcome == "debited":
      shortfall = apply_debit(balance, quantity, held=reservation_held)
      metadata = {"held": reservation_held}
      if shortfall:
        logger.warning("Unheld debit exceeded balance user_id=%s job_id=%s shortfall=%s", user_id, job_id, shortfall)
        metadata["shortfall"] = shortfall
      session.add(_log_entry(user_id=user_id, job_id=job_id, action=CreditAction.DEBIT, quantity=quantity, balance=balance, metadata=metadata))
    else:
      apply_release(balance, quantity)
      session.add(_log_entry(user_id=user_id, job_id=job_id, action=CreditAction.RELEASE, quantity=quantity, balance=balance))
    balance.updated_at = _utc_now()

  return snapshot_of(user_id, balance)


async def top_up_credits(session: AsyncSession, *, user_id: str, quantity: int, period_end: datetime.datetime | None = None, metadata: dict[str, Any] | None = None) -> CreditSnapshot:
  """Add credits, creating the balance row on first use."""
  now = _utc_now()
  async with _ledger_transaction(session):
    balance = await _lock_balance(session, user_id=user_id)
    if balance is None:
      balance = UserCredits(user_id=user_id, available_credits=0, reserved_credits=0, total_credits=0, period_start=now, updated_at=now)
      session.add(balance)
      await session.flush()
    apply_top_up(balance, quantity)
    if period_end is not None:
      balance.period_start = now
      balance.period_end = period_end
    balance.updated_at = now
    session.add(_log_entry(user_id=user_id, job_id=None, action=CreditAction.TOP_UP, quantity=quantity, balance=balance, metadata=metadata))
  return snapshot_of(user_id, balance)
