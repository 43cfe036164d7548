"""Credit balance reads and operator top-ups."""

from __future__ import annotations

import datetime
import logging
from typing import Any

from app.core.errors import JobValidationError
from app.services.credit_ledger import CreditSnapshot
from app.storage.generation_repo import GenerationStore

logger = logging.getLogger(__name__)


async def get_balance(store: GenerationStore, *, user_id: str) -> CreditSnapshot:
  return await store.get_credit_snapshot(user_id)


async def grant_credits(store: GenerationStore, *, user_id: str, quantity: int, period_end: datetime.datetime | None = None, reason: str | None = None) -> CreditSnapshot:
  """Add credits to a user's balance from an operator or billing task."""
  if quantity <= 0:
    raise JobValidationError("quantity must be positive")
  metadata: dict[str, Any] | None = {"reason": reason} if reason else None
  snapshot = await store.top_up_credits(user_id, quantity=quantity, period_end=period_end, metadata=metadata)
  logger.info("Credits granted user_id=%s quantity=%s available=%s", user_id, quantity, snapshot.available)
  return snapshot
