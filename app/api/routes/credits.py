"""Routes for reading the caller's credit balance."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.deps import get_generation_store
from app.api.models import CreditBalanceResponse
from app.core.security import CurrentUser, get_current_user
from app.services.credits import get_balance
from app.storage.generation_repo import GenerationStore

router = APIRouter()


@router.get("", response_model=CreditBalanceResponse)
async def read_balance(current_user: CurrentUser = Depends(get_current_user), store: GenerationStore = Depends(get_generation_store)) -> CreditBalanceResponse:  # noqa: B008
  """Return available, reserved and spendable credits."""
  snapshot = await get_balance(store, user_id=current_user.uid)
  return CreditBalanceResponse.from_snapshot(snapshot)
