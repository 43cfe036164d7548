"""Operator and scheduler routes guarded by the task secret."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from app.api.deps import get_generation_store
from app.api.models import CreditBalanceResponse, ReconcileRequest, ReconcileResponse, TopUpRequest
from app.config import Settings, get_settings
from app.core.security import require_task_secret
from app.notifications.factory import get_broadcaster
from app.notifications.service import JobUpdateBroadcaster
from app.providers.registry import ProviderRegistry, get_provider_registry
from app.services.credits import grant_credits
from app.services.reconciliation import reconcile_stale_jobs
from app.storage.generation_repo import GenerationStore

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_task_secret)])


@router.post("/reconcile", response_model=ReconcileResponse)
async def run_reconciliation(
  payload: ReconcileRequest | None = None,
  store: GenerationStore = Depends(get_generation_store),  # noqa: B008
  providers: ProviderRegistry = Depends(get_provider_registry),  # noqa: B008
  broadcaster: JobUpdateBroadcaster = Depends(get_broadcaster),  # noqa: B008
  settings: Settings = Depends(get_settings),  # noqa: B008
) -> ReconcileResponse:
  """Sweep stale and flagged jobs once."""
  request = payload or ReconcileRequest()
  summary = await reconcile_stale_jobs(store, providers, broadcaster, settings, older_than_seconds=request.older_than_seconds, limit=request.limit)
  return ReconcileResponse(**summary.as_dict())


@router.post("/credits/top-up", response_model=CreditBalanceResponse)
async def top_up(payload: TopUpRequest, store: GenerationStore = Depends(get_generation_store)) -> CreditBalanceResponse:  # noqa: B008
  """Grant credits to a user."""
  snapshot = await grant_credits(store, user_id=payload.user_id, quantity=payload.quantity, period_end=payload.period_end, reason=payload.reason)
  return CreditBalanceResponse.from_snapshot(snapshot)
