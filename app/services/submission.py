"""Submit one external generation job and hold its credits."""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

from app.config import Settings
from app.core.errors import InsufficientCreditsError, LedgerError
from app.jobs.models import GenerationJobRecord
from app.providers.registry import ProviderRegistry
from app.services.credit_rules import estimate_credits
from app.storage.generation_repo import GenerationStore
from app.utils.ids import generate_job_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmitResult:
  job_id: str
  estimated_credits: int


def build_webhook_url(settings: Settings, provider: str) -> str | None:
  """Return the provider callback URL, or None when webhooks are not configured."""
  if not settings.public_base_url or not settings.webhook_secret:
    return None
  base = settings.public_base_url.rstrip("/")
  return f"{base}/v1/webhooks/{quote(provider)}?token={quote(settings.webhook_secret)}"


async def submit_generation_job(store: GenerationStore, providers: ProviderRegistry, settings: Settings, *, user_id: str, tool_id: str, provider: str, job_input: dict[str, Any]) -> SubmitResult:
  """Validate, pre-check credits, call the provider once and persist the job.

  Validation, credit and provider failures raise before anything is written.
  A ledger failure after the provider accepted the job still persists the job,
  flagged for reconciliation, so the external work is never orphaned.
  """
  # Resolve the adapter and cost first so bad requests never reach a provider.
  adapter = providers.for_tool(provider, tool_id)
  credits = estimate_credits(tool_id, job_input)

  if credits > 0:
    snapshot = await store.get_credit_snapshot(user_id)
    if snapshot.spendable < credits:
      raise InsufficientCreditsError(required=credits, available=snapshot.spendable)

  submission = await adapter.submit(tool_id=tool_id, job_input=job_input, webhook_url=build_webhook_url(settings, provider))

  now = datetime.datetime.now(datetime.UTC)
  record = GenerationJobRecord(
    job_id=generate_job_id(),
    user_id=user_id,
    tool_id=tool_id,
    provider=provider,
    external_job_id=submission.external_job_id,
    status="queued",
    input_data=job_input,
    created_at=now,
    updated_at=now,
    credits_reserved=credits,
  )

  if credits <= 0:
    await store.create_job(record)
    logger.info("Generation job submitted job_id=%s tool_id=%s provider=%s credits=0", record.job_id, tool_id, provider)
    return SubmitResult(job_id=record.job_id, estimated_credits=0)

  try:
    await store.create_job_with_reservation(record)
  except (LedgerError, InsufficientCreditsError) as exc:
    # The provider already accepted the work; keep the row and let reconciliation settle it.
    logger.error("Credit reservation failed after provider accepted job_id=%s external_job_id=%s error=%s", record.job_id, record.external_job_id, exc)
    record.reservation_held = False
    record.needs_reconciliation = True
    record.reconciliation_reason = "ledger_reservation_failed"
    await store.create_job(record)
  else:
    logger.info("Generation job submitted job_id=%s tool_id=%s provider=%s credits=%s", record.job_id, tool_id, provider, credits)

  return SubmitResult(job_id=record.job_id, estimated_credits=credits)
