"""Inbound provider completion events."""

from __future__ import annotations

import hmac
import logging
from typing import Literal

from app.config import Settings
from app.core.errors import DuplicateEventError, WebhookAuthError
from app.jobs.models import TerminalUpdate, is_terminal
from app.notifications.contracts import UpdateBroadcaster
from app.providers.base import ProviderEvent
from app.services.finalization import broadcast_job, finalize_and_broadcast
from app.storage.generation_repo import GenerationStore

logger = logging.getLogger(__name__)

WebhookOutcome = Literal["duplicate", "unknown_job", "already_terminal", "progress", "finalized"]


def verify_webhook_token(settings: Settings, token: str | None) -> None:
  """Check the shared secret carried on the callback URL."""
  if not settings.webhook_secret:
    raise WebhookAuthError("Webhook intake is not configured")
  if not token or not hmac.compare_digest(token, settings.webhook_secret):
    raise WebhookAuthError("Invalid webhook token")


async def _claim_event(store: GenerationStore, *, provider: str, event: ProviderEvent) -> None:
  recorded = await store.record_webhook_delivery(provider=provider, external_event_id=event.external_event_id, external_job_id=event.external_job_id, status=event.status)
  if not recorded:
    raise DuplicateEventError(f"{provider} event {event.external_event_id} already processed")


async def handle_provider_event(store: GenerationStore, broadcaster: UpdateBroadcaster, settings: Settings, *, provider: str, event: ProviderEvent) -> WebhookOutcome:
  """Apply one provider event to its job at most once."""
  try:
    await _claim_event(store, provider=provider, event=event)
  except DuplicateEventError:
    logger.info("Duplicate webhook ignored provider=%s event_id=%s", provider, event.external_event_id)
    return "duplicate"

  try:
    return await _apply_event(store, broadcaster, settings, provider=provider, event=event)
  except Exception:
    # The delivery is already claimed, so a provider retry will be ignored as a duplicate.
    logger.error("Webhook processing failed after claim provider=%s event_id=%s external_job_id=%s status=%s", provider, event.external_event_id, event.external_job_id, event.status, exc_info=True)
    raise


async def _apply_event(store: GenerationStore, broadcaster: UpdateBroadcaster, settings: Settings, *, provider: str, event: ProviderEvent) -> WebhookOutcome:
  job = await store.find_by_external_id(provider=provider, external_job_id=event.external_job_id)
  if job is None:
    logger.warning("Webhook for unknown job provider=%s external_job_id=%s", provider, event.external_job_id)
    return "unknown_job"

  if job.is_terminal:
    logger.info("Webhook for already terminal job job_id=%s status=%s event_status=%s", job.job_id, job.status, event.status)
    return "already_terminal"

  if not is_terminal(event.status):
    updated = await store.mark_progress(job.job_id, progress_label=event.progress_label)
    if updated is None:
      return "already_terminal"
    await broadcast_job(broadcaster, updated)
    return "progress"

  result = await finalize_and_broadcast(store, broadcaster, settings, job.job_id, TerminalUpdate(status=event.status, output=event.output, error=event.error))  # type: ignore[arg-type]
  if result is None:
    return "already_terminal"
  return "finalized"
