"""Shared terminal transition used by webhooks, polling and reconciliation."""

from __future__ import annotations

import logging

from app.config import Settings
from app.jobs.models import FinalizeResult, GenerationJobRecord, TerminalUpdate
from app.notifications.contracts import JobUpdate, UpdateBroadcaster
from app.storage.generation_repo import GenerationStore

logger = logging.getLogger(__name__)


def job_update_from_record(record: GenerationJobRecord) -> JobUpdate:
  return JobUpdate(job_id=record.job_id, tool_id=record.tool_id, status=record.status, output=record.output_data, error=record.error_message, progress_label=record.progress_label)


async def broadcast_job(broadcaster: UpdateBroadcaster, record: GenerationJobRecord) -> None:
  """Publish the job's current state; delivery failures are logged only."""
  try:
    await broadcaster.publish(user_id=record.user_id, update=job_update_from_record(record))
  except Exception as exc:  # noqa: BLE001
    logger.error("Job update broadcast failed job_id=%s error=%s", record.job_id, exc, exc_info=True)


async def finalize_and_broadcast(store: GenerationStore, broadcaster: UpdateBroadcaster, settings: Settings, job_id: str, terminal: TerminalUpdate) -> FinalizeResult | None:
  """Finalize a job once and notify its owner when this caller won the race.

  Returns None when the job was already finalized by another path.
  """
  result = await store.finalize_job(job_id, terminal, refund_on_failure=settings.refund_on_failure)
  if result is None:
    logger.debug("Finalize skipped; job already terminal job_id=%s", job_id)
    return None

  logger.info(
    "Generation job finalized job_id=%s status=%s credits_outcome=%s credits_charged=%s",
    job_id,
    result.job.status,
    result.credits_outcome,
    result.credits_charged,
  )
  await broadcast_job(broadcaster, result.job)
  return result
