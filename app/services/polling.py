"""Server side of the poll fallback: one status check per call."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from app.config import Settings
from app.core.errors import JobNotFoundError, ProviderRejectedError
from app.jobs.models import GenerationJobRecord, TerminalUpdate, is_terminal
from app.notifications.contracts import UpdateBroadcaster
from app.providers.registry import ProviderRegistry
from app.services.finalization import finalize_and_broadcast
from app.storage.generation_repo import GenerationStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobObservation:
  """What one poll step saw; terminal observations carry the persisted result."""

  job_id: str
  status: str
  output: Any | None = None
  error: str | None = None
  progress_label: str | None = None

  @property
  def is_terminal(self) -> bool:
    return is_terminal(self.status)

  @classmethod
  def from_record(cls, record: GenerationJobRecord) -> JobObservation:
    return cls(job_id=record.job_id, status=record.status, output=record.output_data, error=record.error_message, progress_label=record.progress_label)


async def get_owned_job(store: GenerationStore, *, job_id: str, user_id: str) -> GenerationJobRecord:
  """Load a job for its owner; other users see the same 404 as a missing job."""
  job = await store.get_job(job_id)
  if job is None or job.user_id != user_id:
    raise JobNotFoundError(f"Job {job_id} not found")
  return job


async def poll_job_once(store: GenerationStore, providers: ProviderRegistry, broadcaster: UpdateBroadcaster, settings: Settings, *, job_id: str, user_id: str) -> JobObservation:
  """Observe a job once, finalizing it when the provider reports a terminal status.

  ProviderUnavailableError propagates so the caller counts a transient failed attempt.
  """
  job = await get_owned_job(store, job_id=job_id, user_id=user_id)

  # A webhook or an earlier poll already settled the job; never ask the provider again.
  if job.is_terminal:
    return JobObservation.from_record(job)

  adapter = providers.get(job.provider)
  try:
    status = await adapter.fetch_status(job.external_job_id, tool_id=job.tool_id)
  except ProviderRejectedError as exc:
    logger.warning("Provider refused status lookup job_id=%s external_job_id=%s error=%s", job.job_id, job.external_job_id, exc)
    await store.flag_for_reconciliation(job.job_id, reason="provider_lookup_failed")
    return JobObservation.from_record(job)

  if is_terminal(status.status):
    result = await finalize_and_broadcast(store, broadcaster, settings, job.job_id, TerminalUpdate(status=status.status, output=status.output, error=status.error))  # type: ignore[arg-type]
    if result is not None:
      return JobObservation.from_record(result.job)
    # Lost the race; report whatever the winner persisted.
    winner = await store.get_job(job.job_id)
    return JobObservation.from_record(winner or job)

  updated = await store.mark_progress(job.job_id, progress_label=status.progress_label)
  if updated is None:
    latest = await store.get_job(job.job_id)
    return JobObservation.from_record(latest or job)
  return JobObservation.from_record(updated)
