"""Reconciliation of jobs whose outcome was never observed."""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field

from app.config import Settings
from app.core.errors import CoordinatorError, JobValidationError
from app.jobs.models import GenerationJobRecord, TerminalUpdate, is_terminal
from app.notifications.contracts import UpdateBroadcaster
from app.providers.registry import ProviderRegistry
from app.services.finalization import finalize_and_broadcast
from app.services.polling import get_owned_job
from app.storage.generation_repo import GenerationStore

logger = logging.getLogger(__name__)

CLIENT_FLAG_REASONS = frozenset({"poll_timeout", "poll_transport_exhausted"})


@dataclass
class ReconcileSummary:
  examined: int = 0
  finalized: int = 0
  still_active: int = 0
  errors: int = 0
  finalized_job_ids: list[str] = field(default_factory=list)

  def as_dict(self) -> dict[str, object]:
    return {"examined": self.examined, "finalized": self.finalized, "still_active": self.still_active, "errors": self.errors, "finalized_job_ids": list(self.finalized_job_ids)}


async def flag_job_for_reconciliation(store: GenerationStore, *, job_id: str, user_id: str, reason: str) -> GenerationJobRecord:
  """Record a client-observed timeout without changing the job's status."""
  if reason not in CLIENT_FLAG_REASONS:
    raise JobValidationError(f"unsupported reconciliation reason: {reason}")
  job = await get_owned_job(store, job_id=job_id, user_id=user_id)
  flagged = await store.flag_for_reconciliation(job.job_id, reason=reason)
  if flagged is None:
    # Already finalized; the flag would be meaningless.
    return job
  logger.warning("Job flagged for reconciliation job_id=%s reason=%s", job_id, reason)
  return flagged


async def _reconcile_one(store: GenerationStore, providers: ProviderRegistry, broadcaster: UpdateBroadcaster, settings: Settings, job: GenerationJobRecord, summary: ReconcileSummary) -> None:
  adapter = providers.get(job.provider)
  status = await adapter.fetch_status(job.external_job_id, tool_id=job.tool_id)

  if is_terminal(status.status):
    result = await finalize_and_broadcast(store, broadcaster, settings, job.job_id, TerminalUpdate(status=status.status, output=status.output, error=status.error))  # type: ignore[arg-type]
    if result is not None:
      summary.finalized += 1
      summary.finalized_job_ids.append(job.job_id)
    return

  # Still running at the provider: record the check and leave the outcome open.
  await store.mark_progress(job.job_id, progress_label=status.progress_label)
  await store.mark_reconciled(job.job_id)
  if not job.needs_reconciliation:
    await store.flag_for_reconciliation(job.job_id, reason="stale")
  summary.still_active += 1


async def reconcile_stale_jobs(
  store: GenerationStore,
  providers: ProviderRegistry,
  broadcaster: UpdateBroadcaster,
  settings: Settings,
  *,
  older_than_seconds: int | None = None,
  limit: int | None = None,
  now: datetime.datetime | None = None,
) -> ReconcileSummary:
  """Ask providers about stale or flagged jobs and finalize the ones that ended.

  Jobs are only finalized from a provider-reported terminal status; nothing is guessed.
  """
  now = now or datetime.datetime.now(datetime.UTC)
  threshold = older_than_seconds if older_than_seconds is not None else settings.stale_job_seconds
  batch = limit if limit is not None else settings.reconcile_batch_size
  candidates = await store.list_reconciliation_candidates(created_before=now - datetime.timedelta(seconds=threshold), limit=batch)

  summary = ReconcileSummary()
  for job in candidates:
    summary.examined += 1
    try:
      await _reconcile_one(store, providers, broadcaster, settings, job, summary)
    except CoordinatorError as exc:
      # Provider outages and unknown providers leave the job for the next sweep.
      summary.errors += 1
      logger.warning("Reconciliation lookup failed job_id=%s provider=%s error=%s", job.job_id, job.provider, exc)
      await store.mark_reconciled(job.job_id)

  logger.info("Reconciliation sweep examined=%s finalized=%s still_active=%s errors=%s", summary.examined, summary.finalized, summary.still_active, summary.errors)
  return summary
