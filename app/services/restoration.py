"""Queries that let a reloaded client resume its in-flight work."""

from __future__ import annotations

import datetime
import logging

from app.config import Settings
from app.core.errors import JobNotFoundError
from app.jobs.models import RestoreSnapshot
from app.storage.generation_repo import GenerationStore

logger = logging.getLogger(__name__)


async def restore_tool_state(store: GenerationStore, settings: Settings, *, user_id: str, tool_id: str, now: datetime.datetime | None = None) -> RestoreSnapshot:
  """Return active jobs and unseen results completed inside the restore window."""
  now = now or datetime.datetime.now(datetime.UTC)
  cutoff = now - datetime.timedelta(seconds=settings.restore_completed_window_seconds)
  active = await store.list_active_jobs(user_id=user_id, tool_id=tool_id)
  recently_completed = await store.list_recently_completed(user_id=user_id, tool_id=tool_id, completed_after=cutoff)
  logger.debug("Restore user_id=%s tool_id=%s active=%s recent=%s", user_id, tool_id, len(active), len(recently_completed))
  return RestoreSnapshot(active=active, recently_completed=recently_completed)


async def mark_result_seen(store: GenerationStore, *, job_id: str, user_id: str) -> None:
  """Acknowledge a job's output; acknowledging twice is a no-op."""
  job = await store.get_job(job_id)
  if job is None or job.user_id != user_id:
    raise JobNotFoundError(f"Job {job_id} not found")
  await store.mark_result_seen(job_id, user_id=user_id)
