"""Storage interfaces for generation jobs, webhook deliveries and credit balances."""

from __future__ import annotations

import datetime
from typing import Any, Protocol

from app.jobs.models import FinalizeResult, GenerationJobRecord, TerminalUpdate
from app.services.credit_ledger import CreditSnapshot


class GenerationStore(Protocol):
  """Repository contract for the job store and the credit ledger it settles against."""

  async def create_job_with_reservation(self, record: GenerationJobRecord) -> GenerationJobRecord:
    """Insert a job and hold its credits atomically.

    Raises InsufficientCreditsError or LedgerError and writes nothing when the hold fails.
    """

  async def create_job(self, record: GenerationJobRecord) -> GenerationJobRecord:
    """Insert a job without touching the ledger."""

  async def get_job(self, job_id: str) -> GenerationJobRecord | None:
    """Fetch a job by coordinator id."""

  async def find_by_external_id(self, *, provider: str, external_job_id: str) -> GenerationJobRecord | None:
    """Fetch a job by its provider-side id."""

  async def record_webhook_delivery(self, *, provider: str, external_event_id: str, external_job_id: str, status: str) -> bool:
    """Insert a delivery marker; False when the event was already recorded."""

  async def mark_progress(self, job_id: str, *, progress_label: str | None) -> GenerationJobRecord | None:
    """Advance queued->processing and store the label; None when the job is already terminal."""

  async def finalize_job(self, job_id: str, terminal: TerminalUpdate, *, refund_on_failure: bool) -> FinalizeResult | None:
    """Apply the terminal transition and settle credits once; None when another caller won."""

  async def flag_for_reconciliation(self, job_id: str, *, reason: str) -> GenerationJobRecord | None:
    """Flag a non-finalized job for operator or sweep follow-up."""

  async def mark_reconciled(self, job_id: str) -> None:
    """Record that a reconciliation pass looked at the job."""

  async def list_active_jobs(self, *, user_id: str, tool_id: str) -> list[GenerationJobRecord]:
    """Return queued/processing jobs for a user and tool, newest first."""

  async def list_recently_completed(self, *, user_id: str, tool_id: str, completed_after: datetime.datetime) -> list[GenerationJobRecord]:
    """Return succeeded jobs completed after a cutoff whose output was not acknowledged."""

  async def mark_result_seen(self, job_id: str, *, user_id: str) -> bool:
    """Acknowledge a job's output for its owner."""

  async def list_reconciliation_candidates(self, *, created_before: datetime.datetime, limit: int) -> list[GenerationJobRecord]:
    """Return non-finalized jobs that are stale or flagged."""

  async def get_credit_snapshot(self, user_id: str) -> CreditSnapshot:
    """Return a user's credit balance."""

  async def top_up_credits(self, user_id: str, *, quantity: int, period_end: datetime.datetime | None = None, metadata: dict[str, Any] | None = None) -> CreditSnapshot:
    """Add credits to a user's balance."""
