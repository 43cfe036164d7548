"""Shared doubles for coordinator tests: settings, an in-memory store, fake providers."""

from __future__ import annotations

import asyncio
import datetime
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from app.config import Settings
from app.core.errors import InsufficientCreditsError, LedgerError, ProviderUnavailableError
from app.jobs.models import ACTIVE_STATUSES, FinalizeResult, GenerationJobRecord, TerminalUpdate
from app.notifications.contracts import JobUpdate
from app.providers.base import ProviderEvent, ProviderStatus, ProviderSubmission, WebhookPayloadError
from app.services.credit_ledger import CreditSnapshot, apply_debit, apply_release, apply_reservation, apply_top_up, resolve_credit_outcome, snapshot_of


def make_settings(**overrides: Any) -> Settings:
  """Build settings without touching the environment."""
  settings = Settings(
    environment="test",
    allowed_origins=("http://localhost:3000",),
    debug=False,
    log_max_bytes=1024,
    log_backup_count=0,
    log_http_4xx=False,
    pg_dsn=None,
    pg_connect_timeout=5,
    public_base_url="https://relay.example.com",
    webhook_secret="hook-secret",
    task_secret="task-secret",
    replicate_api_token=None,
    replicate_base_url="https://api.replicate.com/v1",
    replicate_models={},
    fal_api_key=None,
    fal_queue_base_url="https://queue.fal.run",
    fal_apps={},
    provider_timeout_seconds=5.0,
    webhook_grace_seconds=5.0,
    poll_interval_seconds=2.0,
    poll_max_attempts=150,
    tool_poll_max_attempts={"video-upscaler": 300},
    restore_completed_window_seconds=300,
    refund_on_failure=True,
    stale_job_seconds=900,
    reconcile_batch_size=50,
    event_queue_size=10,
    push_notifications_enabled=False,
    push_vapid_public_key=None,
    push_vapid_private_key=None,
    push_vapid_sub=None,
    firebase_project_id=None,
    firebase_service_account_json_path=None,
  )
  return replace(settings, **overrides)


def utc_now() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


@dataclass
class _Balance:
  available_credits: int = 0
  reserved_credits: int = 0
  total_credits: int = 0
  period_end: datetime.datetime | None = None


class InMemoryGenerationStore:
  """GenerationStore double with the same conditional-finalize semantics as Postgres."""

  def __init__(self) -> None:
    self.jobs: dict[str, GenerationJobRecord] = {}
    self.balances: dict[str, _Balance] = {}
    self.deliveries: set[tuple[str, str]] = set()
    self.transactions: list[tuple[str, str | None, int]] = []
    self.finalize_wins = 0
    self.ledger_failure = False

  def set_balance(self, user_id: str, *, available: int, reserved: int = 0) -> None:
    self.balances[user_id] = _Balance(available_credits=available, reserved_credits=reserved, total_credits=available)

  def add_job(self, **fields: Any) -> GenerationJobRecord:
    """Insert a job directly, bypassing submission."""
    now = utc_now()
    values: dict[str, Any] = {
      "job_id": "job-1",
      "user_id": "user-1",
      "tool_id": "logo-machine",
      "provider": "fake",
      "external_job_id": "ext-1",
      "status": "queued",
      "input_data": {},
      "created_at": now,
      "updated_at": now,
    }
    values.update(fields)
    record = GenerationJobRecord(**values)
    self.jobs[record.job_id] = record
    return replace(record)

  async def create_job_with_reservation(self, record: GenerationJobRecord) -> GenerationJobRecord:
    if self.ledger_failure:
      raise LedgerError("ledger offline")
    balance = self.balances.get(record.user_id)
    if balance is None:
      raise InsufficientCreditsError(required=record.credits_reserved, available=0)
    apply_reservation(balance, record.credits_reserved)
    self.transactions.append(("reserve", record.job_id, record.credits_reserved))
    stored = replace(record, reservation_held=True)
    self.jobs[stored.job_id] = stored
    return replace(stored)

  async def create_job(self, record: GenerationJobRecord) -> GenerationJobRecord:
    stored = replace(record, reservation_held=False)
    self.jobs[stored.job_id] = stored
    return replace(stored)

  async def get_job(self, job_id: str) -> GenerationJobRecord | None:
    job = self.jobs.get(job_id)
    return replace(job) if job is not None else None

  async def find_by_external_id(self, *, provider: str, external_job_id: str) -> GenerationJobRecord | None:
    for job in self.jobs.values():
      if job.provider == provider and job.external_job_id == external_job_id:
        return replace(job)
    return None

  async def record_webhook_delivery(self, *, provider: str, external_event_id: str, external_job_id: str, status: str) -> bool:
    key = (provider, external_event_id)
    if key in self.deliveries:
      return False
    self.deliveries.add(key)
    return True

  async def mark_progress(self, job_id: str, *, progress_label: str | None) -> GenerationJobRecord | None:
    job = self.jobs.get(job_id)
    if job is None or job.status not in ACTIVE_STATUSES:
      return None
    job.status = "processing"
    if progress_label is not None:
      job.progress_label = progress_label
    job.updated_at = utc_now()
    return replace(job)

  async def finalize_job(self, job_id: str, terminal: TerminalUpdate, *, refund_on_failure: bool) -> FinalizeResult | None:
    # Yield so concurrent finalizers interleave before the check-and-set.
    await asyncio.sleep(0)
    job = self.jobs.get(job_id)
    if job is None or job.credits_finalized or job.status not in ACTIVE_STATUSES:
      return None

    outcome = resolve_credit_outcome(terminal.status, credits=job.credits_reserved, reservation_held=job.reservation_held, refund_on_failure=refund_on_failure)
    balance = self.balances.get(job.user_id)
    if outcome != "none":
      if balance is None:
        raise LedgerError(f"credit balance missing for user {job.user_id}")
      if outcome == "debited":
        apply_debit(balance, job.credits_reserved, held=job.reservation_held)
      else:
        apply_release(balance, job.credits_reserved)
      self.transactions.append((outcome, job.job_id, job.credits_reserved))

    now = utc_now()
    job.status = terminal.status
    job.output_data = terminal.output
    job.error_message = terminal.error
    job.credits_finalized = True
    job.credits_outcome = outcome
    job.needs_reconciliation = False
    job.completed_at = now
    job.updated_at = now
    self.finalize_wins += 1
    charged = job.credits_reserved if outcome == "debited" else 0
    return FinalizeResult(job=replace(job), credits_outcome=outcome, credits_charged=charged)

  async def flag_for_reconciliation(self, job_id: str, *, reason: str) -> GenerationJobRecord | None:
    job = self.jobs.get(job_id)
    if job is None or job.credits_finalized:
      return None
    job.needs_reconciliation = True
    job.reconciliation_reason = reason
    return replace(job)

  async def mark_reconciled(self, job_id: str) -> None:
    job = self.jobs.get(job_id)
    if job is not None:
      job.reconciled_at = utc_now()

  async def list_active_jobs(self, *, user_id: str, tool_id: str) -> list[GenerationJobRecord]:
    jobs = [job for job in self.jobs.values() if job.user_id == user_id and job.tool_id == tool_id and job.status in ACTIVE_STATUSES]
    return [replace(job) for job in sorted(jobs, key=lambda job: job.created_at, reverse=True)]

  async def list_recently_completed(self, *, user_id: str, tool_id: str, completed_after: datetime.datetime) -> list[GenerationJobRecord]:
    jobs = [
      job
      for job in self.jobs.values()
      if job.user_id == user_id and job.tool_id == tool_id and job.status == "succeeded" and job.completed_at is not None and job.completed_at >= completed_after and job.result_seen_at is None
    ]
    return [replace(job) for job in sorted(jobs, key=lambda job: job.completed_at, reverse=True)]

  async def mark_result_seen(self, job_id: str, *, user_id: str) -> bool:
    job = self.jobs.get(job_id)
    if job is None or job.user_id != user_id or job.result_seen_at is not None:
      return False
    job.result_seen_at = utc_now()
    return True

  async def list_reconciliation_candidates(self, *, created_before: datetime.datetime, limit: int) -> list[GenerationJobRecord]:
    jobs = [job for job in self.jobs.values() if not job.credits_finalized and job.status in ACTIVE_STATUSES and (job.needs_reconciliation or job.created_at < created_before)]
    return [replace(job) for job in sorted(jobs, key=lambda job: job.created_at)[:limit]]

  async def get_credit_snapshot(self, user_id: str) -> CreditSnapshot:
    return snapshot_of(user_id, self.balances.get(user_id))

  async def top_up_credits(self, user_id: str, *, quantity: int, period_end: datetime.datetime | None = None, metadata: dict[str, Any] | None = None) -> CreditSnapshot:
    balance = self.balances.setdefault(user_id, _Balance())
    apply_top_up(balance, quantity)
    if period_end is not None:
      balance.period_end = period_end
    self.transactions.append(("top_up", None, quantity))
    return snapshot_of(user_id, balance)


class FakeProviderAdapter:
  """Scripted provider: statuses are served in order and the last one repeats."""

  def __init__(self, name: str = "fake", *, tools: tuple[str, ...] = ("logo-machine", "thumbnail-machine", "music-machine", "video-upscaler"), statuses: list[ProviderStatus | Exception] | None = None) -> None:
    self.name = name
    self._tools = set(tools)
    self.statuses: list[ProviderStatus | Exception] = list(statuses or [ProviderStatus(status="processing")])
    self.submit_calls: list[dict[str, Any]] = []
    self.fetch_calls = 0
    self.submit_error: Exception | None = None
    self._next_id = 0

  def supports_tool(self, tool_id: str) -> bool:
    return tool_id in self._tools

  async def submit(self, *, tool_id: str, job_input: dict[str, Any], webhook_url: str | None) -> ProviderSubmission:
    self.submit_calls.append({"tool_id": tool_id, "job_input": job_input, "webhook_url": webhook_url})
    if self.submit_error is not None:
      raise self.submit_error
    self._next_id += 1
    return ProviderSubmission(external_job_id=f"ext-{self._next_id}")

  async def fetch_status(self, external_job_id: str, *, tool_id: str) -> ProviderStatus:
    index = min(self.fetch_calls, len(self.statuses) - 1)
    self.fetch_calls += 1
    result = self.statuses[index]
    if isinstance(result, Exception):
      raise result
    return result

  def parse_event(self, payload: Any, headers: Mapping[str, str]) -> ProviderEvent:
    if not isinstance(payload, dict) or "id" not in payload or "status" not in payload:
      raise WebhookPayloadError("fake webhook missing id or status")
    return ProviderEvent(
      external_event_id=str(payload.get("event_id") or f"{payload['id']}:{payload['status']}"),
      external_job_id=str(payload["id"]),
      status=payload["status"],
      output=payload.get("output"),
      error=payload.get("error"),
    )


def processing(label: str | None = None) -> ProviderStatus:
  return ProviderStatus(status="processing", progress_label=label)


def unavailable() -> ProviderUnavailableError:
  return ProviderUnavailableError("fake provider is down")


@dataclass
class RecordingBroadcaster:
  updates: list[tuple[str, JobUpdate]] = field(default_factory=list)

  async def publish(self, *, user_id: str, update: JobUpdate) -> None:
    self.updates.append((user_id, update))

  def statuses(self, job_id: str) -> list[str]:
    return [update.status for _, update in self.updates if update.job_id == job_id]


class FakeSleep:
  """Records requested delays and yields to the loop instead of waiting."""

  def __init__(self) -> None:
    self.calls: list[float] = []

  async def __call__(self, seconds: float) -> None:
    self.calls.append(seconds)
    await asyncio.sleep(0)
