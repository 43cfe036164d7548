"""Domain models for external generation jobs."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, Literal

JobStatus = Literal["queued", "processing", "succeeded", "failed", "canceled"]
TerminalStatus = Literal["succeeded", "failed", "canceled"]
CreditOutcome = Literal["debited", "released", "none"]
ReconciliationReason = Literal["ledger_reservation_failed", "poll_timeout", "poll_transport_exhausted", "provider_lookup_failed", "stale"]

ACTIVE_STATUSES: frozenset[str] = frozenset({"queued", "processing"})
TERMINAL_STATUSES: frozenset[str] = frozenset({"succeeded", "failed", "canceled"})


def is_terminal(status: str) -> bool:
  return status in TERMINAL_STATUSES


@dataclass
class GenerationJobRecord:
  """One submitted provider job and its credit bookkeeping."""

  job_id: str
  user_id: str
  tool_id: str
  provider: str
  external_job_id: str
  status: JobStatus
  input_data: dict[str, Any]
  created_at: datetime.datetime
  updated_at: datetime.datetime
  output_data: Any | None = None
  error_message: str | None = None
  progress_label: str | None = None
  credits_reserved: int = 0
  reservation_held: bool = False
  credits_finalized: bool = False
  credits_outcome: CreditOutcome | None = None
  needs_reconciliation: bool = False
  reconciliation_reason: str | None = None
  reconciled_at: datetime.datetime | None = None
  result_seen_at: datetime.datetime | None = None
  completed_at: datetime.datetime | None = None

  @property
  def is_terminal(self) -> bool:
    return is_terminal(self.status)


@dataclass(frozen=True)
class TerminalUpdate:
  """Terminal status plus the payload that should be persisted with it."""

  status: TerminalStatus
  output: Any | None = None
  error: str | None = None


@dataclass(frozen=True)
class FinalizeResult:
  """Returned to the single caller that won the terminal transition."""

  job: GenerationJobRecord
  credits_outcome: CreditOutcome
  credits_charged: int


@dataclass(frozen=True)
class RestoreSnapshot:
  """Jobs a client should resume or display after a reload."""

  active: list[GenerationJobRecord] = field(default_factory=list)
  recently_completed: list[GenerationJobRecord] = field(default_factory=list)
