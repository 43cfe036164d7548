from __future__ import annotations

import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr

from app.jobs.models import GenerationJobRecord
from app.services.credit_ledger import CreditSnapshot
from app.services.polling import JobObservation


class SubmitJobRequest(BaseModel):
  """Request payload for starting one external generation job."""

  tool_id: StrictStr = Field(min_length=1, max_length=64, description="Tool that prices and routes the job.", examples=["logo-machine"])
  provider: StrictStr = Field(min_length=1, max_length=32, description="Adapter key of the provider to run the job.", examples=["replicate"])
  input: dict[str, Any] = Field(default_factory=dict, description="Tool input forwarded to the provider.")
  model_config = ConfigDict(extra="forbid")


class SubmitJobResponse(BaseModel):
  job_id: str
  estimated_credits: int


class JobResponse(BaseModel):
  """Owner-facing projection of a generation job."""

  job_id: str
  tool_id: str
  provider: str
  status: str
  output: Any | None = None
  error: str | None = None
  progress_label: str | None = None
  credits_reserved: int
  credits_outcome: str | None = None
  needs_reconciliation: bool
  created_at: datetime.datetime
  completed_at: datetime.datetime | None = None
  result_seen_at: datetime.datetime | None = None

  @classmethod
  def from_record(cls, record: GenerationJobRecord) -> JobResponse:
    return cls(
      job_id=record.job_id,
      tool_id=record.tool_id,
      provider=record.provider,
      status=record.status,
      output=record.output_data,
      error=record.error_message,
      progress_label=record.progress_label,
      credits_reserved=record.credits_reserved,
      credits_outcome=record.credits_outcome,
      needs_reconciliation=record.needs_reconciliation,
      created_at=record.created_at,
      completed_at=record.completed_at,
      result_seen_at=record.result_seen_at,
    )


class JobObservationResponse(BaseModel):
  """Result of one poll step."""

  job_id: str
  status: str
  terminal: bool
  output: Any | None = None
  error: str | None = None
  progress_label: str | None = None

  @classmethod
  def from_observation(cls, observation: JobObservation) -> JobObservationResponse:
    return cls(job_id=observation.job_id, status=observation.status, terminal=observation.is_terminal, output=observation.output, error=observation.error, progress_label=observation.progress_label)


class ReconcileFlagRequest(BaseModel):
  reason: Literal["poll_timeout", "poll_transport_exhausted"]
  model_config = ConfigDict(extra="forbid")


class RestoreResponse(BaseModel):
  active: list[JobResponse]
  recently_completed: list[JobResponse]


class CreditBalanceResponse(BaseModel):
  available: int
  reserved: int
  spendable: int
  total: int
  period_end: datetime.datetime | None = None

  @classmethod
  def from_snapshot(cls, snapshot: CreditSnapshot) -> CreditBalanceResponse:
    return cls(available=snapshot.available, reserved=snapshot.reserved, spendable=snapshot.spendable, total=snapshot.total, period_end=snapshot.period_end)


class TopUpRequest(BaseModel):
  """Operator grant of credits to one user."""

  user_id: StrictStr = Field(min_length=1, max_length=128)
  quantity: int = Field(gt=0, le=1_000_000)
  period_end: datetime.datetime | None = None
  reason: StrictStr | None = Field(default=None, max_length=200)
  model_config = ConfigDict(extra="forbid")


class ReconcileRequest(BaseModel):
  older_than_seconds: int | None = Field(default=None, gt=0)
  limit: int | None = Field(default=None, gt=0, le=500)
  model_config = ConfigDict(extra="forbid")


class ReconcileResponse(BaseModel):
  examined: int
  finalized: int
  still_active: int
  errors: int
  finalized_job_ids: list[str]


class WebhookAck(BaseModel):
  ok: bool = True
  outcome: str
