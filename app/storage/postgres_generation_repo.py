"""Postgres-backed generation store using SQLAlchemy."""

from __future__ import annotations

import datetime
import logging
from typing import Any

from sqlalchemy import case, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError

from app.core.database import get_session_factory
from app.core.errors import InsufficientCreditsError, LedgerError
from app.jobs.models import ACTIVE_STATUSES, FinalizeResult, GenerationJobRecord, TerminalUpdate
from app.schema.generation import GenerationJob, WebhookDelivery
from app.services import credit_ledger
from app.services.credit_ledger import CreditSnapshot
from app.storage.generation_repo import GenerationStore
from app.utils.db_retry import execute_with_retry

logger = logging.getLogger(__name__)


def _utc_now() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


class PostgresGenerationStore(GenerationStore):
  """Persist generation jobs and settle credits in the same Postgres transaction."""

  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def create_job_with_reservation(self, record: GenerationJobRecord) -> GenerationJobRecord:
    async with self._session_factory() as session:
      try:
        session.add(self._record_to_model(record, reservation_held=True))
        await session.flush()
        await credit_ledger.reserve_credits(session, user_id=record.user_id, job_id=record.job_id, quantity=record.credits_reserved, metadata={"tool_id": record.tool_id})
        await session.commit()
      except InsufficientCreditsError:
        await session.rollback()
        raise
      except SQLAlchemyError as exc:
        await session.rollback()
        raise LedgerError(f"job insert with reservation failed for {record.job_id}") from exc
    record.reservation_held = True
    return record

  async def create_job(self, record: GenerationJobRecord) -> GenerationJobRecord:
    async with self._session_factory() as session:
      session.add(self._record_to_model(record, reservation_held=record.reservation_held))
      await session.commit()
    return record

  async def get_job(self, job_id: str) -> GenerationJobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(GenerationJob, job_id)
      return self._model_to_record(row) if row is not None else None

  async def find_by_external_id(self, *, provider: str, external_job_id: str) -> GenerationJobRecord | None:
    async with self._session_factory() as session:
      stmt = select(GenerationJob).where(GenerationJob.provider == provider, GenerationJob.external_job_id == external_job_id)
      row = (await session.execute(stmt)).scalar_one_or_none()
      return self._model_to_record(row) if row is not None else None

  async def record_webhook_delivery(self, *, provider: str, external_event_id: str, external_job_id: str, status: str) -> bool:
    async with self._session_factory() as session:
      # Insert-if-absent on the unique key; a conflict means a redelivery.
      stmt = insert(WebhookDelivery).values(provider=provider, external_event_id=external_event_id, external_job_id=external_job_id, status=status)
      stmt = stmt.on_conflict_do_nothing(index_elements=["provider", "external_event_id"]).returning(WebhookDelivery.id)
      inserted = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
      return inserted is not None

  async def mark_progress(self, job_id: str, *, progress_label: str | None) -> GenerationJobRecord | None:
    async with self._session_factory() as session:
      values: dict[str, Any] = {"status": "processing", "updated_at": _utc_now()}
      if progress_label is not None:
        values["progress_label"] = progress_label
      stmt = update(GenerationJob).where(GenerationJob.job_id == job_id, GenerationJob.status.in_(ACTIVE_STATUSES)).values(**values).returning(GenerationJob)
      row = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
      return self._model_to_record(row) if row is not None else None

  async def finalize_job(self, job_id: str, terminal: TerminalUpdate, *, refund_on_failure: bool) -> FinalizeResult | None:
    async def _attempt() -> FinalizeResult | None:
      return await self._finalize_once(job_id, terminal, refund_on_failure=refund_on_failure)

    return await execute_with_retry(operation_name="finalize_generation_job", func=_attempt, max_attempts=3)

  async def _finalize_once(self, job_id: str, terminal: TerminalUpdate, *, refund_on_failure: bool) -> FinalizeResult | None:
    now = _utc_now()
    held_outcome = credit_ledger.resolve_credit_outcome(terminal.status, credits=1, reservation_held=True, refund_on_failure=refund_on_failure)
    unheld_outcome = credit_ledger.resolve_credit_outcome(terminal.status, credits=1, reservation_held=False, refund_on_failure=refund_on_failure)
    outcome_expr = case((GenerationJob.credits_reserved <= 0, "none"), (GenerationJob.reservation_held.is_(True), held_outcome), else_=unheld_outcome)

    async with self._session_factory() as session:
      async with session.begin():
        # The precondition is the race guard: only one caller matches the row.
        stmt = (
          update(GenerationJob)
          .where(GenerationJob.job_id == job_id, GenerationJob.credits_finalized.is_(False), GenerationJob.status.in_(ACTIVE_STATUSES))
          .values(
            status=terminal.status,
            output_json=terminal.output,
            error_message=terminal.error,
            credits_finalized=True,
            credits_outcome=outcome_expr,
            needs_reconciliation=False,
            completed_at=now,
            updated_at=now,
          )
          .returning(GenerationJob)
        )
        row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
          return None

        outcome = row.credits_outcome or "none"
        await credit_ledger.settle_job_credits(session, user_id=row.user_id, job_id=row.job_id, quantity=int(row.credits_reserved), outcome=outcome, reservation_held=bool(row.reservation_held))
        record = self._model_to_record(row)

    charged = record.credits_reserved if outcome == "debited" else 0
    return FinalizeResult(job=record, credits_outcome=outcome, credits_charged=charged)

  async def flag_for_reconciliation(self, job_id: str, *, reason: str) -> GenerationJobRecord | None:
    async with self._session_factory() as session:
      stmt = (
        update(GenerationJob)
        .where(GenerationJob.job_id == job_id, GenerationJob.credits_finalized.is_(False))
        .values(needs_reconciliation=True, reconciliation_reason=reason, updated_at=_utc_now())
        .returning(GenerationJob)
      )
      row = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
      return self._model_to_record(row) if row is not None else None

  async def mark_reconciled(self, job_id: str) -> None:
    async with self._session_factory() as session:
      await session.execute(update(GenerationJob).where(GenerationJob.job_id == job_id).values(reconciled_at=_utc_now()))
      await session.commit()

  async def list_active_jobs(self, *, user_id: str, tool_id: str) -> list[GenerationJobRecord]:
    async with self._session_factory() as session:
      stmt = select(GenerationJob).where(GenerationJob.user_id == user_id, GenerationJob.tool_id == tool_id, GenerationJob.status.in_(ACTIVE_STATUSES)).order_by(GenerationJob.created_at.desc())
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def list_recently_completed(self, *, user_id: str, tool_id: str, completed_after: datetime.datetime) -> list[GenerationJobRecord]:
    async with self._session_factory() as session:
      stmt = (
        select(GenerationJob)
        .where(
          GenerationJob.user_id == user_id,
          GenerationJob.tool_id == tool_id,
          GenerationJob.status == "succeeded",
          GenerationJob.completed_at >= completed_after,
          GenerationJob.result_seen_at.is_(None),
        )
        .order_by(GenerationJob.completed_at.desc())
      )
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def mark_result_seen(self, job_id: str, *, user_id: str) -> bool:
    async with self._session_factory() as session:
      stmt = update(GenerationJob).where(GenerationJob.job_id == job_id, GenerationJob.user_id == user_id, GenerationJob.result_seen_at.is_(None)).values(result_seen_at=_utc_now()).returning(GenerationJob.job_id)
      updated = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
      return updated is not None

  async def list_reconciliation_candidates(self, *, created_before: datetime.datetime, limit: int) -> list[GenerationJobRecord]:
    async with self._session_factory() as session:
      stmt = (
        select(GenerationJob)
        .where(GenerationJob.credits_finalized.is_(False), GenerationJob.status.in_(ACTIVE_STATUSES), (GenerationJob.needs_reconciliation.is_(True)) | (GenerationJob.created_at < created_before))
        .order_by(GenerationJob.created_at.asc())
        .limit(limit)
      )
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def get_credit_snapshot(self, user_id: str) -> CreditSnapshot:
    async with self._session_factory() as session:
      return await credit_ledger.get_credit_snapshot(session, user_id=user_id)

  async def top_up_credits(self, user_id: str, *, quantity: int, period_end: datetime.datetime | None = None, metadata: dict[str, Any] | None = None) -> CreditSnapshot:
    async with self._session_factory() as session:
      snapshot = await credit_ledger.top_up_credits(session, user_id=user_id, quantity=quantity, period_end=period_end, metadata=metadata)
      await session.commit()
      return snapshot

  def _record_to_model(self, record: GenerationJobRecord, *, reservation_held: bool) -> GenerationJob:
    return GenerationJob(
      job_id=record.job_id,
      user_id=record.user_id,
      tool_id=record.tool_id,
      provider=record.provider,
      external_job_id=record.external_job_id,
      status=record.status,
      input_json=record.input_data,
      credits_reserved=record.credits_reserved,
      reservation_held=reservation_held,
      credits_finalized=record.credits_finalized,
      credits_outcome=record.credits_outcome,
      needs_reconciliation=record.needs_reconciliation,
      reconciliation_reason=record.reconciliation_reason,
      created_at=record.created_at,
      updated_at=record.updated_at,
    )

  def _model_to_record(self, row: GenerationJob) -> GenerationJobRecord:
    return GenerationJobRecord(
      job_id=row.job_id,
      user_id=row.user_id,
      tool_id=row.tool_id,
      provider=row.provider,
      external_job_id=row.external_job_id,
      status=row.status,  # type: ignore[arg-type]
      input_data=row.input_json,
      created_at=row.created_at,
      updated_at=row.updated_at,
      output_data=row.output_json,
      error_message=row.error_message,
      progress_label=row.progress_label,
      credits_reserved=int(row.credits_reserved),
      reservation_held=bool(row.reservation_held),
      credits_finalized=bool(row.credits_finalized),
      credits_outcome=row.credits_outcome,  # type: ignore[arg-type]
      needs_reconciliation=bool(row.needs_reconciliation),
      reconciliation_reason=row.reconciliation_reason,
      reconciled_at=row.reconciled_at,
      result_seen_at=row.result_seen_at,
      completed_at=row.completed_at,
    )
