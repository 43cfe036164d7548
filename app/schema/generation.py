"""SQLAlchemy models for external generation jobs and webhook deliveries."""

from __future__ import annotations

import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class GenerationJob(Base):
  __tablename__ = "generation_jobs"
  __table_args__ = (
    UniqueConstraint("provider", "external_job_id", name="ux_generation_jobs_provider_external_id"),
    Index("ix_generation_jobs_user_tool_status", "user_id", "tool_id", "status"),
    Index("ix_generation_jobs_reconciliation", "needs_reconciliation", "status"),
  )

  job_id: Mapped[str] = mapped_column(String, primary_key=True)
  user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  tool_id: Mapped[str] = mapped_column(String, nullable=False)
  provider: Mapped[str] = mapped_column(String, nullable=False)
  external_job_id: Mapped[str] = mapped_column(String, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False, default="queued", server_default="queued")
  input_json: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
  output_json: Mapped[Any | None] = mapped_column(JSONB, nullable=True)
  error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  progress_label: Mapped[str | None] = mapped_column(String, nullable=True)
  credits_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  reservation_held: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
  credits_finalized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
  credits_outcome: Mapped[str | None] = mapped_column(String, nullable=True)
  needs_reconciliation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
  reconciliation_reason: Mapped[str | None] = mapped_column(String, nullable=True)
  reconciled_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  result_seen_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  completed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class WebhookDelivery(Base):
  """One row per processed provider event; the unique key rejects redeliveries."""

  __tablename__ = "webhook_deliveries"
  __table_args__ = (UniqueConstraint("provider", "external_event_id", name="ux_webhook_deliveries_provider_event"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  provider: Mapped[str] = mapped_column(String, nullable=False)
  external_event_id: Mapped[str] = mapped_column(String, nullable=False)
  external_job_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  status: Mapped[str] = mapped_column(String, nullable=False)
  received_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
