"""SQLAlchemy models for per-user credit balances and their audit log."""

from __future__ import annotations

import datetime
import enum

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import ENUM, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class CreditAction(str, enum.Enum):
  """Ledger mutation kinds recorded in the audit log."""

  RESERVE = "reserve"
  DEBIT = "debit"
  RELEASE = "release"
  TOP_UP = "top_up"


class UserCredits(Base):
  """Single balance row per user; reservations only move reserved_credits."""

  __tablename__ = "user_credits"

  user_id: Mapped[str] = mapped_column(String, primary_key=True)
  available_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  reserved_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  total_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  period_start: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  period_end: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CreditTransaction(Base):
  __tablename__ = "credit_transactions"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  user_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
  job_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
  action: Mapped[CreditAction] = mapped_column(
    ENUM(CreditAction, name="credit_action", values_callable=lambda enum_cls: [member.value for member in enum_cls], create_type=False), nullable=False
  )
  quantity: Mapped[int] = mapped_column(Integer, nullable=False)
  balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
  metadata_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
