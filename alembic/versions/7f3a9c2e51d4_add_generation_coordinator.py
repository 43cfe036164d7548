"""Add generation coordinator tables.

Revision ID: 7f3a9c2e51d4
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "7f3a9c2e51d4"
down_revision = None
branch_labels = None
depends_on = None

credit_action = postgresql.ENUM("reserve", "debit", "release", "top_up", name="credit_action", create_type=False)


def upgrade() -> None:
  """Upgrade schema."""
  credit_action.create(op.get_bind(), checkfirst=True)

  op.create_table(
    "generation_jobs",
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("tool_id", sa.String(), nullable=False),
    sa.Column("provider", sa.String(), nullable=False),
    sa.Column("external_job_id", sa.String(), nullable=False),
    sa.Column("status", sa.String(), server_default="queued", nullable=False),
    sa.Column("input_json", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("output_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("error_message", sa.Text(), nullable=True),
    sa.Column("progress_label", sa.String(), nullable=True),
    sa.Column("credits_reserved", sa.Integer(), server_default="0", nullable=False),
    sa.Column("reservation_held", sa.Boolean(), server_default=sa.text("false"), nullable=False),
    sa.Column("credits_finalized", sa.Boolean(), server_default=sa.text("false"), nullable=False),
    sa.Column("credits_outcome", sa.String(), nullable=True),
    sa.Column("needs_reconciliation", sa.Boolean(), server_default=sa.text("false"), nullable=False),
    sa.Column("reconciliation_reason", sa.String(), nullable=True),
    sa.Column("reconciled_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("result_seen_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    sa.PrimaryKeyConstraint("job_id"),
    sa.UniqueConstraint("provider", "external_job_id", name="ux_generation_jobs_provider_external_id"),
  )
  op.create_index(op.f("ix_generation_jobs_user_id"), "generation_jobs", ["user_id"], unique=False)
  op.create_index("ix_generation_jobs_user_tool_status", "generation_jobs", ["user_id", "tool_id", "status"], unique=False)
  op.create_index("ix_generation_jobs_reconciliation", "generation_jobs", ["needs_reconciliation", "status"], unique=False)

  op.create_table(
    "webhook_deliveries",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("provider", sa.String(), nullable=False),
    sa.Column("external_event_id", sa.String(), nullable=False),
    sa.Column("external_job_id", sa.String(), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("provider", "external_event_id", name="ux_webhook_deliveries_provider_event"),
  )
  op.create_index(op.f("ix_webhook_deliveries_external_job_id"), "webhook_deliveries", ["external_job_id"], unique=False)

  op.create_table(
    "user_credits",
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("available_credits", sa.Integer(), server_default="0", nullable=False),
    sa.Column("reserved_credits", sa.Integer(), server_default="0", nullable=False),
    sa.Column("total_credits", sa.Integer(), server_default="0", nullable=False),
    sa.Column("period_start", sa.DateTime(timezone=True), nullable=True),
    sa.Column("period_end", sa.DateTime(timezone=True), nullable=True),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("user_id"),
  )

  op.create_table(
    "credit_transactions",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("job_id", sa.String(), nullable=True),
    sa.Column("action", credit_action, nullable=False),
    sa.Column("quantity", sa.Integer(), nullable=False),
    sa.Column("balance_after", sa.Integer(), nullable=False),
    sa.Column("metadata_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_credit_transactions_user_id"), "credit_transactions", ["user_id"], unique=False)
  op.create_index(op.f("ix_credit_transactions_job_id"), "credit_transactions", ["job_id"], unique=False)

  op.create_table(
    "web_push_subscriptions",
    sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("endpoint", sa.Text(), nullable=False),
    sa.Column("p256dh", sa.Text(), nullable=False),
    sa.Column("auth", sa.Text(), nullable=False),
    sa.Column("user_agent", sa.Text(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_web_push_subscriptions_user_id"), "web_push_subscriptions", ["user_id"], unique=False)
  op.create_index("ux_web_push_subscriptions_endpoint", "web_push_subscriptions", ["endpoint"], unique=True)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index("ux_web_push_subscriptions_endpoint", table_name="web_push_subscriptions")
  op.drop_index(op.f("ix_web_push_subscriptions_user_id"), table_name="web_push_subscriptions")
  op.drop_table("web_push_subscriptions")
  op.drop_index(op.f("ix_credit_transactions_job_id"), table_name="credit_transactions")
  op.drop_index(op.f("ix_credit_transactions_user_id"), table_name="credit_transactions")
  op.drop_table("credit_transactions")
  op.drop_table("user_credits")
  op.drop_index(op.f("ix_webhook_deliveries_external_job_id"), table_name="webhook_deliveries")
  op.drop_table("webhook_deliveries")
  op.drop_index("ix_generation_jobs_reconciliation", table_name="generation_jobs")
  op.drop_index("ix_generation_jobs_user_tool_status", table_name="generation_jobs")
  op.drop_index(op.f("ix_generation_jobs_user_id"), table_name="generation_jobs")
  op.drop_table("generation_jobs")
  credit_action.drop(op.get_bind(), checkfirst=True)
