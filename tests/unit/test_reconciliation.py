from __future__ import annotations

import datetime

import pytest

from app.core.errors import JobValidationError
from app.providers.base import ProviderStatus
from app.services.reconciliation import flag_job_for_reconciliation, reconcile_stale_jobs
from app.services.restoration import mark_result_seen, restore_tool_state
from tests.support import processing, unavailable, utc_now


def _old() -> datetime.datetime:
  return utc_now() - datetime.timedelta(hours=1)


@pytest.mark.anyio
async def test_client_flag_keeps_status(store):
  store.add_job()

  job = await flag_job_for_reconciliation(store, job_id="job-1", user_id="user-1", reason="poll_timeout")

  assert job.status == "queued"
  assert job.needs_reconciliation is True
  assert job.reconciliation_reason == "poll_timeout"


@pytest.mark.anyio
async def test_client_flag_rejects_server_only_reasons(store):
  store.add_job()
  with pytest.raises(JobValidationError):
    await flag_job_for_reconciliation(store, job_id="job-1", user_id="user-1", reason="stale")


@pytest.mark.anyio
async def test_flagging_a_finalized_job_is_a_no_op(store):
  store.add_job(status="succeeded", credits_finalized=True)

  job = await flag_job_for_reconciliation(store, job_id="job-1", user_id="user-1", reason="poll_timeout")

  assert job.needs_reconciliation is False


@pytest.mark.anyio
async def test_sweep_finalizes_only_provider_terminal_jobs(store, providers, adapter, broadcaster, settings):
  store.set_balance("user-1", available=100, reserved=3)
  store.add_job(job_id="job-old", external_job_id="ext-old", created_at=_old(), credits_reserved=3, reservation_held=True)
  store.add_job(job_id="job-new", external_job_id="ext-new")
  adapter.statuses = [ProviderStatus(status="succeeded", output="done")]

  summary = await reconcile_stale_jobs(store, providers, broadcaster, settings)

  assert summary.as_dict() == {"examined": 1, "finalized": 1, "still_active": 0, "errors": 0, "finalized_job_ids": ["job-old"]}
  assert (await store.get_job("job-old")).credits_outcome == "debited"
  assert (await store.get_job("job-new")).status == "queued"


@pytest.mark.anyio
async def test_sweep_leaves_running_jobs_open_and_flags_them_stale(store, providers, adapter, broadcaster, settings):
  store.add_job(created_at=_old())
  adapter.statuses = [processing()]

  summary = await reconcile_stale_jobs(store, providers, broadcaster, settings)

  job = await store.get_job("job-1")
  assert summary.still_active == 1
  assert job.status == "processing"
  assert job.reconciliation_reason == "stale"
  assert job.reconciled_at is not None


@pytest.mark.anyio
async def test_sweep_includes_flagged_jobs_and_survives_outages(store, providers, adapter, broadcaster, settings):
  store.add_job(needs_reconciliation=True, reconciliation_reason="poll_timeout")
  adapter.statuses = [unavailable()]

  summary = await reconcile_stale_jobs(store, providers, broadcaster, settings)

  job = await store.get_job("job-1")
  assert (summary.examined, summary.errors) == (1, 1)
  assert job.status == "queued"
  assert job.needs_reconciliation is True


@pytest.mark.anyio
async def test_restore_returns_active_and_unseen_recent_results(store, settings):
  now = utc_now()
  store.add_job(job_id="job-active")
  store.add_job(job_id="job-done", external_job_id="ext-2", status="succeeded", credits_finalized=True, completed_at=now - datetime.timedelta(seconds=60))
  store.add_job(job_id="job-stale", external_job_id="ext-3", status="succeeded", credits_finalized=True, completed_at=now - datetime.timedelta(seconds=600))
  store.add_job(job_id="job-other-tool", external_job_id="ext-4", tool_id="storyboard")

  snapshot = await restore_tool_state(store, settings, user_id="user-1", tool_id="logo-machine", now=now)

  assert [job.job_id for job in snapshot.active] == ["job-active"]
  assert [job.job_id for job in snapshot.recently_completed] == ["job-done"]

  await mark_result_seen(store, job_id="job-done", user_id="user-1")
  await mark_result_seen(store, job_id="job-done", user_id="user-1")
  snapshot = await restore_tool_state(store, settings, user_id="user-1", tool_id="logo-machine", now=now)
  assert snapshot.recently_completed == []
