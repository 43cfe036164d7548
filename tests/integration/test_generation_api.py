from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.core.errors import ProviderUnavailableError
from app.main import app
from app.providers.base import ProviderStatus


@pytest.fixture
def client(override_dependencies):
  return TestClient(app)


def _submit(client: TestClient, **overrides) -> dict:
  body = {"tool_id": "logo-machine", "provider": "fake", "input": {"prompt": "fox"}}
  body.update(overrides)
  response = client.post("/v1/generation/jobs", json=body)
  assert response.status_code == 202, response.text
  return response.json()


def test_submit_returns_handle_and_holds_credits(client, store):
  body = _submit(client)

  assert body["estimated_credits"] == 3
  job = client.get(f"/v1/generation/jobs/{body['job_id']}").json()
  assert job["status"] == "queued"
  assert job["credits_reserved"] == 3

  balance = client.get("/v1/credits").json()
  assert (balance["available"], balance["reserved"], balance["spendable"]) == (100, 3, 97)


def test_submit_with_insufficient_credits_is_402_with_amounts(client, store):
  store.set_balance("user-1", available=5)

  response = client.post("/v1/generation/jobs", json={"tool_id": "video-upscaler", "provider": "fake", "input": {"duration_seconds": 10}})

  assert response.status_code == 402
  detail = response.json()["detail"]
  assert (detail["error"], detail["required"], detail["available"]) == ("INSUFFICIENT_CREDITS", 10, 5)
  assert store.jobs == {}


def test_submit_rejects_unknown_tool_and_extra_fields(client):
  assert client.post("/v1/generation/jobs", json={"tool_id": "paint", "provider": "fake", "input": {}}).status_code == 400
  assert client.post("/v1/generation/jobs", json={"tool_id": "logo-machine", "provider": "fake", "input": {}, "priority": 1}).status_code == 422


def test_poll_reports_progress_then_result(client, adapter):
  job_id = _submit(client)["job_id"]
  adapter.statuses = [ProviderStatus(status="processing", progress_label="rendering")]

  first = client.post(f"/v1/generation/jobs/{job_id}/poll").json()
  adapter.statuses = [ProviderStatus(status="succeeded", output={"url": "https://cdn/logo.png"})]
  second = client.post(f"/v1/generation/jobs/{job_id}/poll").json()

  assert (first["status"], first["terminal"], first["progress_label"]) == ("processing", False, "rendering")
  assert (second["status"], second["terminal"], second["output"]) == ("succeeded", True, {"url": "https://cdn/logo.png"})
  assert client.get(f"/v1/generation/jobs/{job_id}").json()["credits_outcome"] == "debited"


def test_poll_provider_outage_is_retryable_503(client, adapter):
  job_id = _submit(client)["job_id"]
  adapter.statuses = [ProviderUnavailableError("fake returned 502")]

  response = client.post(f"/v1/generation/jobs/{job_id}/poll")

  assert response.status_code == 503
  assert response.json()["detail"]["retryable"] is True


def test_other_users_job_is_404(client, store):
  store.add_job(job_id="job-foreign", user_id="someone-else")

  assert client.get("/v1/generation/jobs/job-foreign").status_code == 404
  assert client.post("/v1/generation/jobs/job-foreign/poll").status_code == 404
  assert client.post("/v1/generation/jobs/job-foreign/seen").status_code == 404


def test_reconcile_flag_and_restore(client):
  job_id = _submit(client)["job_id"]

  flagged = client.post(f"/v1/generation/jobs/{job_id}/reconcile-flag", json={"reason": "poll_timeout"})
  restored = client.get("/v1/generation/restore", params={"tool_id": "logo-machine"}).json()

  assert flagged.status_code == 200
  assert flagged.json()["needs_reconciliation"] is True
  assert flagged.json()["status"] == "queued"
  assert [job["job_id"] for job in restored["active"]] == [job_id]
  assert client.post(f"/v1/generation/jobs/{job_id}/reconcile-flag", json={"reason": "stale"}).status_code == 422


def test_webhook_finalizes_once_and_acks_duplicates(client, store, broadcaster):
  job_id = _submit(client)["job_id"]
  body = {"id": "ext-1", "status": "succeeded", "output": ["https://cdn/logo.png"], "event_id": "evt-1"}

  first = client.post("/v1/webhooks/fake", params={"token": "hook-secret"}, json=body)
  second = client.post("/v1/webhooks/fake", params={"token": "hook-secret"}, json=body)

  assert (first.status_code, first.json()["outcome"]) == (200, "finalized")
  assert (second.status_code, second.json()["outcome"]) == (200, "duplicate")
  assert broadcaster.statuses(job_id) == ["succeeded"]
  assert store.finalize_wins == 1

  restored = client.get("/v1/generation/restore", params={"tool_id": "logo-machine"}).json()
  assert [job["job_id"] for job in restored["recently_completed"]] == [job_id]
  assert client.post(f"/v1/generation/jobs/{job_id}/seen").status_code == 204
  assert client.get("/v1/generation/restore", params={"tool_id": "logo-machine"}).json()["recently_completed"] == []


def test_webhook_rejects_bad_token_unknown_provider_and_bad_body(client):
  assert client.post("/v1/webhooks/fake", params={"token": "nope"}, json={}).status_code == 403
  assert client.post("/v1/webhooks/unknown", params={"token": "hook-secret"}, json={}).status_code == 404
  assert client.post("/v1/webhooks/fake", params={"token": "hook-secret"}, content=b"{not json").status_code == 400
  assert client.post("/v1/webhooks/fake", params={"token": "hook-secret"}, json={"status": "succeeded"}).status_code == 400


def test_webhook_for_unknown_job_is_acknowledged(client):
  response = client.post("/v1/webhooks/fake", params={"token": "hook-secret"}, json={"id": "ext-404", "status": "succeeded"})
  assert response.json() == {"ok": True, "outcome": "unknown_job"}


def test_internal_routes_require_task_secret(client, store):
  assert client.post("/internal/credits/top-up", json={"user_id": "user-2", "quantity": 10}).status_code == 403

  response = client.post("/internal/credits/top-up", json={"user_id": "user-2", "quantity": 10, "reason": "promo"}, headers={"X-Relay-Task-Secret": "task-secret"})

  assert response.status_code == 200
  assert response.json()["available"] == 10


def test_internal_reconcile_sweeps_flagged_jobs(client, adapter):
  job_id = _submit(client)["job_id"]
  client.post(f"/v1/generation/jobs/{job_id}/reconcile-flag", json={"reason": "poll_timeout"})
  adapter.statuses = [ProviderStatus(status="failed", error="timeout at provider")]

  response = client.post("/internal/reconcile", json={"limit": 10}, headers={"X-Relay-Task-Secret": "task-secret"})

  assert response.status_code == 200
  assert response.json()["finalized_job_ids"] == [job_id]
  assert client.get(f"/v1/generation/jobs/{job_id}").json()["credits_outcome"] == "released"


def test_health_and_request_id_header(client):
  response = client.get("/health")
  assert response.json()["status"] == "ok"
  assert "x-request-id" in response.headers


@pytest.mark.anyio
async def test_balance_reports_spendable_over_async_client(async_client, store):
  store.set_balance("user-1", available=40, reserved=15)

  response = await async_client.get("/v1/credits")

  assert response.status_code == 200
  assert (response.json()["available"], response.json()["spendable"]) == (40, 25)
