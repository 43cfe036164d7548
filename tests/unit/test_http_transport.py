from __future__ import annotations

import json

import httpx
import pytest

from app.client.transport import HttpTransport, raise_for_coordinator_response
from app.core.errors import CoordinatorError, InsufficientCreditsError, JobNotFoundError, ProviderRejectedError, ProviderUnavailableError


def _transport(handler) -> HttpTransport:
  client = httpx.AsyncClient(base_url="https://relay.example.com", transport=httpx.MockTransport(handler))
  return HttpTransport(base_url="https://relay.example.com", id_token="id-token", client=client)


@pytest.mark.anyio
async def test_submit_sends_bearer_token_and_body():
  seen = {}

  def handler(request: httpx.Request) -> httpx.Response:
    seen["auth"] = request.headers["Authorization"]
    seen["path"] = request.url.path
    seen["body"] = json.loads(request.content)
    return httpx.Response(202, json={"job_id": "job-1", "estimated_credits": 3})

  result = await _transport(handler).submit(tool_id="logo-machine", provider="replicate", job_input={"prompt": "fox"})

  assert (result.job_id, result.estimated_credits) == ("job-1", 3)
  assert seen == {"auth": "Bearer id-token", "path": "/v1/generation/jobs", "body": {"tool_id": "logo-machine", "provider": "replicate", "input": {"prompt": "fox"}}}


@pytest.mark.anyio
async def test_poll_once_reads_observation():
  def handler(request: httpx.Request) -> httpx.Response:
    assert request.url.path == "/v1/generation/jobs/job-1/poll"
    return httpx.Response(200, json={"job_id": "job-1", "status": "succeeded", "terminal": True, "output": ["a.png"]})

  observation = await _transport(handler).poll_once("job-1")

  assert observation.is_terminal
  assert observation.output == ["a.png"]


@pytest.mark.anyio
async def test_restore_reads_both_lists():
  def handler(request: httpx.Request) -> httpx.Response:
    assert request.url.params["tool_id"] == "logo-machine"
    return httpx.Response(200, json={"active": [{"job_id": "job-1", "status": "processing"}], "recently_completed": []})

  restored = await _transport(handler).restore("logo-machine")

  assert [job.job_id for job in restored.active] == ["job-1"]
  assert restored.recently_completed == []


@pytest.mark.anyio
async def test_connection_failure_is_unavailable():
  def handler(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectTimeout("slow", request=request)

  with pytest.raises(ProviderUnavailableError):
    await _transport(handler).get_job("job-1")


def _response(status_code: int, detail=None) -> httpx.Response:
  return httpx.Response(status_code, json={"detail": detail} if detail is not None else {}, request=httpx.Request("GET", "https://relay.example.com"))


def test_error_responses_rebuild_coordinator_errors():
  with pytest.raises(InsufficientCreditsError) as excinfo:
    raise_for_coordinator_response(_response(402, {"error": "INSUFFICIENT_CREDITS", "message": "no", "required": 10, "available": 5}))
  assert (excinfo.value.required, excinfo.value.available) == (10, 5)

  with pytest.raises(JobNotFoundError):
    raise_for_coordinator_response(_response(404, "Not Found"))
  with pytest.raises(ProviderRejectedError):
    raise_for_coordinator_response(_response(422, {"error": "PROVIDER_REJECTED", "message": "bad"}))
  with pytest.raises(ProviderUnavailableError):
    raise_for_coordinator_response(_response(503, {"error": "PROVIDER_UNAVAILABLE"}))
  with pytest.raises(CoordinatorError) as excinfo:
    raise_for_coordinator_response(_response(401, "Not authenticated"))
  assert excinfo.value.status_code == 401

  raise_for_coordinator_response(_response(200))
