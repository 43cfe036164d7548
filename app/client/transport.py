"""Transports the client-side coordinator uses to reach the service."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from app.config import Settings
from app.core.errors import CoordinatorError, InsufficientCreditsError, JobNotFoundError, JobValidationError, ProviderRejectedError, ProviderUnavailableError
from app.notifications.contracts import UpdateBroadcaster
from app.providers.registry import ProviderRegistry
from app.services.polling import JobObservation, get_owned_job, poll_job_once
from app.services.reconciliation import flag_job_for_reconciliation
from app.services.restoration import mark_result_seen, restore_tool_state
from app.services.submission import SubmitResult, submit_generation_job
from app.storage.generation_repo import GenerationStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RestoredJobs:
  active: list[JobObservation] = field(default_factory=list)
  recently_completed: list[JobObservation] = field(default_factory=list)


class CoordinatorTransport(Protocol):
  """Operations a client session needs from the coordinator, scoped to one user."""

  async def submit(self, *, tool_id: str, provider: str, job_input: dict[str, Any]) -> SubmitResult:
    """Submit a job; raises the submission errors unchanged."""

  async def get_job(self, job_id: str) -> JobObservation:
    """Read a job's persisted state; raises JobNotFoundError."""

  async def poll_once(self, job_id: str) -> JobObservation:
    """Run one server-side poll step."""

  async def restore(self, tool_id: str) -> RestoredJobs:
    """Return active and recently completed jobs for a tool."""

  async def mark_seen(self, job_id: str) -> None:
    """Acknowledge a job's output."""

  async def flag_for_reconciliation(self, job_id: str, *, reason: str) -> None:
    """Ask the server to flag a job the client gave up on."""


class InProcessTransport(CoordinatorTransport):
  """Call the coordinator services directly, for workers and tests sharing the process."""

  def __init__(self, *, store: GenerationStore, providers: ProviderRegistry, broadcaster: UpdateBroadcaster, settings: Settings, user_id: str) -> None:
    self._store = store
    self._providers = providers
    self._broadcaster = broadcaster
    self._settings = settings
    self._user_id = user_id

  async def submit(self, *, tool_id: str, provider: str, job_input: dict[str, Any]) -> SubmitResult:
    return await submit_generation_job(self._store, self._providers, self._settings, user_id=self._user_id, tool_id=tool_id, provider=provider, job_input=job_input)

  async def get_job(self, job_id: str) -> JobObservation:
    job = await get_owned_job(self._store, job_id=job_id, user_id=self._user_id)
    return JobObservation.from_record(job)

  async def poll_once(self, job_id: str) -> JobObservation:
    return await poll_job_once(self._store, self._providers, self._broadcaster, self._settings, job_id=job_id, user_id=self._user_id)

  async def restore(self, tool_id: str) -> RestoredJobs:
    snapshot = await restore_tool_state(self._store, self._settings, user_id=self._user_id, tool_id=tool_id)
    return RestoredJobs(active=[JobObservation.from_record(job) for job in snapshot.active], recently_completed=[JobObservation.from_record(job) for job in snapshot.recently_completed])

  async def mark_seen(self, job_id: str) -> None:
    await mark_result_seen(self._store, job_id=job_id, user_id=self._user_id)

  async def flag_for_reconciliation(self, job_id: str, *, reason: str) -> None:
    await flag_job_for_reconciliation(self._store, job_id=job_id, user_id=self._user_id, reason=reason)


def _observation_from_payload(payload: dict[str, Any]) -> JobObservation:
  return JobObservation(job_id=str(payload["job_id"]), status=str(payload["status"]), output=payload.get("output"), error=payload.get("error"), progress_label=payload.get("progress_label"))


def _error_detail(response: httpx.Response) -> dict[str, Any]:
  try:
    body = response.json()
  except ValueError:
    return {}
  detail = body.get("detail") if isinstance(body, dict) else None
  return detail if isinstance(detail, dict) else {}


def raise_for_coordinator_response(response: httpx.Response) -> None:
  """Rebuild the coordinator error a failed response stands for."""
  if response.is_success:
    return
  detail = _error_detail(response)
  message = str(detail.get("message") or f"coordinator returned {response.status_code}")
  status_code = response.status_code
  if status_code == 402:
    raise InsufficientCreditsError(required=int(detail.get("required", 0)), available=int(detail.get("available", 0)))
  if status_code == 404:
    raise JobNotFoundError(message)
  if status_code == 400:
    raise JobValidationError(message)
  if status_code == 422 and detail.get("error") == ProviderRejectedError.code:
    raise ProviderRejectedError(message)
  if status_code == 429 or status_code in {502, 503, 504}:
    raise ProviderUnavailableError(message)
  error = CoordinatorError(message)
  error.status_code = status_code
  raise error


class HttpTransport(CoordinatorTransport):
  """Reach a remote coordinator over its HTTP API with a Firebase ID token."""

  def __init__(self, *, base_url: str, id_token: str, timeout_seconds: float = 15.0, client: httpx.AsyncClient | None = None) -> None:
    self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout_seconds)
    self._owns_client = client is None
    self._headers = {"Authorization": f"Bearer {id_token}"}

  async def aclose(self) -> None:
    if self._owns_client:
      await self._client.aclose()

  async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
    try:
      response = await self._client.request(method, path, headers=self._headers, **kwargs)
    except httpx.TransportError as exc:
      logger.warning("Coordinator unreachable method=%s path=%s error=%s", method, path, exc)
      raise ProviderUnavailableError(f"coordinator unreachable: {type(exc).__name__}") from exc
    raise_for_coordinator_response(response)
    return response

  async def submit(self, *, tool_id: str, provider: str, job_input: dict[str, Any]) -> SubmitResult:
    response = await self._request("POST", "/v1/generation/jobs", json={"tool_id": tool_id, "provider": provider, "input": job_input})
    body = response.json()
    return SubmitResult(job_id=str(body["job_id"]), estimated_credits=int(body["estimated_credits"]))

  async def get_job(self, job_id: str) -> JobObservation:
    response = await self._request("GET", f"/v1/generation/jobs/{job_id}")
    return _observation_from_payload(response.json())

  async def poll_once(self, job_id: str) -> JobObservation:
    response = await self._request("POST", f"/v1/generation/jobs/{job_id}/poll")
    return _observation_from_payload(response.json())

  async def restore(self, tool_id: str) -> RestoredJobs:
    response = await self._request("GET", "/v1/generation/restore", params={"tool_id": tool_id})
    body = response.json()
    return RestoredJobs(active=[_observation_from_payload(item) for item in body.get("active", [])], recently_completed=[_observation_from_payload(item) for item in body.get("recently_completed", [])])

  async def mark_seen(self, job_id: str) -> None:
    await self._request("POST", f"/v1/generation/jobs/{job_id}/seen")

  async def flag_for_reconciliation(self, job_id: str, *, reason: str) -> None:
    await self._request("POST", f"/v1/generation/jobs/{job_id}/reconcile-flag", json={"reason": reason})
