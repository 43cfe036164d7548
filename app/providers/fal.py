"""fal.ai queue adapter."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from app.core.errors import JobValidationError, ProviderUnavailableError
from app.providers.base import ProviderAdapter, ProviderEvent, ProviderStatus, ProviderSubmission, WebhookPayloadError, last_log_line, raise_for_provider_response, transport_failure
from app.utils.ids import generate_event_id

logger = logging.getLogger(__name__)


def _app_root(app_id: str) -> str:
  """Status and result URLs live under owner/app even for apps with sub-paths (fal-ai/flux/dev)."""
  parts = [part for part in app_id.split("/") if part]
  return "/".join(parts[:2])


class FalQueueAdapter(ProviderAdapter):
  """Runs tools through the fal queue API; apps map tool ids to fal app ids."""

  name = "fal"

  def __init__(self, *, api_key: str, apps: Mapping[str, str], base_url: str = "https://queue.fal.run", timeout_seconds: float = 30.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._api_key = api_key
    self._apps = dict(apps)
    self._base_url = base_url.rstrip("/")
    self._timeout_seconds = timeout_seconds
    self._transport = transport

  def supports_tool(self, tool_id: str) -> bool:
    return tool_id in self._apps

  def _client(self) -> httpx.AsyncClient:
    headers = {"Authorization": f"Key {self._api_key}", "Content-Type": "application/json"}
    return httpx.AsyncClient(base_url=self._base_url, headers=headers, timeout=self._timeout_seconds, transport=self._transport, trust_env=False)

  def _app_for(self, tool_id: str) -> str:
    app_id = self._apps.get(tool_id)
    if app_id is None:
      raise JobValidationError(f"fal has no app configured for {tool_id}")
    return app_id

  async def submit(self, *, tool_id: str, job_input: dict[str, Any], webhook_url: str | None) -> ProviderSubmission:
    app_id = self._app_for(tool_id)
    params = {"fal_webhook": webhook_url} if webhook_url else None
    try:
      async with self._client() as client:
        response = await client.post(f"/{app_id}", json=job_input, params=params)
    except httpx.HTTPError as exc:
      raise transport_failure(self.name, exc) from exc
    raise_for_provider_response(self.name, response)
    request_id = response.json().get("request_id")
    if not request_id:
      raise ProviderUnavailableError("fal response did not include a request id")
    logger.info("fal request queued request_id=%s app=%s", request_id, app_id)
    return ProviderSubmission(external_job_id=str(request_id))

  async def fetch_status(self, external_job_id: str, *, tool_id: str) -> ProviderStatus:
    root = _app_root(self._app_for(tool_id))
    try:
      async with self._client() as client:
        response = await client.get(f"/{root}/requests/{external_job_id}/status", params={"logs": 1})
        raise_for_provider_response(self.name, response)
        payload = response.json()
        queue_status = str(payload.get("status") or "").upper()
        if queue_status == "IN_QUEUE":
          position = payload.get("queue_position")
          return ProviderStatus(status="queued", progress_label=f"queue position {position}" if position is not None else None)
        if queue_status == "IN_PROGRESS":
          return ProviderStatus(status="processing", progress_label=last_log_line(payload.get("logs")))
        if queue_status != "COMPLETED":
          raise ProviderUnavailableError(f"fal reported unknown queue status {queue_status!r}")
        if payload.get("error"):
          return ProviderStatus(status="failed", error=str(payload["error"]))
        result = await client.get(f"/{root}/requests/{external_job_id}")
    except httpx.HTTPError as exc:
      raise transport_failure(self.name, exc) from exc

    # A completed request whose result is an error body means the run itself failed.
    if result.status_code in {400, 422}:
      return ProviderStatus(status="failed", error=result.text[:500])
    raise_for_provider_response(self.name, result)
    return ProviderStatus(status="succeeded", output=result.json())

  def parse_event(self, payload: Any, headers: Mapping[str, str]) -> ProviderEvent:
    if not isinstance(payload, dict) or not payload.get("request_id"):
      raise WebhookPayloadError("fal webhook missing request_id")
    request_id = str(payload["request_id"])
    raw_status = str(payload.get("status") or "").upper()
    if raw_status == "OK":
      status, error = "succeeded", None
    elif raw_status == "ERROR":
      status, error = "failed", str(payload.get("error") or payload.get("payload_error") or "fal reported an error")
    else:
      raise WebhookPayloadError(f"unknown fal webhook status: {raw_status!r}")
    # fal sends no delivery id, so (request_id, status) identifies the event.
    event_id = generate_event_id(self.name, request_id, raw_status)
    return ProviderEvent(external_event_id=event_id, external_job_id=request_id, status=status, output=payload.get("payload"), error=error)
