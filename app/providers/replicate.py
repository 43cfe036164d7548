"""Replicate predictions adapter."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from app.core.errors import JobValidationError, ProviderUnavailableError
from app.jobs.models import JobStatus
from app.providers.base import ProviderAdapter, ProviderEvent, ProviderStatus, ProviderSubmission, WebhookPayloadError, last_log_line, raise_for_provider_response, transport_failure
from app.utils.ids import generate_event_id

logger = logging.getLogger(__name__)

_STATUS_MAP: dict[str, JobStatus] = {"starting": "queued", "processing": "processing", "succeeded": "succeeded", "failed": "failed", "canceled": "canceled"}


def _normalize_status(raw: Any) -> JobStatus:
  status = _STATUS_MAP.get(str(raw or "").lower())
  if status is None:
    raise WebhookPayloadError(f"unknown replicate status: {raw!r}")
  return status


class ReplicateAdapter(ProviderAdapter):
  """Runs tools as Replicate predictions; models map tool ids to `owner/name` or `owner/name:version`."""

  name = "replicate"

  def __init__(self, *, api_token: str, models: Mapping[str, str], base_url: str = "https://api.replicate.com/v1", timeout_seconds: float = 30.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._api_token = api_token
    self._models = dict(models)
    self._base_url = base_url.rstrip("/")
    self._timeout_seconds = timeout_seconds
    self._transport = transport

  def supports_tool(self, tool_id: str) -> bool:
    return tool_id in self._models

  def _client(self) -> httpx.AsyncClient:
    headers = {"Authorization": f"Bearer {self._api_token}", "Content-Type": "application/json"}
    return httpx.AsyncClient(base_url=self._base_url, headers=headers, timeout=self._timeout_seconds, transport=self._transport, trust_env=False)

  def _prediction_request(self, tool_id: str, job_input: dict[str, Any], webhook_url: str | None) -> tuple[str, dict[str, Any]]:
    model = self._models.get(tool_id)
    if model is None:
      raise JobValidationError(f"replicate has no model configured for {tool_id}")
    body: dict[str, Any] = {"input": job_input}
    if webhook_url:
      body["webhook"] = webhook_url
      body["webhook_events_filter"] = ["start", "completed"]
    # Pinned versions use the generic endpoint; bare model names use the model endpoint.
    if ":" in model:
      body["version"] = model.split(":", 1)[1]
      return "/predictions", body
    return f"/models/{model}/predictions", body

  async def submit(self, *, tool_id: str, job_input: dict[str, Any], webhook_url: str | None) -> ProviderSubmission:
    path, body = self._prediction_request(tool_id, job_input, webhook_url)
    try:
      async with self._client() as client:
        response = await client.post(path, json=body)
    except httpx.HTTPError as exc:
      raise transport_failure(self.name, exc) from exc
    raise_for_provider_response(self.name, response)
    prediction_id = response.json().get("id")
    if not prediction_id:
      raise ProviderUnavailableError("replicate response did not include a prediction id")
    logger.info("Replicate prediction created id=%s tool_id=%s", prediction_id, tool_id)
    return ProviderSubmission(external_job_id=str(prediction_id))

  async def fetch_status(self, external_job_id: str, *, tool_id: str) -> ProviderStatus:
    try:
      async with self._client() as client:
        response = await client.get(f"/predictions/{external_job_id}")
    except httpx.HTTPError as exc:
      raise transport_failure(self.name, exc) from exc
    raise_for_provider_response(self.name, response)
    try:
      return self._status_from_prediction(response.json())
    except WebhookPayloadError as exc:
      raise ProviderUnavailableError(str(exc)) from exc

  def _status_from_prediction(self, prediction: dict[str, Any]) -> ProviderStatus:
    status = _normalize_status(prediction.get("status"))
    error = prediction.get("error")
    return ProviderStatus(status=status, output=prediction.get("output"), error=str(error) if error else None, progress_label=last_log_line(prediction.get("logs")))

  def parse_event(self, payload: Any, headers: Mapping[str, str]) -> ProviderEvent:
    if not isinstance(payload, dict) or not payload.get("id"):
      raise WebhookPayloadError("replicate webhook missing prediction id")
    status = self._status_from_prediction(payload)
    prediction_id = str(payload["id"])
    # Replicate signs each delivery with a webhook-id header; fall back to id+status.
    event_id = headers.get("webhook-id") or generate_event_id(self.name, prediction_id, str(payload.get("status")))
    return ProviderEvent(external_event_id=event_id, external_job_id=prediction_id, status=status.status, output=status.output, error=status.error, progress_label=status.progress_label)
