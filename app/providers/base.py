"""Provider adapter contract and shared HTTP error mapping."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from app.core.errors import ProviderRejectedError, ProviderUnavailableError
from app.jobs.models import JobStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderSubmission:
  external_job_id: str


@dataclass(frozen=True)
class ProviderStatus:
  """Provider-reported state of one external job, normalized to coordinator statuses."""

  status: JobStatus
  output: Any | None = None
  error: str | None = None
  progress_label: str | None = None


@dataclass(frozen=True)
class ProviderEvent:
  """Normalized inbound webhook delivery."""

  external_event_id: str
  external_job_id: str
  status: JobStatus
  output: Any | None = None
  error: str | None = None
  progress_label: str | None = None


class WebhookPayloadError(ValueError):
  """Raised when a webhook body cannot be interpreted."""


class ProviderAdapter(Protocol):
  """Capability every generation provider exposes to the coordinator."""

  name: str

  def supports_tool(self, tool_id: str) -> bool:
    """Return True when the adapter knows how to run the tool."""

  async def submit(self, *, tool_id: str, job_input: dict[str, Any], webhook_url: str | None) -> ProviderSubmission:
    """Start one external job and return its provider id."""

  async def fetch_status(self, external_job_id: str, *, tool_id: str) -> ProviderStatus:
    """Ask the provider for the current state of an external job."""

  def parse_event(self, payload: Any, headers: Mapping[str, str]) -> ProviderEvent:
    """Turn a webhook body into a ProviderEvent or raise WebhookPayloadError."""


def raise_for_provider_response(provider: str, response: httpx.Response) -> None:
  """Map provider HTTP failures onto retryable and permanent coordinator errors."""
  if response.is_success:
    return
  body = response.text[:500]
  if response.status_code == 429 or response.status_code >= 500:
    logger.warning("Provider %s transient failure status=%s body=%s", provider, response.status_code, body)
    raise ProviderUnavailableError(f"{provider} returned {response.status_code}")
  logger.warning("Provider %s rejected request status=%s body=%s", provider, response.status_code, body)
  raise ProviderRejectedError(f"{provider} rejected the request ({response.status_code})")


def transport_failure(provider: str, exc: httpx.HTTPError) -> ProviderUnavailableError:
  logger.warning("Provider %s transport failure: %s", provider, exc)
  return ProviderUnavailableError(f"{provider} is unreachable: {type(exc).__name__}")


def last_log_line(logs: Any) -> str | None:
  """Return the last non-empty log line a provider reported, if any."""
  if isinstance(logs, list):
    lines = [str(item.get("message") if isinstance(item, dict) else item) for item in logs]
  elif isinstance(logs, str):
    lines = logs.splitlines()
  else:
    return None
  for line in reversed(lines):
    if line and line.strip():
      return line.strip()[:200]
  return None
