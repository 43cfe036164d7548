"""Domain errors raised by the generation coordinator."""

from __future__ import annotations

from typing import Any


class CoordinatorError(RuntimeError):
  """Base class for coordinator failures that map onto an HTTP status."""

  status_code = 500
  code = "COORDINATOR_ERROR"
  retryable = False

  def detail(self) -> dict[str, Any]:
    """Return the client-facing error payload."""
    return {"error": self.code, "message": str(self), "retryable": self.retryable}


class JobValidationError(CoordinatorError):
  """Raised for unknown tools, unknown providers or malformed tool input."""

  status_code = 400
  code = "INVALID_JOB_INPUT"


class InsufficientCreditsError(CoordinatorError):
  """Raised when the spendable balance cannot cover a submission estimate."""

  status_code = 402
  code = "INSUFFICIENT_CREDITS"

  def __init__(self, *, required: int, available: int) -> None:
    super().__init__(f"Insufficient credits: {required} required, {available} available")
    self.required = required
    self.available = available

  def detail(self) -> dict[str, Any]:
    payload = super().detail()
    payload["required"] = self.required
    payload["available"] = self.available
    return payload


class ProviderUnavailableError(CoordinatorError):
  """Raised when a provider cannot be reached or answers with a transient failure."""

  status_code = 503
  code = "PROVIDER_UNAVAILABLE"
  retryable = True


class ProviderRejectedError(CoordinatorError):
  """Raised when a provider permanently refuses a request."""

  status_code = 422
  code = "PROVIDER_REJECTED"


class JobNotFoundError(CoordinatorError):
  """Raised when a job id is unknown or not owned by the caller."""

  status_code = 404
  code = "JOB_NOT_FOUND"


class DuplicateEventError(CoordinatorError):
  """Raised when a webhook delivery was already recorded."""

  status_code = 200
  code = "DUPLICATE_EVENT"


class LedgerError(CoordinatorError):
  """Raised when a credit ledger write cannot be applied."""

  status_code = 500
  code = "LEDGER_ERROR"


class WebhookAuthError(CoordinatorError):
  """Raised when an inbound webhook carries an invalid shared secret."""

  status_code = 403
  code = "WEBHOOK_FORBIDDEN"
