"""Contracts for job update delivery channels."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class JobUpdate:
  """Payload published on a user's channel when a job changes state."""

  job_id: str
  tool_id: str
  status: str
  output: Any | None = None
  error: str | None = None
  progress_label: str | None = None

  def as_dict(self) -> dict[str, Any]:
    return {"job_id": self.job_id, "tool_id": self.tool_id, "status": self.status, "output": self.output, "error": self.error, "progress_label": self.progress_label}


@dataclass(frozen=True)
class PushNotification:
  """Represents a push notification payload."""

  endpoint: str
  p256dh: str
  auth: str
  title: str
  body: str
  data: dict[str, str] = field(default_factory=dict)


class NotificationError(Exception):
  """Base class for all notification delivery failures."""


class NotificationProviderError(NotificationError):
  """Raised when a push service returns a delivery error."""


class InvalidPushSubscriptionError(NotificationProviderError):
  """Raised when a push subscription endpoint is expired or invalid."""


class TransientPushProviderError(NotificationProviderError):
  """Raised when transient push provider failures exhaust retries."""


class PushSender(Protocol):
  """Delivery contract for sending push notifications."""

  def send(self, notification: PushNotification) -> None:
    """Send a push notification synchronously."""


class UpdateBroadcaster(Protocol):
  """Best-effort fan-out of job updates to a user's connected clients."""

  async def publish(self, *, user_id: str, update: JobUpdate) -> None:
    """Publish an update; implementations never raise for delivery failures."""
