"""Web Push delivery implementations."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from http import HTTPStatus

from pywebpush import WebPushException, webpush

from app.notifications.contracts import InvalidPushSubscriptionError, PushNotification, PushSender, TransientPushProviderError

logger = logging.getLogger(__name__)

_BACKOFF_SECONDS = (0.5, 1.0)


@dataclass(frozen=True)
class VapidConfig:
  """Configuration required to sign Web Push requests."""

  public_key: str
  private_key: str
  sub: str


class WebPushSender(PushSender):
  """`pywebpush` backed sender with retry and invalid-endpoint handling."""

  def __init__(self, *, vapid_config: VapidConfig, timeout_seconds: float = 10.0) -> None:
    self._vapid_config = vapid_config
    self._timeout_seconds = timeout_seconds

  def send(self, notification: PushNotification) -> None:
    """Send a Web Push payload, retrying 5xx answers twice."""
    payload = json.dumps({"title": notification.title, "body": notification.body, "data": notification.data})
    subscription_info = {"endpoint": notification.endpoint, "keys": {"p256dh": notification.p256dh, "auth": notification.auth}}

    for attempt in range(len(_BACKOFF_SECONDS) + 1):
      try:
        webpush(subscription_info=subscription_info, data=payload, vapid_private_key=self._vapid_config.private_key, vapid_claims={"sub": self._vapid_config.sub}, timeout=self._timeout_seconds)
        return
      except WebPushException as exc:
        status_code = _extract_status_code(exc)

        if status_code in {HTTPStatus.GONE, HTTPStatus.NOT_FOUND}:
          raise InvalidPushSubscriptionError(f"Push subscription is invalid (status={int(status_code)})") from exc

        if status_code is not None and 500 <= status_code < 600 and attempt < len(_BACKOFF_SECONDS):
          time.sleep(_BACKOFF_SECONDS[attempt])
          continue

        raise TransientPushProviderError(f"Push delivery failed (status={status_code if status_code else 'unknown'})") from exc


class NullPushSender(PushSender):
  """No-op sender used when push notifications are disabled."""

  def send(self, notification: PushNotification) -> None:
    logger.debug("Push notifications disabled; dropping push endpoint_present=%s", bool(notification.endpoint))


def _extract_status_code(exc: WebPushException) -> int | None:
  """Extract an HTTP status code from a pywebpush exception when available."""
  response = getattr(exc, "response", None)
  status = getattr(response, "status_code", None)
  return status if isinstance(status, int) else None
