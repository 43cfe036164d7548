"""Factory helpers for the job update broadcaster."""

from __future__ import annotations

from functools import lru_cache

from app.config import Settings, get_settings
from app.notifications.channels import ChannelHub
from app.notifications.contracts import PushSender
from app.notifications.push_sender import NullPushSender, VapidConfig, WebPushSender
from app.notifications.push_subscription_repo import PushSubscriptionRepository
from app.notifications.service import JobUpdateBroadcaster


def build_broadcaster(settings: Settings, *, hub: ChannelHub | None = None) -> JobUpdateBroadcaster:
  """Construct the broadcaster based on environment configuration."""
  push_enabled = bool(settings.push_notifications_enabled and settings.push_vapid_public_key and settings.push_vapid_private_key and settings.push_vapid_sub)
  if push_enabled:
    push_sender: PushSender = WebPushSender(vapid_config=VapidConfig(public_key=settings.push_vapid_public_key or "", private_key=settings.push_vapid_private_key or "", sub=settings.push_vapid_sub or ""))
  else:
    push_sender = NullPushSender()

  # Subscriptions live in Postgres; without it only SSE delivery is available.
  push_subscription_repo = PushSubscriptionRepository() if settings.pg_dsn else None
  return JobUpdateBroadcaster(hub=hub or ChannelHub(queue_size=settings.event_queue_size), push_sender=push_sender, push_subscription_repo=push_subscription_repo, push_enabled=push_enabled)


@lru_cache(maxsize=1)
def get_broadcaster() -> JobUpdateBroadcaster:
  """FastAPI dependency returning the process-wide broadcaster."""
  return build_broadcaster(get_settings())
