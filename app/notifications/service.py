"""Job update broadcasting over SSE channels and Web Push."""

from __future__ import annotations

import asyncio
import logging

from starlette.concurrency import run_in_threadpool

from app.jobs.models import is_terminal
from app.notifications.channels import ChannelHub
from app.notifications.contracts import InvalidPushSubscriptionError, JobUpdate, NotificationProviderError, PushNotification, PushSender, UpdateBroadcaster
from app.notifications.push_subscription_repo import PushSubscriptionRepository

logger = logging.getLogger(__name__)


def render_push_content(update: JobUpdate) -> tuple[str, str, dict[str, str]]:
  """Build the title, body and data of a terminal job push."""
  tool = update.tool_id.replace("-", " ")
  if update.status == "succeeded":
    title, body = "Generation ready", f"Your {tool} result is ready."
  elif update.status == "canceled":
    title, body = "Generation canceled", f"Your {tool} job was canceled."
  else:
    title, body = "Generation failed", f"Your {tool} job could not be completed."
  return title, body, {"job_id": update.job_id, "tool_id": update.tool_id, "status": update.status}


class JobUpdateBroadcaster(UpdateBroadcaster):
  """Publish updates to connected SSE clients and, for terminal states, Web Push."""

  def __init__(self, *, hub: ChannelHub, push_sender: PushSender, push_subscription_repo: PushSubscriptionRepository | None, push_enabled: bool) -> None:
    self._hub = hub
    self._push_sender = push_sender
    self._push_subscription_repo = push_subscription_repo
    self._push_enabled = push_enabled
    self._tasks: set[asyncio.Task[None]] = set()

  @property
  def hub(self) -> ChannelHub:
    return self._hub

  async def publish(self, *, user_id: str, update: JobUpdate) -> None:
    try:
      delivered = self._hub.publish(user_id, update)
      logger.debug("Job update published job_id=%s status=%s subscribers=%s", update.job_id, update.status, delivered)
    except Exception as exc:  # noqa: BLE001
      logger.error("Channel publish failed job_id=%s error=%s", update.job_id, exc, exc_info=True)

    # Schedule push in the background so webhook acks are never blocked by delivery.
    if self._push_enabled and self._push_subscription_repo is not None and is_terminal(update.status):
      task = asyncio.create_task(self._dispatch_push_for_user(user_id=user_id, update=update))
      self._tasks.add(task)
      task.add_done_callback(self._tasks.discard)
      task.add_done_callback(self._log_task_error)

  async def _dispatch_push_for_user(self, *, user_id: str, update: JobUpdate) -> None:
    """Deliver a push payload to each subscription endpoint for a user."""
    try:
      subscriptions = await self._push_subscription_repo.list_for_user(user_id=user_id)
    except Exception as exc:  # noqa: BLE001
      logger.error("Push subscription lookup failed user_id=%s error=%s", user_id, exc, exc_info=True)
      return

    title, body, data = render_push_content(update)
    for subscription in subscriptions:
      try:
        notification = PushNotification(endpoint=subscription.endpoint, p256dh=subscription.p256dh, auth=subscription.auth, title=title, body=body, data=data)
        await run_in_threadpool(self._push_sender.send, notification)
      except InvalidPushSubscriptionError:
        try:
          await self._push_subscription_repo.delete_by_endpoint(endpoint=subscription.endpoint)
        except Exception as exc:  # noqa: BLE001
          logger.error("Failed deleting invalid push subscription endpoint=%s error=%s", subscription.endpoint, exc, exc_info=True)
      except NotificationProviderError as exc:
        logger.error("Push notification delivery failed (provider error): %s", exc)
      except Exception as exc:  # noqa: BLE001
        logger.error("Push notification delivery failed: %s", exc, exc_info=True)

  @staticmethod
  def _log_task_error(task: asyncio.Task[None]) -> None:
    """Log background task exceptions to avoid silent delivery failures."""
    if task.cancelled():
      return
    exc = task.exception()
    if exc is not None:
      logger.error("Background push dispatch task failed: %s", exc, exc_info=exc)
