from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.notifications.channels import ChannelHub, channel_name
from app.notifications.contracts import InvalidPushSubscriptionError, JobUpdate, TransientPushProviderError
from app.notifications.factory import build_broadcaster
from app.notifications.push_sender import NullPushSender, WebPushSender
from app.notifications.push_subscription_repo import PushSubscriptionEntry
from app.notifications.service import JobUpdateBroadcaster, render_push_content
from tests.support import make_settings

_ENDPOINT = "https://fcm.googleapis.com/fcm/send/abc"


def _entry() -> PushSubscriptionEntry:
  return PushSubscriptionEntry(user_id="user-1", endpoint=_ENDPOINT, p256dh="BEl6f5Y8X5Y_u7d8mV_AbpZfXfTLT3s1O3L4wM1x8QY2_5qWQ-jxJq7uKjv8mQ4I", auth="gq8Yh5xA9l2mQ6pR", user_agent="ua")


def _capture_tasks(monkeypatch) -> list[asyncio.Task]:
  tasks: list[asyncio.Task] = []

  def _capture_task(coro):
    task = asyncio.get_running_loop().create_task(coro)
    tasks.append(task)
    return task

  monkeypatch.setattr("app.notifications.service.asyncio.create_task", _capture_task)
  return tasks


def test_channel_name_is_per_user():
  assert channel_name("abc") == "user_abc_updates"


@pytest.mark.anyio
async def test_hub_delivers_only_to_the_users_subscribers():
  hub = ChannelHub()
  update = JobUpdate(job_id="job-1", tool_id="logo-machine", status="succeeded")

  async with hub.subscribe("user-1") as mine, hub.subscribe("user-2") as theirs:
    assert hub.subscriber_count("user-1") == 1
    assert hub.publish("user-1", update) == 1
    assert mine.get_nowait() == update
    assert theirs.empty()

  assert hub.subscriber_count("user-1") == 0
  assert hub.publish("user-1", update) == 0


@pytest.mark.anyio
async def test_hub_drops_oldest_update_for_slow_subscriber():
  hub = ChannelHub(queue_size=2)

  async with hub.subscribe("user-1") as queue:
    for index in range(3):
      hub.publish("user-1", JobUpdate(job_id=f"job-{index}", tool_id="logo-machine", status="processing"))

    assert [queue.get_nowait().job_id, queue.get_nowait().job_id] == ["job-1", "job-2"]


def test_render_push_content_by_status():
  ready = render_push_content(JobUpdate(job_id="job-1", tool_id="logo-machine", status="succeeded"))
  failed = render_push_content(JobUpdate(job_id="job-1", tool_id="logo-machine", status="failed"))

  assert ready[0] == "Generation ready"
  assert "logo machine" in ready[1]
  assert failed[0] == "Generation failed"
  assert ready[2] == {"job_id": "job-1", "tool_id": "logo-machine", "status": "succeeded"}


@pytest.mark.anyio
async def test_terminal_update_schedules_push_and_deletes_invalid_subscription(monkeypatch):
  push_sender = MagicMock()
  push_sender.send.side_effect = InvalidPushSubscriptionError("gone")
  push_subscription_repo = AsyncMock()
  push_subscription_repo.list_for_user.return_value = [_entry()]
  broadcaster = JobUpdateBroadcaster(hub=ChannelHub(), push_sender=push_sender, push_subscription_repo=push_subscription_repo, push_enabled=True)
  tasks = _capture_tasks(monkeypatch)

  await broadcaster.publish(user_id="user-1", update=JobUpdate(job_id="job-1", tool_id="logo-machine", status="succeeded"))
  await asyncio.gather(*tasks)

  assert push_sender.send.call_count == 1
  push_subscription_repo.delete_by_endpoint.assert_awaited_once_with(endpoint=_ENDPOINT)


@pytest.mark.anyio
async def test_progress_update_does_not_push(monkeypatch):
  push_sender = MagicMock()
  push_subscription_repo = AsyncMock()
  broadcaster = JobUpdateBroadcaster(hub=ChannelHub(), push_sender=push_sender, push_subscription_repo=push_subscription_repo, push_enabled=True)
  tasks = _capture_tasks(monkeypatch)

  await broadcaster.publish(user_id="user-1", update=JobUpdate(job_id="job-1", tool_id="logo-machine", status="processing"))

  assert tasks == []
  push_subscription_repo.list_for_user.assert_not_awaited()


@pytest.mark.anyio
async def test_provider_error_is_logged_and_other_subscriptions_still_sent(monkeypatch):
  push_sender = MagicMock()
  push_sender.send.side_effect = [TransientPushProviderError("503"), None]
  push_subscription_repo = AsyncMock()
  push_subscription_repo.list_for_user.return_value = [_entry(), _entry()]
  broadcaster = JobUpdateBroadcaster(hub=ChannelHub(), push_sender=push_sender, push_subscription_repo=push_subscription_repo, push_enabled=True)
  tasks = _capture_tasks(monkeypatch)

  await broadcaster.publish(user_id="user-1", update=JobUpdate(job_id="job-1", tool_id="logo-machine", status="failed"))
  await asyncio.gather(*tasks)

  assert push_sender.send.call_count == 2
  push_subscription_repo.delete_by_endpoint.assert_not_awaited()


@pytest.mark.anyio
async def test_publish_reaches_sse_subscribers_without_push():
  broadcaster = JobUpdateBroadcaster(hub=ChannelHub(), push_sender=NullPushSender(), push_subscription_repo=None, push_enabled=False)

  async with broadcaster.hub.subscribe("user-1") as queue:
    await broadcaster.publish(user_id="user-1", update=JobUpdate(job_id="job-1", tool_id="logo-machine", status="succeeded", output={"url": "https://cdn/1.png"}))
    received = queue.get_nowait()

  assert received.output == {"url": "https://cdn/1.png"}


def test_build_broadcaster_picks_sender_from_settings():
  disabled = build_broadcaster(make_settings())
  enabled = build_broadcaster(make_settings(push_notifications_enabled=True, push_vapid_public_key="pub", push_vapid_private_key="priv", push_vapid_sub="mailto:ops@example.com"))

  assert isinstance(disabled._push_sender, NullPushSender)
  assert isinstance(enabled._push_sender, WebPushSender)
  assert enabled._push_subscription_repo is None
