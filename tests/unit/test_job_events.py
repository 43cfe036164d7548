from __future__ import annotations

import asyncio
import json

import pytest

from app.api.msgspec_utils import encode_sse_event
from app.api.routes.events import stream_job_updates
from app.notifications.channels import ChannelHub
from app.notifications.contracts import JobUpdate


class _Request:
  """Minimal stand-in for a Starlette request that disconnects after a few checks."""

  def __init__(self, checks_before_disconnect: int) -> None:
    self._remaining = checks_before_disconnect

  async def is_disconnected(self) -> bool:
    self._remaining -= 1
    return self._remaining < 0


def test_encode_sse_event_omits_empty_fields():
  frame = encode_sse_event(JobUpdate(job_id="job-1", tool_id="logo-machine", status="succeeded", output={"url": "https://cdn/1.png"}), event_id=7)

  header, data = frame.decode().rstrip("\n").split("data: ")
  assert header == "id: 7\nevent: job_update\n"
  assert json.loads(data) == {"job_id": "job-1", "tool_id": "logo-machine", "status": "succeeded", "output": {"url": "https://cdn/1.png"}}
  assert frame.endswith(b"\n\n")


@pytest.mark.anyio
async def test_stream_yields_published_updates_and_unsubscribes():
  hub = ChannelHub()
  stream = stream_job_updates(_Request(checks_before_disconnect=1), hub, "user-1", heartbeat_seconds=1.0)

  assert await stream.__anext__() == b": connected\n\n"
  assert hub.subscriber_count("user-1") == 1

  next_frame = asyncio.ensure_future(stream.__anext__())
  await asyncio.sleep(0)
  hub.publish("user-1", JobUpdate(job_id="job-1", tool_id="logo-machine", status="processing"))
  frame = await next_frame

  assert b"event: job_update" in frame
  with pytest.raises(StopAsyncIteration):
    await stream.__anext__()
  assert hub.subscriber_count("user-1") == 0


@pytest.mark.anyio
async def test_stream_sends_keep_alive_when_idle():
  hub = ChannelHub()
  stream = stream_job_updates(_Request(checks_before_disconnect=1), hub, "user-1", heartbeat_seconds=0.01)

  await stream.__anext__()
  assert await stream.__anext__() == b": keep-alive\n\n"
  await stream.aclose()
