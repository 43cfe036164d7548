"""Server-Sent Events stream of a user's job updates."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Request
from starlette.responses import StreamingResponse

from app.api.msgspec_utils import encode_sse_event
from app.core.security import CurrentUser, get_current_user
from app.notifications.channels import ChannelHub
from app.notifications.factory import get_broadcaster
from app.notifications.service import JobUpdateBroadcaster

logger = logging.getLogger(__name__)

router = APIRouter()

HEARTBEAT_SECONDS = 15.0


async def stream_job_updates(request: Request, hub: ChannelHub, user_id: str, *, heartbeat_seconds: float = HEARTBEAT_SECONDS) -> AsyncIterator[bytes]:
  """Yield SSE frames until the client disconnects."""
  async with hub.subscribe(user_id) as queue:
    yield b": connected\n\n"
    event_id = 0
    while not await request.is_disconnected():
      try:
        update = await asyncio.wait_for(queue.get(), timeout=heartbeat_seconds)
      except TimeoutError:
        # Comment frames keep proxies from closing an idle stream.
        yield b": keep-alive\n\n"
        continue
      event_id += 1
      yield encode_sse_event(update, event_id=event_id)
  logger.debug("Event stream closed user_id=%s", user_id)


@router.get("/events")
async def job_events(request: Request, current_user: CurrentUser = Depends(get_current_user), broadcaster: JobUpdateBroadcaster = Depends(get_broadcaster)) -> StreamingResponse:  # noqa: B008
  """Stream `{job_id, status, output, error}` updates for the caller's jobs."""
  headers = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
  return StreamingResponse(stream_job_updates(request, broadcaster.hub, current_user.uid), media_type="text/event-stream", headers=headers)
