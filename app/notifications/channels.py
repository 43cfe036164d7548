"""In-process per-user channels feeding Server-Sent Events streams."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from app.notifications.contracts import JobUpdate

logger = logging.getLogger(__name__)


def channel_name(user_id: str) -> str:
  return f"user_{user_id}_updates"


class ChannelHub:
  """Fan out job updates to every subscriber of a user's channel.

  Each subscriber owns a bounded queue. A slow consumer loses its oldest
  updates instead of blocking publishers.
  """

  def __init__(self, *, queue_size: int = 100) -> None:
    self._queue_size = queue_size
    self._subscribers: dict[str, set[asyncio.Queue[JobUpdate]]] = defaultdict(set)

  def subscriber_count(self, user_id: str) -> int:
    return len(self._subscribers.get(channel_name(user_id), ()))

  @asynccontextmanager
  async def subscribe(self, user_id: str) -> AsyncIterator[asyncio.Queue[JobUpdate]]:
    name = channel_name(user_id)
    queue: asyncio.Queue[JobUpdate] = asyncio.Queue(maxsize=self._queue_size)
    self._subscribers[name].add(queue)
    try:
      yield queue
    finally:
      subscribers = self._subscribers.get(name)
      if subscribers is not None:
        subscribers.discard(queue)
        if not subscribers:
          self._subscribers.pop(name, None)

  def publish(self, user_id: str, update: JobUpdate) -> int:
    """Deliver to current subscribers and return how many received it."""
    delivered = 0
    for queue in list(self._subscribers.get(channel_name(user_id), ())):
      if queue.full():
        queue.get_nowait()
        logger.debug("Dropped oldest update for slow subscriber channel=%s", channel_name(user_id))
      queue.put_nowait(update)
      delivered += 1
    return delivered
