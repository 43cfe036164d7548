"""Resume in-flight work after a page reload or client restart."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

from app.client.poller import JobController
from app.client.transport import CoordinatorTransport
from app.core.errors import JobNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RestoredUiState:
  """What a freshly mounted tool should show."""

  kind: Literal["resumed", "completed"]
  job_id: str
  controller: JobController | None = None
  output: Any | None = None


class StateRestorer:
  """Restore a tool's state at most once per session.

  An active job gets a new controller that polls with no delay. Otherwise the
  newest unseen result inside the server's window is returned and acknowledged.
  """

  def __init__(self, transport: CoordinatorTransport, *, track: Callable[[str, str], JobController], is_submitting: Callable[[], bool]) -> None:
    self._transport = transport
    self._track = track
    self._is_submitting = is_submitting
    self._attempted: set[str] = set()

  def attempted(self, tool_id: str) -> bool:
    return tool_id in self._attempted

  async def restore(self, tool_id: str) -> RestoredUiState | None:
    # A submit in flight owns the tool; restoring now would arm a second poller.
    if tool_id in self._attempted or self._is_submitting():
      return None
    self._attempted.add(tool_id)

    snapshot = await self._transport.restore(tool_id)
    for active in snapshot.active:
      try:
        current = await self._transport.get_job(active.job_id)
      except JobNotFoundError:
        logger.info("Restored job vanished job_id=%s", active.job_id)
        continue

      if current.is_terminal:
        if current.status != "succeeded":
          continue
        await self._acknowledge(current.job_id)
        return RestoredUiState(kind="completed", job_id=current.job_id, output=current.output)

      controller = self._track(current.job_id, tool_id)
      controller.start_polling(delay=0)
      logger.info("Resumed polling job_id=%s tool_id=%s", current.job_id, tool_id)
      return RestoredUiState(kind="resumed", job_id=current.job_id, controller=controller)

    if snapshot.recently_completed:
      latest = snapshot.recently_completed[0]
      await self._acknowledge(latest.job_id)
      return RestoredUiState(kind="completed", job_id=latest.job_id, output=latest.output)

    return None

  async def _acknowledge(self, job_id: str) -> None:
    try:
      await self._transport.mark_seen(job_id)
    except JobNotFoundError:
      logger.info("Acknowledged job vanished job_id=%s", job_id)
