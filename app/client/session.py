"""Client session holding one controller per job."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from app.client.poller import JobController, JobSettlement, PollPolicy, Sleep
from app.client.restorer import RestoredUiState, StateRestorer
from app.client.transport import CoordinatorTransport
from app.core.errors import CoordinatorError
from app.notifications.contracts import JobUpdate

logger = logging.getLogger(__name__)


class GenerationSession:
  """Submit jobs, route push updates to their controllers and restore after reloads.

  A result that settles while the session is live counts as shown, so it is
  acknowledged and a later restore will not surface it again. Closing the
  session cancels every controller it created.
  """

  def __init__(
    self,
    transport: CoordinatorTransport,
    *,
    policy_for: Callable[[str], PollPolicy] | None = None,
    on_settled: Callable[[JobSettlement], None] | None = None,
    sleep: Sleep | None = None,
  ) -> None:
    self._transport = transport
    self._policy_for = policy_for or (lambda _tool_id: PollPolicy())
    self._on_settled = on_settled
    self._sleep = sleep
    self._controllers: dict[str, JobController] = {}
    self._acknowledgements: set[asyncio.Task[None]] = set()
    self._submitting = 0
    self.restorer = StateRestorer(transport, track=self.track, is_submitting=lambda: self.is_submitting)

  @property
  def is_submitting(self) -> bool:
    return self._submitting > 0

  def controller(self, job_id: str) -> JobController | None:
    return self._controllers.get(job_id)

  def track(self, job_id: str, tool_id: str) -> JobController:
    """Return the live controller for a job, creating one when none is active."""
    existing = self._controllers.get(job_id)
    if existing is not None and not existing.cancelled and not existing.settled:
      return existing
    controller: JobController

    def _on_settled(settlement: JobSettlement) -> None:
      self._settled(controller, settlement)

    kwargs: dict[str, Any] = {"transport": self._transport, "policy": self._policy_for(tool_id), "on_settled": _on_settled}
    if self._sleep is not None:
      kwargs["sleep"] = self._sleep
    controller = JobController(job_id, **kwargs)
    self._controllers[job_id] = controller
    return controller

  async def submit(self, *, tool_id: str, provider: str, job_input: dict[str, Any]) -> JobController:
    """Submit a job and arm its deferred poll loop."""
    self._submitting += 1
    try:
      result = await self._transport.submit(tool_id=tool_id, provider=provider, job_input=job_input)
    finally:
      self._submitting -= 1
    controller = self.track(result.job_id, tool_id)
    controller.start_polling()
    logger.info("Submitted job_id=%s tool_id=%s estimated_credits=%s", result.job_id, tool_id, result.estimated_credits)
    return controller

  def deliver_push(self, update: JobUpdate) -> bool:
    controller = self._controllers.get(update.job_id)
    if controller is None:
      return False
    return controller.deliver_push(update)

  async def restore(self, tool_id: str) -> RestoredUiState | None:
    return await self.restorer.restore(tool_id)

  def close(self) -> None:
    for controller in self._controllers.values():
      controller.cancel()
    self._controllers.clear()

  async def aclose(self) -> None:
    """Close the session and wait for pending result acknowledgements."""
    self.close()
    if self._acknowledgements:
      await asyncio.gather(*self._acknowledgements, return_exceptions=True)

  def _settled(self, controller: JobController, settlement: JobSettlement) -> None:
    if self._controllers.get(settlement.job_id) is controller:
      del self._controllers[settlement.job_id]
    if settlement.outcome == "succeeded":
      task = asyncio.create_task(self._acknowledge(settlement.job_id), name=f"seen-{settlement.job_id}")
      self._acknowledgements.add(task)
      task.add_done_callback(self._acknowledged)
    if self._on_settled is not None:
      self._on_settled(settlement)

  async def _acknowledge(self, job_id: str) -> None:
    try:
      await self._transport.mark_seen(job_id)
    except CoordinatorError as exc:
      logger.warning("Failed to acknowledge result job_id=%s error=%s", job_id, exc)

  def _acknowledged(self, task: asyncio.Task[None]) -> None:
    self._acknowledgements.discard(task)
    if task.cancelled():
      return
    exc = task.exception()
    if exc is not None:
      logger.error("Result acknowledgement failed: %s", exc, exc_info=exc)
