"""Per-job client controller racing push updates against a deferred poll loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal

from app.client.transport import CoordinatorTransport
from app.config import Settings
from app.core.errors import JobNotFoundError
from app.jobs.models import is_terminal
from app.notifications.contracts import JobUpdate
from app.services.polling import JobObservation

logger = logging.getLogger(__name__)

SettleOutcome = Literal["succeeded", "failed", "canceled", "timeout", "not_found"]
SettleSource = Literal["poll", "push", "restore"]

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class PollPolicy:
  """Timing of the poll fallback for one job."""

  delay_seconds: float = 5.0
  interval_seconds: float = 2.0
  max_attempts: int = 150

  @classmethod
  def from_settings(cls, settings: Settings, tool_id: str) -> PollPolicy:
    return cls(delay_seconds=settings.webhook_grace_seconds, interval_seconds=settings.poll_interval_seconds, max_attempts=settings.max_poll_attempts_for(tool_id))


@dataclass(frozen=True)
class JobSettlement:
  """The single outcome a controller reports for its job."""

  job_id: str
  outcome: SettleOutcome
  source: SettleSource
  output: Any | None = None
  error: str | None = None
  attempts: int = 0

  @property
  def still_processing(self) -> bool:
    return self.outcome == "timeout"


class JobController:
  """Own one job's poll task, settle flag and cancellation.

  Exactly one settlement is reported, whichever of push, poll or restore
  observes the terminal state first. After cancel() nothing is reported or written.
  """

  def __init__(
    self,
    job_id: str,
    *,
    transport: CoordinatorTransport,
    policy: PollPolicy | None = None,
    on_settled: Callable[[JobSettlement], None] | None = None,
    on_progress: Callable[[JobObservation], None] | None = None,
    sleep: Sleep = asyncio.sleep,
  ) -> None:
    self.job_id = job_id
    self._transport = transport
    self._policy = policy or PollPolicy()
    self._on_settled = on_settled
    self._on_progress = on_progress
    self._sleep = sleep
    self._task: asyncio.Task[None] | None = None
    self._cancelled = False
    self._settlement: JobSettlement | None = None
    self._done = asyncio.Event()
    self.attempts = 0

  @property
  def settled(self) -> bool:
    return self._settlement is not None

  @property
  def cancelled(self) -> bool:
    return self._cancelled

  @property
  def settlement(self) -> JobSettlement | None:
    return self._settlement

  @property
  def is_polling(self) -> bool:
    # A cancelled task only finishes on a later loop turn.
    return not self._stopped() and self._task is not None and not self._task.done()

  def _stopped(self) -> bool:
    return self._cancelled or self._settlement is not None

  def start_polling(self, delay: float | None = None) -> Callable[[], None]:
    """Arm the poll loop after delay seconds and return its cancel function."""
    if self._stopped() or self.is_polling:
      return self.cancel
    wait = self._policy.delay_seconds if delay is None else max(delay, 0.0)
    self._task = asyncio.create_task(self._run(wait), name=f"poll-{self.job_id}")
    self._task.add_done_callback(self._log_task_error)
    return self.cancel

  def cancel(self) -> None:
    """Stop polling and suppress any further settlement; safe to call repeatedly."""
    if self._cancelled:
      return
    self._cancelled = True
    self._stop_task()
    self._done.set()

  def deliver_push(self, update: JobUpdate) -> bool:
    """Apply a pushed update; returns True when it settled the job."""
    if update.job_id != self.job_id or self._stopped():
      return False
    if not is_terminal(update.status):
      self._notify_progress(JobObservation(job_id=update.job_id, status=update.status, output=update.output, error=update.error, progress_label=update.progress_label))
      return False
    return self._settle(JobSettlement(job_id=self.job_id, outcome=update.status, source="push", output=update.output, error=update.error, attempts=self.attempts))  # type: ignore[arg-type]

  def settle_from_observation(self, observation: JobObservation, *, source: SettleSource) -> bool:
    if not observation.is_terminal:
      return False
    return self._settle(JobSettlement(job_id=self.job_id, outcome=observation.status, source=source, output=observation.output, error=observation.error, attempts=self.attempts))  # type: ignore[arg-type]

  async def wait(self) -> JobSettlement | None:
    """Wait until the job settles or the controller is cancelled."""
    await self._done.wait()
    return self._settlement

  async def _run(self, delay: float) -> None:
    if delay > 0:
      await self._sleep(delay)

    max_attempts = self._policy.max_attempts
    while self.attempts < max_attempts:
      if self._stopped():
        return
      self.attempts += 1
      try:
        observation = await self._transport.poll_once(self.job_id)
      except JobNotFoundError:
        self._settle(JobSettlement(job_id=self.job_id, outcome="not_found", source="poll", attempts=self.attempts))
        return
      except asyncio.CancelledError:
        raise
      except Exception as exc:  # noqa: BLE001
        # Transport and provider failures only cost an attempt.
        logger.warning("Poll attempt failed job_id=%s attempt=%s error=%s", self.job_id, self.attempts, exc)
        observation = None

      if self._stopped():
        return
      if observation is not None:
        if self.settle_from_observation(observation, source="poll"):
          return
        self._notify_progress(observation)

      if self.attempts < max_attempts:
        await self._sleep(self._policy.interval_seconds)

    if self._stopped():
      return
    logger.warning("Polling exhausted job_id=%s attempts=%s", self.job_id, self.attempts)
    try:
      await self._transport.flag_for_reconciliation(self.job_id, reason="poll_timeout")
    except asyncio.CancelledError:
      raise
    except Exception as exc:  # noqa: BLE001
      logger.error("Failed to flag timed out job job_id=%s error=%s", self.job_id, exc)
    self._settle(JobSettlement(job_id=self.job_id, outcome="timeout", source="poll", attempts=self.attempts))

  def _settle(self, settlement: JobSettlement) -> bool:
    if self._stopped():
      return False
    self._settlement = settlement
    self._stop_task()
    self._done.set()
    logger.info("Job settled job_id=%s outcome=%s source=%s attempts=%s", self.job_id, settlement.outcome, settlement.source, settlement.attempts)
    if self._on_settled is not None:
      try:
        self._on_settled(settlement)
      except Exception as exc:  # noqa: BLE001
        logger.error("Settlement callback failed job_id=%s error=%s", self.job_id, exc, exc_info=True)
    return True

  def _notify_progress(self, observation: JobObservation) -> None:
    if self._on_progress is None:
      return
    try:
      self._on_progress(observation)
    except Exception as exc:  # noqa: BLE001
      logger.error("Progress callback failed job_id=%s error=%s", self.job_id, exc, exc_info=True)

  def _stop_task(self) -> None:
    task = self._task
    if task is None or task.done():
      return
    try:
      current = asyncio.current_task()
    except RuntimeError:
      current = None
    # The loop settles itself from inside the task; it returns on its own.
    if task is current:
      return
    task.cancel()

  @staticmethod
  def _log_task_error(task: asyncio.Task[None]) -> None:
    if task.cancelled():
      return
    exc = task.exception()
    if exc is not None:
      logger.error("Poll task failed: %s", exc, exc_info=exc)
