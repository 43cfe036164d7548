"""Retry helper for short database transactions that can lose to lock conflicts."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_SQLSTATES = {"40001": "serialization_conflict", "40P01": "deadlock"}
_CONNECTIVITY_HINTS = ("connection", "timeout", "reset", "network", "broken pipe", "lost connection")


@dataclass(frozen=True)
class DBFailureClassification:
  retryable: bool
  category: str
  sqlstate: str | None


def _extract_sqlstate(exc: Exception) -> str | None:
  """Read the Postgres SQLSTATE from a wrapped driver error."""
  if not isinstance(exc, DBAPIError):
    return None
  orig = getattr(exc, "orig", None)
  for attr in ("pgcode", "sqlstate"):
    value = getattr(orig, attr, None)
    if value:
      return str(value)
  return None


def classify_db_failure(exc: Exception) -> DBFailureClassification:
  """Classify a failure as transient (serialization, deadlock, dropped connection) or permanent."""
  sqlstate = _extract_sqlstate(exc)
  if sqlstate in _RETRYABLE_SQLSTATES:
    return DBFailureClassification(retryable=True, category=_RETRYABLE_SQLSTATES[sqlstate], sqlstate=sqlstate)

  if isinstance(exc, IntegrityError) or (sqlstate and sqlstate.startswith("23")):
    return DBFailureClassification(retryable=False, category="integrity_error", sqlstate=sqlstate)

  if isinstance(exc, OperationalError) and any(hint in str(exc).lower() for hint in _CONNECTIVITY_HINTS):
    return DBFailureClassification(retryable=True, category="connectivity_error", sqlstate=sqlstate)

  return DBFailureClassification(retryable=False, category=type(exc).__name__, sqlstate=sqlstate)


async def execute_with_retry(*, operation_name: str, func: Callable[[], Awaitable[T]], max_attempts: int = 2, initial_backoff_ms: int = 100, max_backoff_ms: int = 2000) -> T:
  """Run an idempotent async DB operation, retrying only transient failures with jittered backoff."""
  attempt = 0
  while True:
    attempt += 1
    try:
      return await func()
    except (DBAPIError, OperationalError) as exc:
      classification = classify_db_failure(exc)
      logger.warning(
        "DB operation failed operation=%s attempt=%d/%d category=%s sqlstate=%s retryable=%s",
        operation_name,
        attempt,
        max_attempts,
        classification.category,
        classification.sqlstate or "none",
        classification.retryable,
      )
      if not classification.retryable or attempt >= max_attempts:
        raise

      backoff_ms = min(initial_backoff_ms * (2 ** (attempt - 1)), max_backoff_ms)
      backoff_ms += random.uniform(-0.25, 0.25) * backoff_ms
      await asyncio.sleep(backoff_ms / 1000.0)
