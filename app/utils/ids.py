"""Identifier utilities."""

from __future__ import annotations

import uuid


def generate_job_id() -> str:
  """Return a new coordinator job identifier."""
  return str(uuid.uuid4())


def generate_event_id(*parts: str) -> str:
  """Derive a stable event identifier from provider fields when none is supplied."""
  return str(uuid.uuid5(uuid.NAMESPACE_URL, ":".join(parts)))
