"""Utility helpers for msgspec payload decoding and event encoding."""

from __future__ import annotations

from typing import Any

import msgspec
from fastapi import HTTPException, Request, status

from app.notifications.contracts import JobUpdate


class JobUpdateEvent(msgspec.Struct, omit_defaults=True):
  """Wire shape of one job update on the events stream."""

  job_id: str
  tool_id: str
  status: str
  output: Any | None = None
  error: str | None = None
  progress_label: str | None = None


async def decode_json_request(request: Request) -> Any:
  """Decode an HTTP JSON request body without imposing a schema."""
  try:
    payload_bytes = await request.body()
    return msgspec.json.decode(payload_bytes)
  except msgspec.DecodeError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid request payload: {exc}") from exc


def encode_sse_event(update: JobUpdate, *, event_id: int) -> bytes:
  """Encode a job update as one Server-Sent Events frame."""
  data = msgspec.json.encode(JobUpdateEvent(job_id=update.job_id, tool_id=update.tool_id, status=update.status, output=update.output, error=update.error, progress_label=update.progress_label))
  return b"id: " + str(event_id).encode() + b"\nevent: job_update\ndata: " + data + b"\n\n"
