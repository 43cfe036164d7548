"""Shared FastAPI dependencies for the coordinator routes."""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, status

from app.config import Settings, get_settings
from app.storage.factory import _get_generation_store
from app.storage.generation_repo import GenerationStore

logger = logging.getLogger(__name__)


def get_generation_store(settings: Settings = Depends(get_settings)) -> GenerationStore:  # noqa: B008
  """Dependency returning the configured job store."""
  try:
    return _get_generation_store(settings)
  except (ValueError, RuntimeError) as exc:
    logger.error("Generation store unavailable: %s", exc)
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Job storage is not configured") from exc
