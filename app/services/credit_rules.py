"""Deterministic credit estimates for each generation tool."""

from __future__ import annotations

import math
from collections.abc import Callable
from typing import Any

from app.core.errors import JobValidationError

CREDITS_PER_THUMBNAIL = 2
FACE_SWAP_CREDITS = 3
TITLE_GENERATION_CREDITS = 1
LOGO_GENERATION_CREDITS = 3
LOGO_RECREATION_CREDITS = 4
MUSIC_TIER_CREDITS = {"unlimited": 0, "hd": 8, "pro": 15}
AVATAR_MIN_CREDITS = 10
AVATAR_MAX_SECONDS = 60
AVATAR_WORDS_PER_SECOND = 2.5
IMAGE_QUALITY_CREDITS = {"draft": 3, "standard": 4, "premium": 6}
MAX_THUMBNAIL_OUTPUTS = 4
MAX_STORYBOARD_IMAGES = 12


def _int_field(job_input: dict[str, Any], key: str, *, default: int, minimum: int, maximum: int) -> int:
  raw = job_input.get(key, default)
  if isinstance(raw, bool) or not isinstance(raw, int | float):
    raise JobValidationError(f"{key} must be a number")
  value = int(raw)
  if value < minimum or value > maximum:
    raise JobValidationError(f"{key} must be between {minimum} and {maximum}")
  return value


def _thumbnail_credits(job_input: dict[str, Any]) -> int:
  mode = str(job_input.get("mode") or "generate")
  if mode == "face-swap-only":
    return FACE_SWAP_CREDITS
  if mode == "recreation-only":
    return CREDITS_PER_THUMBNAIL
  if mode == "titles-only":
    return TITLE_GENERATION_CREDITS
  if mode != "generate":
    raise JobValidationError(f"unknown thumbnail mode: {mode}")

  num_outputs = _int_field(job_input, "num_outputs", default=1, minimum=1, maximum=MAX_THUMBNAIL_OUTPUTS)
  credits = num_outputs * CREDITS_PER_THUMBNAIL
  if job_input.get("face_swap"):
    swaps = num_outputs if job_input.get("apply_to_all") else 1
    credits += swaps * FACE_SWAP_CREDITS
  if job_input.get("generate_titles"):
    credits += TITLE_GENERATION_CREDITS
  return credits


def _logo_credits(job_input: dict[str, Any]) -> int:
  return LOGO_RECREATION_CREDITS if job_input.get("intent") == "recreate" else LOGO_GENERATION_CREDITS


def _music_credits(job_input: dict[str, Any]) -> int:
  tier = str(job_input.get("tier") or "hd")
  if tier not in MUSIC_TIER_CREDITS:
    raise JobValidationError(f"unknown music tier: {tier}")
  return MUSIC_TIER_CREDITS[tier]


def _avatar_credits(job_input: dict[str, Any]) -> int:
  audio_seconds = job_input.get("audio_duration_seconds")
  if audio_seconds is not None:
    if isinstance(audio_seconds, bool) or not isinstance(audio_seconds, int | float) or audio_seconds <= 0:
      raise JobValidationError("audio_duration_seconds must be positive")
    duration = float(audio_seconds)
  else:
    script = str(job_input.get("script") or "").strip()
    if not script:
      raise JobValidationError("talking avatar needs a script or audio_duration_seconds")
    duration = math.ceil(len(script.split()) / AVATAR_WORDS_PER_SECOND)
  duration = min(duration, AVATAR_MAX_SECONDS)
  return max(AVATAR_MIN_CREDITS, min(AVATAR_MAX_SECONDS, math.ceil(duration)))


def _upscaler_credits(job_input: dict[str, Any]) -> int:
  duration = job_input.get("duration_seconds")
  if isinstance(duration, bool) or not isinstance(duration, int | float) or duration <= 0:
    raise JobValidationError("duration_seconds must be positive")
  multiplier = 2 if str(job_input.get("resolution") or "").lower() == "4k" else 1
  return max(1, math.ceil(float(duration) * multiplier))


def _storyboard_credits(job_input: dict[str, Any]) -> int:
  quality = str(job_input.get("quality") or "standard")
  if quality not in IMAGE_QUALITY_CREDITS:
    raise JobValidationError(f"unknown image quality: {quality}")
  images = _int_field(job_input, "num_images", default=1, minimum=1, maximum=MAX_STORYBOARD_IMAGES)
  return images * IMAGE_QUALITY_CREDITS[quality]


_RULES: dict[str, Callable[[dict[str, Any]], int]] = {
  "thumbnail-machine": _thumbnail_credits,
  "logo-machine": _logo_credits,
  "music-machine": _music_credits,
  "talking-avatar": _avatar_credits,
  "video-upscaler": _upscaler_credits,
  "storyboard": _storyboard_credits,
}


def known_tools() -> tuple[str, ...]:
  return tuple(sorted(_RULES))


def estimate_credits(tool_id: str, job_input: dict[str, Any]) -> int:
  """Return the credit cost of a submission; raises JobValidationError for unknown tools."""
  rule = _RULES.get(tool_id)
  if rule is None:
    raise JobValidationError(f"unknown tool: {tool_id}")
  if not isinstance(job_input, dict):
    raise JobValidationError("job input must be an object")
  return rule(job_input)
