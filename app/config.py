"""Application configuration loaded from environment variables."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from app.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

# Long video tools routinely outlive the default poll window.
DEFAULT_TOOL_POLL_MAX_ATTEMPTS = {"video-upscaler": 300, "talking-avatar": 300}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the generation relay service."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  public_base_url: str | None
  webhook_secret: str | None
  task_secret: str | None
  replicate_api_token: str | None
  replicate_base_url: str
  replicate_models: dict[str, str] = field(hash=False)
  fal_api_key: str | None
  fal_queue_base_url: str
  fal_apps: dict[str, str] = field(hash=False)
  provider_timeout_seconds: float
  webhook_grace_seconds: float
  poll_interval_seconds: float
  poll_max_attempts: int
  tool_poll_max_attempts: dict[str, int] = field(hash=False)
  restore_completed_window_seconds: int
  refund_on_failure: bool
  stale_job_seconds: int
  reconcile_batch_size: int
  event_queue_size: int
  push_notifications_enabled: bool
  push_vapid_public_key: str | None
  push_vapid_private_key: str | None
  push_vapid_sub: str | None
  firebase_project_id: str | None
  firebase_service_account_json_path: str | None

  def max_poll_attempts_for(self, tool_id: str) -> int:
    """Return the poll attempt ceiling for a tool, honoring per-tool overrides."""
    return int(self.tool_poll_max_attempts.get(tool_id, self.poll_max_attempts))


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("RELAY_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("RELAY_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("RELAY_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_json_dict(raw: str | None, default: dict[str, Any]) -> dict[str, Any]:
  if not raw:
    return default
  try:
    parsed = json.loads(raw)
  except json.JSONDecodeError:
    return default
  if not isinstance(parsed, dict):
    return default
  return parsed


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _parse_attempt_overrides(raw: str | None) -> dict[str, int]:
  """Parse per-tool poll attempt overrides such as {"video-upscaler": 300}."""
  overrides = _parse_json_dict(raw, dict(DEFAULT_TOOL_POLL_MAX_ATTEMPTS))
  parsed: dict[str, int] = {}
  for tool_id, value in overrides.items():
    attempts = int(value)
    if attempts <= 0:
      raise ValueError(f"RELAY_TOOL_POLL_MAX_ATTEMPTS[{tool_id}] must be a positive integer.")
    parsed[str(tool_id)] = attempts
  return parsed


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("RELAY_ENV", "development").lower()

  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("RELAY_DEBUG"))

  log_max_bytes = int(os.getenv("RELAY_LOG_MAX_BYTES", "5242880"))  # 5MB default
  if log_max_bytes <= 0:
    raise ValueError("RELAY_LOG_MAX_BYTES must be a positive integer.")

  log_backup_count = int(os.getenv("RELAY_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("RELAY_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # Allow opt-in logging of 4xx HTTPExceptions for diagnostics.
  log_http_4xx = _parse_bool(os.getenv("RELAY_LOG_HTTP_4XX"))

  provider_timeout_seconds = float(os.getenv("RELAY_PROVIDER_TIMEOUT_SECONDS", "30"))
  if provider_timeout_seconds <= 0:
    raise ValueError("RELAY_PROVIDER_TIMEOUT_SECONDS must be positive.")

  webhook_grace_seconds = float(os.getenv("RELAY_WEBHOOK_GRACE_SECONDS", "5"))
  if webhook_grace_seconds < 0:
    raise ValueError("RELAY_WEBHOOK_GRACE_SECONDS must be zero or positive.")

  poll_interval_seconds = float(os.getenv("RELAY_POLL_INTERVAL_SECONDS", "2"))
  if poll_interval_seconds <= 0:
    raise ValueError("RELAY_POLL_INTERVAL_SECONDS must be positive.")

  poll_max_attempts = int(os.getenv("RELAY_POLL_MAX_ATTEMPTS", "150"))
  if poll_max_attempts <= 0:
    raise ValueError("RELAY_POLL_MAX_ATTEMPTS must be a positive integer.")

  restore_completed_window_seconds = int(os.getenv("RELAY_RESTORE_COMPLETED_WINDOW_SECONDS", "300"))
  if restore_completed_window_seconds <= 0:
    raise ValueError("RELAY_RESTORE_COMPLETED_WINDOW_SECONDS must be a positive integer.")

  stale_job_seconds = int(os.getenv("RELAY_STALE_JOB_SECONDS", "900"))
  if stale_job_seconds <= 0:
    raise ValueError("RELAY_STALE_JOB_SECONDS must be a positive integer.")

  reconcile_batch_size = int(os.getenv("RELAY_RECONCILE_BATCH_SIZE", "50"))
  if reconcile_batch_size <= 0:
    raise ValueError("RELAY_RECONCILE_BATCH_SIZE must be a positive integer.")

  event_queue_size = int(os.getenv("RELAY_EVENT_QUEUE_SIZE", "100"))
  if event_queue_size <= 0:
    raise ValueError("RELAY_EVENT_QUEUE_SIZE must be a positive integer.")

  push_notifications_enabled = _parse_bool(os.getenv("RELAY_PUSH_NOTIFICATIONS_ENABLED"))
  push_vapid_public_key = _optional_str(os.getenv("RELAY_PUSH_VAPID_PUBLIC_KEY"))
  push_vapid_private_key = _optional_str(os.getenv("RELAY_PUSH_VAPID_PRIVATE_KEY"))
  push_vapid_sub = _optional_str(os.getenv("RELAY_PUSH_VAPID_SUB"))

  # Validate push configuration only when push notifications are enabled.
  if push_notifications_enabled:
    if not push_vapid_public_key:
      raise ValueError("RELAY_PUSH_VAPID_PUBLIC_KEY must be set when push notifications are enabled.")

    if not push_vapid_private_key:
      raise ValueError("RELAY_PUSH_VAPID_PRIVATE_KEY must be set when push notifications are enabled.")

    if not push_vapid_sub:
      raise ValueError("RELAY_PUSH_VAPID_SUB must be set when push notifications are enabled.")

    if not (push_vapid_sub.startswith("mailto:") or push_vapid_sub.startswith("https://")):
      raise ValueError("RELAY_PUSH_VAPID_SUB must start with 'mailto:' or 'https://'.")

  fal_apps = {str(key): str(value) for key, value in _parse_json_dict(os.getenv("RELAY_FAL_APPS"), {}).items()}

  return Settings(
    environment=environment,
    allowed_origins=_parse_origins(os.getenv("RELAY_ALLOWED_ORIGINS")),
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=log_http_4xx,
    pg_dsn=os.getenv("RELAY_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=int(os.getenv("RELAY_PG_CONNECT_TIMEOUT", "5")),
    public_base_url=_optional_str(os.getenv("RELAY_PUBLIC_BASE_URL")),
    webhook_secret=_optional_str(os.getenv("RELAY_WEBHOOK_SECRET")),
    task_secret=_optional_str(os.getenv("RELAY_TASK_SECRET")),
    replicate_api_token=_optional_str(os.getenv("REPLICATE_API_TOKEN")),
    replicate_base_url=(os.getenv("RELAY_REPLICATE_BASE_URL") or "https://api.replicate.com/v1").strip(),
    replicate_models={str(key): str(value) for key, value in _parse_json_dict(os.getenv("RELAY_REPLICATE_MODELS"), {}).items()},
    fal_api_key=_optional_str(os.getenv("FAL_API_KEY")),
    fal_queue_base_url=(os.getenv("RELAY_FAL_QUEUE_BASE_URL") or "https://queue.fal.run").strip(),
    fal_apps=fal_apps,
    provider_timeout_seconds=provider_timeout_seconds,
    webhook_grace_seconds=webhook_grace_seconds,
    poll_interval_seconds=poll_interval_seconds,
    poll_max_attempts=poll_max_attempts,
    tool_poll_max_attempts=_parse_attempt_overrides(os.getenv("RELAY_TOOL_POLL_MAX_ATTEMPTS")),
    restore_completed_window_seconds=restore_completed_window_seconds,
    refund_on_failure=_parse_bool(os.getenv("RELAY_REFUND_ON_FAILURE"), default=True),
    stale_job_seconds=stale_job_seconds,
    reconcile_batch_size=reconcile_batch_size,
    event_queue_size=event_queue_size,
    push_notifications_enabled=push_notifications_enabled,
    push_vapid_public_key=push_vapid_public_key,
    push_vapid_private_key=push_vapid_private_key,
    push_vapid_sub=push_vapid_sub,
    firebase_project_id=os.getenv("FIREBASE_PROJECT_ID"),
    firebase_service_account_json_path=os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON_PATH"),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  # Keep database configuration isolated so migrations and offline scripts don't require unrelated env vars.
  debug = _parse_bool(os.getenv("RELAY_DEBUG"))
  pg_connect_timeout = int(os.getenv("RELAY_PG_CONNECT_TIMEOUT", "5"))
  if pg_connect_timeout <= 0:
    raise ValueError("RELAY_PG_CONNECT_TIMEOUT must be a positive integer.")

  pg_dsn = os.getenv("RELAY_PG_DSN") or os.getenv("DATABASE_URL")

  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
