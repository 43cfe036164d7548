import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from app.core.database import dispose_engine, get_db_engine
from app.core.firebase import initialize_firebase
from app.core.logging import _initialize_logging
from app.providers.registry import get_provider_registry
from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Ensure logging is correctly set up after uvicorn starts."""
  from app.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("app.core.lifespan")

  try:
    _initialize_logging(settings)
    logger.info("Startup complete - logging verified.")

    # Initialize Firebase before handling requests.
    initialize_firebase(settings)
    logger.info("Generation providers configured: %s", ", ".join(get_provider_registry().names()) or "<none>")
    logger.info("Database DSN=%s", _redact_dsn(settings.pg_dsn))
    await _log_db_state(logger=logger)

  except Exception:
    # Log initialization failures but allow the app to continue starting.
    logger.warning("Initial startup checks failed; continuing.", exc_info=True)

  yield

  await dispose_engine()
  logger.info("Shutdown complete - database pool disposed.")


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  # Guard against malformed DSNs without a scheme.
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"


async def _log_db_state(*, logger: logging.Logger) -> None:
  """Log whether the coordinator tables exist so missing migrations surface at startup."""
  engine = get_db_engine()
  if engine is None:
    logger.warning("Database engine unavailable; job persistence is disabled.")
    return

  table_query = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = current_schema()
      AND table_name IN ('generation_jobs', 'webhook_deliveries', 'user_credits', 'credit_transactions')
    """
  try:
    async with engine.connect() as connection:
      result = await connection.execute(text(table_query))
      present = sorted(str(row[0]) for row in result)
  except SQLAlchemyError as exc:
    logger.warning("Could not inspect database state: %s", exc)
    return

  missing = {"generation_jobs", "webhook_deliveries", "user_credits", "credit_transactions"} - set(present)
  if missing:
    logger.error("Coordinator tables missing: %s. Run `alembic upgrade head`.", ", ".join(sorted(missing)))
  else:
    logger.info("Coordinator tables present: %s", ", ".join(present))
