from app.config import Settings
from app.storage.generation_repo import GenerationStore
from app.storage.postgres_generation_repo import PostgresGenerationStore


def _get_generation_store(settings: Settings) -> GenerationStore:
  """Return the active generation store."""

  if not settings.pg_dsn:
    raise ValueError("RELAY_PG_DSN must be set to enable Postgres persistence.")

  return PostgresGenerationStore()
