import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("entrypoint")


def main() -> None:
  """Launch the relay API; migrations run as a separate deploy step."""
  port = os.getenv("RELAY_PORT", "8080")
  logger.info("Starting generation relay on port %s (run alembic upgrade head in deploy pipeline)...", port)
  # Replace the current process so uvicorn receives SIGTERM directly.
  os.execvp("uvicorn", ["uvicorn", "app.main:app", "--host", "0.0.0.0", "--port", port, "--no-server-header", "--proxy-headers"])


if __name__ == "__main__":
  main()
