"""Sweep stale or flagged generation jobs against their providers.

Only provider-reported terminal statuses are applied; jobs still running stay flagged.
Intended for cron or a scheduler when the /internal/reconcile route is not used.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Allow running as `python scripts/reconcile_jobs.py` from the repo root.
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.config import get_settings  # noqa: E402
from app.core.database import dispose_engine  # noqa: E402
from app.core.logging import setup_logging  # noqa: E402
from app.notifications.factory import build_broadcaster  # noqa: E402
from app.providers.registry import build_provider_registry  # noqa: E402
from app.services.reconciliation import reconcile_stale_jobs  # noqa: E402
from app.storage.factory import _get_generation_store  # noqa: E402

logger = logging.getLogger("scripts.reconcile_jobs")


async def _run(*, older_than_seconds: int | None, limit: int | None) -> dict[str, object]:
  settings = get_settings()
  store = _get_generation_store(settings)
  providers = build_provider_registry(settings)
  broadcaster = build_broadcaster(settings)
  try:
    summary = await reconcile_stale_jobs(store, providers, broadcaster, settings, older_than_seconds=older_than_seconds, limit=limit)
  finally:
    await dispose_engine()
  return summary.as_dict()


def main() -> None:
  """Parse CLI arguments and run one reconciliation sweep."""
  parser = argparse.ArgumentParser(description="Reconcile stale or flagged generation jobs with their providers.")
  parser.add_argument("--older-than", type=int, default=None, help="Age in seconds after which an unfinished job is considered stale (default: RELAY_STALE_JOB_SECONDS).")
  parser.add_argument("--limit", type=int, default=None, help="Maximum jobs to examine (default: RELAY_RECONCILE_BATCH_SIZE).")
  args = parser.parse_args()

  settings = get_settings()
  setup_logging(settings)
  summary = asyncio.run(_run(older_than_seconds=args.older_than, limit=args.limit))
  print(json.dumps(summary, indent=2))
  if summary["errors"]:
    logger.warning("Reconciliation finished with %s lookup errors.", summary["errors"])
    raise SystemExit(1)


if __name__ == "__main__":
  main()
