from __future__ import annotations

import json
import sys

import pytest

from scripts import reconcile_jobs


def _patch_run(monkeypatch, summary: dict, seen: dict) -> None:
  async def _fake_run(*, older_than_seconds, limit):
    seen.update(older_than_seconds=older_than_seconds, limit=limit)
    return summary

  monkeypatch.setattr(reconcile_jobs, "_run", _fake_run)
  monkeypatch.setattr(reconcile_jobs, "setup_logging", lambda settings: None)


def test_main_prints_summary_and_passes_arguments(monkeypatch, capsys):
  seen: dict = {}
  _patch_run(monkeypatch, {"examined": 2, "finalized": 1, "still_active": 1, "errors": 0, "finalized_job_ids": ["job-1"]}, seen)
  monkeypatch.setattr(sys, "argv", ["relay-reconcile", "--older-than", "600", "--limit", "5"])

  reconcile_jobs.main()

  assert seen == {"older_than_seconds": 600, "limit": 5}
  assert json.loads(capsys.readouterr().out)["finalized_job_ids"] == ["job-1"]


def test_main_exits_non_zero_on_lookup_errors(monkeypatch):
  _patch_run(monkeypatch, {"examined": 1, "finalized": 0, "still_active": 0, "errors": 1, "finalized_job_ids": []}, {})
  monkeypatch.setattr(sys, "argv", ["relay-reconcile"])

  with pytest.raises(SystemExit) as excinfo:
    reconcile_jobs.main()
  assert excinfo.value.code == 1
