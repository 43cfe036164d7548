from __future__ import annotations

from dataclasses import dataclass

import pytest

from app.core.errors import InsufficientCreditsError
from app.schema.credits import CreditAction
from app.services.credit_ledger import CreditSnapshot, apply_debit, apply_release, apply_reservation, apply_top_up, resolve_credit_outcome, snapshot_of, spendable_credits


@dataclass
class _Balance:
  available_credits: int
  reserved_credits: int = 0
  total_credits: int = 0


def test_spendable_subtracts_reserved():
  assert spendable_credits(_Balance(available_credits=10, reserved_credits=4)) == 6
  assert CreditSnapshot(user_id="u", available=3, reserved=5, total=3).spendable == 0


def test_reservation_moves_only_reserved():
  balance = _Balance(available_credits=10)
  apply_reservation(balance, 4)
  assert (balance.available_credits, balance.reserved_credits) == (10, 4)


def test_reservation_fails_with_required_and_available():
  balance = _Balance(available_credits=10, reserved_credits=5)
  with pytest.raises(InsufficientCreditsError) as excinfo:
    apply_reservation(balance, 10)
  assert excinfo.value.required == 10
  assert excinfo.value.available == 5
  assert balance.reserved_credits == 5


def test_held_debit_consumes_reservation_and_balance():
  balance = _Balance(available_credits=10, reserved_credits=4)
  assert apply_debit(balance, 4, held=True) == 0
  assert (balance.available_credits, balance.reserved_credits) == (6, 0)


def test_unheld_debit_reports_shortfall():
  balance = _Balance(available_credits=2)
  assert apply_debit(balance, 5, held=False) == 3
  assert balance.available_credits == 0


def test_release_keeps_available():
  balance = _Balance(available_credits=10, reserved_credits=4)
  apply_release(balance, 4)
  assert (balance.available_credits, balance.reserved_credits) == (10, 0)


def test_top_up_grows_available_and_total():
  balance = _Balance(available_credits=1, total_credits=1)
  apply_top_up(balance, 9)
  assert (balance.available_credits, balance.total_credits) == (10, 10)
  with pytest.raises(ValueError):
    apply_top_up(balance, 0)


@pytest.mark.parametrize(
  ("status", "credits", "held", "refund", "expected"),
  [
    ("succeeded", 4, True, True, "debited"),
    ("succeeded", 4, False, True, "debited"),
    ("failed", 4, True, True, "released"),
    ("canceled", 4, True, True, "released"),
    ("failed", 4, False, True, "none"),
    ("failed", 4, True, False, "debited"),
    ("succeeded", 0, False, True, "none"),
  ],
)
def test_resolve_credit_outcome(status, credits, held, refund, expected):
  assert resolve_credit_outcome(status, credits=credits, reservation_held=held, refund_on_failure=refund) == expected


def test_snapshot_of_missing_balance_is_empty():
  snapshot = snapshot_of("u", None)
  assert (snapshot.available, snapshot.reserved, snapshot.spendable) == (0, 0, 0)


def test_audit_log_records_only_job_and_top_up_mutations():
  assert {action.value for action in CreditAction} == {"reserve", "debit", "release", "top_up"}
