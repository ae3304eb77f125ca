"""Tests for payment outcome handling (no database)."""

from datetime import date
from unittest.mock import patch

import pytest

from hotelcore.domain.errors import IdempotencyKeyMismatch, InvalidTransition, ReservationNotFound
from hotelcore.domain.payments import on_payment_outcome
from hotelcore.domain.reservations import PAID_BUT_UNCONFIRMED

MODULE = "hotelcore.domain.payments"


def _reservation(status="hold"):
    return {
        "id": "res-1",
        "property_id": "prop-test",
        "status": status,
        "checkin": date(2026, 1, 10),
        "checkout": date(2026, 1, 12),
    }


@pytest.fixture
def repo(fake_txn):
    with patch(f"{MODULE}.txn", fake_txn), \
         patch(f"{MODULE}.lock_reservation", return_value=_reservation()) as lock, \
         patch(f"{MODULE}.get_payment_outcome", return_value=None) as get_outcome, \
         patch(f"{MODULE}.record_payment_outcome", return_value=True) as record, \
         patch(f"{MODULE}.set_payment_outcome_result") as set_result, \
         patch(f"{MODULE}.set_payment_state") as set_state, \
         patch(f"{MODULE}.log_integration") as log:
        yield {
            "lock": lock,
            "get_outcome": get_outcome,
            "record": record,
            "set_result": set_result,
            "set_state": set_state,
            "log": log,
        }


class TestOnPaymentOutcome:
    def test_unknown_outcome_rejected(self):
        with pytest.raises(ValueError):
            on_payment_outcome("res-1", "refunded", "key-1")

    def test_missing_reservation(self, repo):
        repo["lock"].return_value = None
        with pytest.raises(ReservationNotFound):
            on_payment_outcome("res-1", "succeeded", "key-1")

    def test_success_confirms(self, repo):
        with patch(f"{MODULE}.confirm", return_value={"status": "confirmed"}) as mock_confirm:
            result = on_payment_outcome("res-1", "succeeded", "key-1", raw_payload={"amount": "200.00"})

        assert result == {"status": "applied", "reservation_id": "res-1", "result_status": "confirmed"}
        assert mock_confirm.call_args.kwargs["payment_state"] == "paid"
        assert repo["set_result"].call_args.kwargs["result_status"] == "confirmed"
        assert repo["log"].call_args.kwargs["status"] == "applied"
        assert repo["log"].call_args.kwargs["request_payload"] == {"amount": "200.00"}

    def test_failure_cancels_hold(self, repo):
        with patch(f"{MODULE}.cancel", return_value={"status": "cancelled"}) as mock_cancel:
            result = on_payment_outcome("res-1", "failed", "key-1")

        assert result["result_status"] == "cancelled"
        assert mock_cancel.call_args.kwargs["reason"] == "payment_failed"
        assert repo["set_state"].call_args.kwargs["payment_state"] == "failed"

    def test_failure_on_confirmed_changes_nothing(self, repo):
        repo["lock"].return_value = _reservation("confirmed")
        with patch(f"{MODULE}.cancel") as mock_cancel:
            result = on_payment_outcome("res-1", "failed", "key-1")

        assert result["result_status"] == "confirmed"
        mock_cancel.assert_not_called()
        repo["set_state"].assert_not_called()

    def test_success_on_cancelled_is_flagged(self, repo):
        repo["lock"].return_value = _reservation("cancelled")
        with patch(f"{MODULE}.confirm", side_effect=InvalidTransition("cancelled", "confirmed")):
            result = on_payment_outcome("res-1", "succeeded", "key-1")

        assert result["result_status"] == "cancelled"
        kwargs = repo["set_state"].call_args.kwargs
        assert kwargs["payment_state"] == "paid"
        assert kwargs["reconciliation_note"] == PAID_BUT_UNCONFIRMED

    @pytest.mark.parametrize("status", ["confirmed", "checked_in", "checked_out"])
    def test_success_on_pay_on_arrival_marks_paid_without_note(self, repo, status):
        repo["lock"].return_value = {**_reservation(status), "payment_state": "pay_on_arrival"}
        with patch(f"{MODULE}.confirm") as mock_confirm:
            result = on_payment_outcome("res-1", "succeeded", "key-1")

        assert result["result_status"] == status
        mock_confirm.assert_not_called()
        repo["set_state"].assert_called_once()
        kwargs = repo["set_state"].call_args.kwargs
        assert kwargs["payment_state"] == "paid"
        assert kwargs.get("reconciliation_note") is None

    def test_success_on_already_paid_confirmed_writes_nothing(self, repo):
        repo["lock"].return_value = {**_reservation("confirmed"), "payment_state": "paid"}
        with patch(f"{MODULE}.confirm") as mock_confirm:
            result = on_payment_outcome("res-1", "succeeded", "key-1")

        assert result["result_status"] == "confirmed"
        mock_confirm.assert_not_called()
        repo["set_state"].assert_not_called()

    def test_replay_returns_recorded_result(self, repo):
        repo["get_outcome"].return_value = {
            "reservation_id": "res-1",
            "outcome": "succeeded",
            "result_status": "confirmed",
        }
        with patch(f"{MODULE}.confirm") as mock_confirm:
            result = on_payment_outcome("res-1", "succeeded", "key-1")

        assert result == {"status": "duplicate", "reservation_id": "res-1", "result_status": "confirmed"}
        mock_confirm.assert_not_called()
        repo["record"].assert_not_called()
        assert repo["log"].call_args.kwargs["status"] == "duplicate"

    def test_concurrent_replay_reads_winner(self, repo):
        repo["record"].return_value = False
        repo["get_outcome"].side_effect = [
            None,
            {"reservation_id": "res-1", "outcome": "succeeded", "result_status": "confirmed"},
        ]
        with patch(f"{MODULE}.confirm") as mock_confirm:
            result = on_payment_outcome("res-1", "succeeded", "key-1")

        assert result["status"] == "duplicate"
        mock_confirm.assert_not_called()

    def test_key_reused_for_other_outcome(self, repo):
        repo["get_outcome"].return_value = {
            "reservation_id": "res-1",
            "outcome": "failed",
            "result_status": "cancelled",
        }
        with pytest.raises(IdempotencyKeyMismatch):
            on_payment_outcome("res-1", "succeeded", "key-1")
        assert repo["log"].call_args.kwargs["status"] == "rejected"
