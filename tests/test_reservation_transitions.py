"""Tests for the reservation state machine (no database).

Repository calls are patched in the reservations module namespace, so these
tests pin down which transitions write, release and emit.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from hotelcore.domain import reservations
from hotelcore.domain.errors import Conflict, InvalidTransition, ReservationNotFound
from hotelcore.domain.reservations import (
    HOLD_TTL,
    PAID_BUT_UNCONFIRMED,
    TRANSITIONS,
    can_transition,
    ensure_transition,
)

MODULE = "hotelcore.domain.reservations"
NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _reservation(status="hold", **overrides):
    row = {
        "id": "res-1",
        "property_id": "prop-test",
        "status": status,
        "checkin": date(2026, 1, 10),
        "checkout": date(2026, 1, 12),
        "hold_expires_at": NOW + HOLD_TTL if status == "hold" else None,
        "payment_state": None,
        "reconciliation_note": None,
        "cancel_reason": None,
        "total_amount": Decimal("200.00"),
        "currency": "EUR",
    }
    row.update(overrides)
    return row


LINES = [
    {
        "id": "line-1",
        "room_type_id": "rt-std",
        "rate_plan_id": "bar",
        "quantity": 1,
        "occupancy": 2,
    }
]


class TestTransitionTable:
    @pytest.mark.parametrize(
        "current,target",
        [
            ("hold", "confirmed"),
            ("hold", "cancelled"),
            ("hold", "expired"),
            ("confirmed", "cancelled"),
            ("confirmed", "checked_in"),
            ("checked_in", "checked_out"),
            ("expired", "confirmed"),
        ],
    )
    def test_allowed(self, current, target):
        assert can_transition(current, target)
        ensure_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            ("cancelled", "confirmed"),
            ("expired", "cancelled"),
            ("checked_out", "checked_in"),
            ("confirmed", "hold"),
            ("checked_in", "cancelled"),
            ("hold", "checked_in"),
        ],
    )
    def test_rejected(self, current, target):
        assert not can_transition(current, target)
        with pytest.raises(InvalidTransition) as exc_info:
            ensure_transition(current, target)
        assert exc_info.value.current == current
        assert exc_info.value.target == target

    def test_terminal_states_have_no_exits(self):
        assert TRANSITIONS["cancelled"] == frozenset()
        assert TRANSITIONS["checked_out"] == frozenset()

    def test_hold_ttl_is_ten_minutes(self):
        assert HOLD_TTL == timedelta(minutes=10)


class TestConfirm:
    """confirm() from each starting state."""

    def test_hold_confirms_and_emits_once(self, mock_cur):
        with patch(f"{MODULE}.lock_reservation", return_value=_reservation("hold")), \
             patch(f"{MODULE}.get_reservation_lines", return_value=LINES), \
             patch(f"{MODULE}.update_status", return_value=True) as mock_update, \
             patch(f"{MODULE}.emit_inventory_deltas") as mock_emit:
            result = reservations.confirm("res-1", cur=mock_cur)

        assert result["status"] == "confirmed"
        assert result["changed"] is True
        assert result["hold_expires_at"] is None
        mock_update.assert_called_once()
        assert mock_update.call_args.kwargs["to_status"] == "confirmed"
        assert mock_update.call_args.kwargs["payment_state"] == "paid"
        mock_emit.assert_called_once()
        assert mock_emit.call_args.kwargs["affected"] == [("rt-std", "bar")]
        assert mock_emit.call_args.kwargs["reason"] == "reservation_confirmed"

    def test_replay_is_noop(self, mock_cur):
        with patch(
            f"{MODULE}.lock_reservation",
            return_value=_reservation("confirmed", payment_state="paid"),
        ), patch(f"{MODULE}.update_status") as mock_update, \
             patch(f"{MODULE}.emit_inventory_deltas") as mock_emit:
            result = reservations.confirm("res-1", cur=mock_cur)

        assert result["changed"] is False
        mock_update.assert_not_called()
        mock_emit.assert_not_called()

    def test_replay_with_other_payment_state_rejected(self, mock_cur):
        with patch(
            f"{MODULE}.lock_reservation",
            return_value=_reservation("confirmed", payment_state="pay_on_arrival"),
        ):
            with pytest.raises(InvalidTransition):
                reservations.confirm("res-1", payment_state="paid", cur=mock_cur)

    def test_cancelled_rejected(self, mock_cur):
        with patch(f"{MODULE}.lock_reservation", return_value=_reservation("cancelled")):
            with pytest.raises(InvalidTransition):
                reservations.confirm("res-1", cur=mock_cur)

    def test_missing_reservation(self, mock_cur):
        with patch(f"{MODULE}.lock_reservation", return_value=None):
            with pytest.raises(ReservationNotFound):
                reservations.confirm("missing", cur=mock_cur)

    def test_late_payment_reallocates(self, mock_cur):
        with patch(f"{MODULE}.lock_reservation", return_value=_reservation("expired")), \
             patch(f"{MODULE}.get_reservation_lines", return_value=LINES), \
             patch(f"{MODULE}.lock_candidate_rooms") as mock_lock_rooms, \
             patch(f"{MODULE}.allocate_units", return_value=["alloc-2"]) as mock_alloc, \
             patch(f"{MODULE}.update_status", return_value=True) as mock_update, \
             patch(f"{MODULE}.emit_inventory_deltas") as mock_emit:
            result = reservations.confirm("res-1", cur=mock_cur)

        assert result["status"] == "confirmed"
        mock_alloc.assert_called_once()
        assert mock_alloc.call_args.kwargs["reservation_line_id"] == "line-1"
        assert mock_lock_rooms.call_args.kwargs["requests"] == [("rt-std", None)]
        assert mock_update.call_args.kwargs["from_statuses"] == ("expired",)
        assert mock_emit.call_args.kwargs["reason"] == "late_payment_confirmed"

    def test_late_payment_without_rooms_cancels_with_note(self, mock_cur):
        with patch(f"{MODULE}.lock_reservation", return_value=_reservation("expired")), \
             patch(f"{MODULE}.get_reservation_lines", return_value=LINES), \
             patch(f"{MODULE}.allocate_units", side_effect=Conflict()), \
             patch(f"{MODULE}.update_status", return_value=True) as mock_update, \
             patch(f"{MODULE}.emit_inventory_deltas") as mock_emit:
            result = reservations.confirm("res-1", cur=mock_cur)

        assert result["status"] == "cancelled"
        assert result["reconciliation_note"] == PAID_BUT_UNCONFIRMED
        assert mock_update.call_args.kwargs["to_status"] == "cancelled"
        assert mock_update.call_args.kwargs["reconciliation_note"] == PAID_BUT_UNCONFIRMED
        mock_emit.assert_not_called()
        executed = [c.args[0] for c in mock_cur.execute.call_args_list]
        assert any(sql.startswith("ROLLBACK TO SAVEPOINT") for sql in executed)

    def test_late_payment_replay_after_reconciliation_is_noop(self, mock_cur):
        reservation = _reservation("cancelled", reconciliation_note=PAID_BUT_UNCONFIRMED)
        with patch(f"{MODULE}.lock_reservation", return_value=reservation), \
             patch(f"{MODULE}.update_status") as mock_update:
            result = reservations.confirm("res-1", cur=mock_cur)

        assert result["changed"] is False
        mock_update.assert_not_called()


class TestExpire:
    def test_due_hold_expires_and_releases(self, mock_cur):
        reservation = _reservation("hold", hold_expires_at=NOW)
        with patch(f"{MODULE}.lock_reservation", return_value=reservation), \
             patch(f"{MODULE}.update_status", return_value=True), \
             patch(f"{MODULE}.release_reservation_allocations", return_value=2), \
             patch(f"{MODULE}.get_reservation_lines", return_value=LINES), \
             patch(f"{MODULE}.emit_inventory_deltas") as mock_emit:
            result = reservations.expire("res-1", now=NOW, cur=mock_cur)

        assert result == {"status": "expired", "reservation_id": "res-1", "allocations_released": 2}
        mock_emit.assert_called_once()
        assert mock_emit.call_args.kwargs["reason"] == "hold_expired"

    def test_not_yet_due(self, mock_cur):
        reservation = _reservation("hold", hold_expires_at=NOW + timedelta(seconds=1))
        with patch(f"{MODULE}.lock_reservation", return_value=reservation), \
             patch(f"{MODULE}.update_status") as mock_update:
            result = reservations.expire("res-1", now=NOW, cur=mock_cur)

        assert result == {"status": "not_expired_yet"}
        mock_update.assert_not_called()

    @pytest.mark.parametrize("status", ["confirmed", "cancelled", "expired"])
    def test_non_hold_is_noop(self, mock_cur, status):
        with patch(f"{MODULE}.lock_reservation", return_value=_reservation(status)), \
             patch(f"{MODULE}.emit_inventory_deltas") as mock_emit:
            assert reservations.expire("res-1", now=NOW, cur=mock_cur) == {"status": "noop"}
        mock_emit.assert_not_called()

    def test_missing_is_noop(self, mock_cur):
        with patch(f"{MODULE}.lock_reservation", return_value=None):
            assert reservations.expire("res-1", now=NOW, cur=mock_cur) == {"status": "noop"}


class TestCancel:
    def test_confirmed_cancels_and_emits(self, mock_cur):
        with patch(f"{MODULE}.lock_reservation", return_value=_reservation("confirmed")), \
             patch(f"{MODULE}.update_status", return_value=True) as mock_update, \
             patch(f"{MODULE}.release_reservation_allocations", return_value=1), \
             patch(f"{MODULE}.get_reservation_lines", return_value=LINES), \
             patch(f"{MODULE}.emit_inventory_deltas") as mock_emit:
            result = reservations.cancel("res-1", reason="guest_request", cur=mock_cur)

        assert result["status"] == "cancelled"
        assert result["allocations_released"] == 1
        assert mock_update.call_args.kwargs["cancel_reason"] == "guest_request"
        mock_emit.assert_called_once()

    def test_already_cancelled_is_noop(self, mock_cur):
        with patch(f"{MODULE}.lock_reservation", return_value=_reservation("cancelled")), \
             patch(f"{MODULE}.emit_inventory_deltas") as mock_emit:
            result = reservations.cancel("res-1", cur=mock_cur)
        assert result["changed"] is False
        mock_emit.assert_not_called()

    @pytest.mark.parametrize("status", ["expired", "checked_in", "checked_out"])
    def test_rejected_states(self, mock_cur, status):
        with patch(f"{MODULE}.lock_reservation", return_value=_reservation(status)):
            with pytest.raises(InvalidTransition):
                reservations.cancel("res-1", cur=mock_cur)


class TestStayTransitions:
    def test_check_in_does_not_emit(self, mock_cur):
        with patch(f"{MODULE}.lock_reservation", return_value=_reservation("confirmed")), \
             patch(f"{MODULE}.update_status", return_value=True), \
             patch(f"{MODULE}.emit_inventory_deltas") as mock_emit:
            result = reservations.check_in("res-1", cur=mock_cur)
        assert result["status"] == "checked_in"
        mock_emit.assert_not_called()

    def test_check_out_requires_check_in(self, mock_cur):
        with patch(f"{MODULE}.lock_reservation", return_value=_reservation("confirmed")):
            with pytest.raises(InvalidTransition):
                reservations.check_out("res-1", cur=mock_cur)


class TestCreateHold:
    """create_hold() wiring: price first, then allocate, then one emit."""

    def _settings(self):
        settings = MagicMock()
        settings.currency = "EUR"
        return settings

    def _quote(self, total="110.00"):
        price = MagicMock()
        price.total = Decimal(total)
        price.to_dict.return_value = {"total": total}
        return price

    def test_creates_hold_with_ttl(self, mock_cur):
        from hotelcore.domain.dates import DateRange

        with patch(f"{MODULE}.get_property_settings", return_value=self._settings()), \
             patch(f"{MODULE}.quote", return_value=self._quote()), \
             patch(f"{MODULE}.insert_reservation", return_value=("res-1", True)) as mock_insert, \
             patch(f"{MODULE}.insert_reservation_line", return_value="line-1"), \
             patch(f"{MODULE}.allocate_units", return_value=["alloc-1", "alloc-2"]), \
             patch(f"{MODULE}.set_total_amount") as mock_total, \
             patch(f"{MODULE}.emit_inventory_deltas") as mock_emit:
            result = reservations.create_hold(
                property_id="prop-test",
                dates=DateRange(date(2026, 1, 10), date(2026, 1, 12)),
                lines=[reservations.HoldLine("rt-std", "bar", quantity=2)],
                now=NOW,
                cur=mock_cur,
            )

        assert result["status"] == "hold"
        assert result["hold_expires_at"] == NOW + HOLD_TTL
        assert result["total_amount"] == Decimal("220.00")
        assert result["allocation_ids"] == ["alloc-1", "alloc-2"]
        assert mock_insert.call_args.kwargs["hold_expires_at"] == NOW + HOLD_TTL
        mock_total.assert_called_once_with(mock_cur, reservation_id="res-1", total_amount=Decimal("220.00"))
        mock_emit.assert_called_once()
        assert mock_emit.call_args.kwargs["reason"] == "hold_created"

    def test_conflict_propagates_without_emit(self, mock_cur):
        from hotelcore.domain.dates import DateRange

        with patch(f"{MODULE}.get_property_settings", return_value=self._settings()), \
             patch(f"{MODULE}.quote", return_value=self._quote()), \
             patch(f"{MODULE}.insert_reservation", return_value=("res-1", True)), \
             patch(f"{MODULE}.insert_reservation_line", return_value="line-1"), \
             patch(f"{MODULE}.allocate_units", side_effect=Conflict()), \
             patch(f"{MODULE}.emit_inventory_deltas") as mock_emit:
            with pytest.raises(Conflict):
                reservations.create_hold(
                    property_id="prop-test",
                    dates=DateRange(date(2026, 1, 10), date(2026, 1, 12)),
                    lines=[reservations.HoldLine("rt-std", "bar")],
                    now=NOW,
                    cur=mock_cur,
                )
        mock_emit.assert_not_called()

    def test_idempotent_replay_returns_existing(self, mock_cur):
        from hotelcore.domain.dates import DateRange

        existing = _reservation("hold")
        with patch(f"{MODULE}.get_reservation_by_idempotency_key", return_value=existing), \
             patch(f"{MODULE}.insert_reservation") as mock_insert:
            result = reservations.create_hold(
                property_id="prop-test",
                dates=DateRange(date(2026, 1, 10), date(2026, 1, 12)),
                lines=[reservations.HoldLine("rt-std", "bar")],
                idempotency_key="idem-1",
                now=NOW,
                cur=mock_cur,
            )
        assert result["created"] is False
        assert result["reservation_id"] == "res-1"
        mock_insert.assert_not_called()

    def test_replay_with_other_dates_rejected(self, mock_cur):
        from hotelcore.domain.dates import DateRange
        from hotelcore.domain.errors import IdempotencyKeyMismatch

        with patch(f"{MODULE}.get_reservation_by_idempotency_key", return_value=_reservation("hold")):
            with pytest.raises(IdempotencyKeyMismatch):
                reservations.create_hold(
                    property_id="prop-test",
                    dates=DateRange(date(2026, 2, 1), date(2026, 2, 3)),
                    lines=[reservations.HoldLine("rt-std", "bar")],
                    idempotency_key="idem-1",
                    cur=mock_cur,
                )

    def test_pinned_room_requires_quantity_one(self, mock_cur):
        from hotelcore.domain.dates import DateRange

        with pytest.raises(ValueError):
            reservations.create_hold(
                property_id="prop-test",
                dates=DateRange(date(2026, 1, 10), date(2026, 1, 12)),
                lines=[reservations.HoldLine("rt-std", "bar", quantity=2, room_id="101")],
                cur=mock_cur,
            )

    def test_pay_on_arrival_confirms_without_hold(self, mock_cur):
        from hotelcore.domain.dates import DateRange

        with patch(f"{MODULE}.get_property_settings", return_value=self._settings()), \
             patch(f"{MODULE}.quote", return_value=self._quote("95.00")), \
             patch(f"{MODULE}.insert_reservation", return_value=("res-2", True)) as mock_insert, \
             patch(f"{MODULE}.insert_reservation_line", return_value="line-1"), \
             patch(f"{MODULE}.allocate_units", return_value=["alloc-1"]), \
             patch(f"{MODULE}.set_total_amount"), \
             patch(f"{MODULE}.emit_inventory_deltas") as mock_emit:
            result = reservations.create_confirmed(
                property_id="prop-test",
                dates=DateRange(date(2026, 1, 10), date(2026, 1, 11)),
                lines=[reservations.HoldLine("rt-std", "bar")],
                now=NOW,
                cur=mock_cur,
            )

        assert result["status"] == "confirmed"
        assert result["hold_expires_at"] is None
        assert result["total_amount"] == Decimal("95.00")
        kwargs = mock_insert.call_args.kwargs
        assert kwargs["status"] == "confirmed"
        assert kwargs["hold_expires_at"] is None
        assert kwargs["payment_state"] == "pay_on_arrival"
        assert mock_emit.call_args.kwargs["reason"] == "reservation_confirmed"

    def test_rooms_for_every_line_locked_before_allocating(self, mock_cur):
        from hotelcore.domain.dates import DateRange

        order = []
        with patch(f"{MODULE}.get_property_settings", return_value=self._settings()), \
             patch(f"{MODULE}.quote", return_value=self._quote()), \
             patch(f"{MODULE}.insert_reservation", return_value=("res-1", True)), \
             patch(f"{MODULE}.insert_reservation_line", return_value="line-1"), \
             patch(f"{MODULE}.lock_candidate_rooms",
                   side_effect=lambda cur, **kw: order.append(("lock", kw["requests"]))), \
             patch(f"{MODULE}.allocate_units",
                   side_effect=lambda cur, **kw: order.append(("allocate", kw["room_type_id"])) or ["a"]), \
             patch(f"{MODULE}.set_total_amount"), \
             patch(f"{MODULE}.emit_inventory_deltas"):
            reservations.create_hold(
                property_id="prop-test",
                dates=DateRange(date(2026, 1, 10), date(2026, 1, 12)),
                lines=[
                    reservations.HoldLine("rt-dlx", "bar"),
                    reservations.HoldLine("rt-std", "bar", room_id="101"),
                ],
                now=NOW,
                cur=mock_cur,
            )

        assert order == [
            ("lock", [("rt-dlx", None), ("rt-std", "101")]),
            ("allocate", "rt-dlx"),
            ("allocate", "rt-std"),
        ]
