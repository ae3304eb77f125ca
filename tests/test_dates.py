"""Tests for stay date ranges."""

from datetime import date

import pytest

from hotelcore.domain.dates import DateRange


class TestDateRange:
    def test_nights_and_iteration(self):
        stay = DateRange(date(2026, 1, 30), date(2026, 2, 2))
        assert stay.nights == 3
        assert list(stay.iter_nights()) == [date(2026, 1, 30), date(2026, 1, 31), date(2026, 2, 1)]

    @pytest.mark.parametrize("checkout", [date(2026, 1, 10), date(2026, 1, 9)])
    def test_empty_or_inverted_range_rejected(self, checkout):
        with pytest.raises(ValueError):
            DateRange(date(2026, 1, 10), checkout)

    def test_back_to_back_stays_do_not_overlap(self):
        first = DateRange(date(2026, 1, 10), date(2026, 1, 12))
        second = DateRange(date(2026, 1, 12), date(2026, 1, 14))
        assert not first.overlaps(second)
        assert not second.overlaps(first)

    def test_single_shared_night_overlaps(self):
        first = DateRange(date(2026, 1, 10), date(2026, 1, 12))
        second = DateRange(date(2026, 1, 11), date(2026, 1, 13))
        assert first.overlaps(second)

    def test_containment_overlaps(self):
        outer = DateRange(date(2026, 1, 1), date(2026, 1, 31))
        inner = DateRange(date(2026, 1, 10), date(2026, 1, 11))
        assert outer.overlaps(inner)
        assert inner.overlaps(outer)

    def test_to_dict(self):
        stay = DateRange(date(2026, 1, 10), date(2026, 1, 12))
        assert stay.to_dict() == {"checkin": "2026-01-10", "checkout": "2026-01-12"}
