"""Stay date ranges.

A range is [checkin, checkout): checkout is exclusive, so a one-night stay has
checkout == checkin + 1 day, and checkout_A == checkin_B is not an overlap.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterator


@dataclass(frozen=True, order=True)
class DateRange:
    checkin: date
    checkout: date

    def __post_init__(self) -> None:
        if self.checkin >= self.checkout:
            raise ValueError("checkin must be before checkout")

    @property
    def nights(self) -> int:
        return (self.checkout - self.checkin).days

    def iter_nights(self) -> Iterator[date]:
        current = self.checkin
        while current < self.checkout:
            yield current
            current += timedelta(days=1)

    def overlaps(self, other: DateRange) -> bool:
        return self.checkin < other.checkout and other.checkin < self.checkout

    def to_dict(self) -> dict[str, str]:
        return {"checkin": self.checkin.isoformat(), "checkout": self.checkout.isoformat()}
