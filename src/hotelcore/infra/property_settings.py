"""Per-property settings that influence pricing and publishing.

Loaded from the properties row. Properties are never deleted, only
deactivated, so a missing row is a caller error.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Literal

from psycopg2.extensions import cursor as PgCursor

from .db import fetchone

PricingDisplayMode = Literal["tax_exclusive", "tax_inclusive"]


class PropertyNotFoundError(Exception):
    """Property does not exist."""


@dataclass(frozen=True)
class PropertySettings:
    """Pricing-relevant configuration for a property.

    Attributes:
        pricing_display_mode: "tax_exclusive" when stored rates are net and tax
            is added on top; "tax_inclusive" when stored rates already include tax.
        tax_percent: Mandatory tax rate, in percent.
        fee_per_stay: Mandatory fee added once per reserved room.
    """

    property_id: str
    timezone: str
    currency: str
    pricing_display_mode: PricingDisplayMode = "tax_exclusive"
    tax_percent: Decimal = Decimal("0")
    fee_per_stay: Decimal = Decimal("0")
    active: bool = True


def get_property_settings(cur: PgCursor, property_id: str) -> PropertySettings:
    """Load settings for a property.

    Raises:
        PropertyNotFoundError: If the property row does not exist.
    """
    row = fetchone(
        cur,
        """
        SELECT id, timezone, currency, pricing_display_mode,
               tax_percent, fee_per_stay, active
        FROM properties
        WHERE id = %s
        """,
        (property_id,),
    )
    if row is None:
        raise PropertyNotFoundError(f"Property not found: {property_id}")

    mode = row[3] if row[3] in ("tax_exclusive", "tax_inclusive") else "tax_exclusive"
    return PropertySettings(
        property_id=row[0],
        timezone=row[1],
        currency=row[2].strip(),
        pricing_display_mode=mode,  # type: ignore[arg-type]
        tax_percent=Decimal(row[4]),
        fee_per_stay=Decimal(row[5]),
        active=bool(row[6]),
    )
