"""Re-derive and enqueue a property's full ARI state for a date range.

Usage:
    DATABASE_URL=... python scripts/full_sync.py <property_id> <from YYYY-MM-DD> <to YYYY-MM-DD>

The range is [from, to). Events go through the outbox; the publisher sends them.
"""

from __future__ import annotations

import os
import sys
from datetime import date


def main() -> None:
    if len(sys.argv) != 4:
        sys.stderr.write("Usage: python scripts/full_sync.py <property_id> <from> <to>\n")
        sys.exit(2)

    if not os.environ.get("DATABASE_URL"):
        sys.stderr.write("ERROR: set DATABASE_URL environment variable\n")
        sys.exit(1)

    property_id = sys.argv[1]
    try:
        date_from = date.fromisoformat(sys.argv[2])
        date_to = date.fromisoformat(sys.argv[3])
    except ValueError:
        sys.stderr.write("ERROR: dates must be YYYY-MM-DD\n")
        sys.exit(2)

    from hotelcore.channel.full_sync import full_sync
    from hotelcore.domain.dates import DateRange
    from hotelcore.infra.property_settings import PropertyNotFoundError

    try:
        result = full_sync(property_id, DateRange(date_from, date_to))
    except ValueError as e:
        sys.stderr.write(f"ERROR: {e}\n")
        sys.exit(2)
    except PropertyNotFoundError as e:
        sys.stderr.write(f"ERROR: {e}\n")
        sys.exit(1)

    sys.stdout.write(f"Done. {result['events']} event(s) enqueued for {result['pairs']} pair(s).\n")


if __name__ == "__main__":
    main()
