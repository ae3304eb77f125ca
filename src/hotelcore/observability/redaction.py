"""Keep guest contact data out of logs.

Reservations carry guest name, email and phone. Those keys are dropped
outright; free text is scrubbed of anything shaped like an email address or
phone number; containers are reduced to their shape.
"""

import re
import uuid
from datetime import date
from decimal import Decimal
from typing import Any

REDACTED = "[REDACTED]"

GUEST_KEYS = frozenset({"guest_name", "guest_email", "guest_phone", "name", "email", "phone"})

_EMAIL = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_PHONE = re.compile(r"\+?\d[\d\s\-()]{8,}\d")


def redact_string(value: str) -> str:
    return _PHONE.sub(REDACTED, _EMAIL.sub(REDACTED, value))


def redact_value(value: Any) -> str:
    """Render a value for a log line without leaking guest data."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    # Money, dates and ids are safe and worth seeing verbatim
    if isinstance(value, (int, float, Decimal, uuid.UUID)):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        return f"dict(keys={sorted(map(str, value))})"
    if isinstance(value, (list, tuple, set, frozenset)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build extra_fields for a log call, every value redacted."""
    return {
        key: REDACTED if key in GUEST_KEYS else redact_value(value)
        for key, value in kwargs.items()
    }
