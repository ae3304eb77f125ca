"""Hashing utilities for outbound payload fingerprints.

The publisher stores the hash of the last successfully delivered payload per
(property, kind) so a forced full-sync can skip content the channel already has.
"""

import hashlib
import json
from typing import Any


def canonical_json(value: Any) -> str:
    """Serialize value with sorted keys and no whitespace."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def payload_hash(value: Any) -> str:
    """Return hex SHA-256 of the canonical JSON form of value."""
    return hashlib.sha256(canonical_json(value).encode()).hexdigest()
