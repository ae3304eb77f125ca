"""Error taxonomy for the inventory, pricing and publishing core.

Inventory and pricing errors are raised synchronously to callers.
Integration errors are raised only inside the publisher, which persists them
and never lets them reach guest-facing flows.
"""

from __future__ import annotations

from datetime import date


class CoreError(Exception):
    """Base class for all core errors."""

    code = "core_error"


class Conflict(CoreError):
    """No physical room of the requested type is free for the full range."""

    code = "conflict"

    def __init__(
        self,
        message: str = "No room available for the requested dates",
        *,
        room_type_id: str | None = None,
        room_id: str | None = None,
        checkin: date | None = None,
        checkout: date | None = None,
    ) -> None:
        self.room_type_id = room_type_id
        self.room_id = room_id
        self.checkin = checkin
        self.checkout = checkout
        super().__init__(message)


class InvalidTransition(CoreError):
    """Requested reservation state change is not allowed from the current state."""

    code = "invalid_transition"

    def __init__(self, current: str, target: str, message: str | None = None) -> None:
        self.current = current
        self.target = target
        super().__init__(message or f"Cannot move reservation from {current} to {target}")


class ReservationNotFound(CoreError):
    """Reservation does not exist."""

    code = "reservation_not_found"


class NotEligible(CoreError):
    """Guest context does not satisfy the rate plan's access rules.

    The message is deliberately generic; it must not reveal which rule failed.
    """

    code = "not_eligible"

    def __init__(self, message: str = "Rate not available") -> None:
        super().__init__(message)


class NoRate(CoreError):
    """A required night has no resolvable price (configuration gap)."""

    code = "no_rate"

    def __init__(self, missing_date: date | None = None, reason: str = "rate_missing") -> None:
        self.missing_date = missing_date
        self.reason = reason
        detail = f" for {missing_date.isoformat()}" if missing_date else ""
        super().__init__(f"No rate{detail}: {reason}")


class RatePlanValidationError(CoreError):
    """Rate plan definition rejected at write time."""

    code = "rate_plan_invalid"


class IdempotencyKeyMismatch(CoreError):
    """An idempotency key was replayed with a different request."""

    code = "idempotency_key_mismatch"


class TransientIntegrationError(CoreError):
    """External channel unreachable, timed out or reported a retryable error."""

    code = "transient_integration_error"

    def __init__(self, message: str, *, status_code: int | None = None, response: dict | None = None) -> None:
        self.status_code = status_code
        self.response = response
        super().__init__(message)


class PermanentIntegrationError(CoreError):
    """External channel rejected the content; requires manual correction."""

    code = "permanent_integration_error"

    def __init__(self, message: str, *, status_code: int | None = None, response: dict | None = None) -> None:
        self.status_code = status_code
        self.response = response
        super().__init__(message)
