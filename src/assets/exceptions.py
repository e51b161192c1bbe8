"""Errors raised by the booking engine.

All of them derive from Django's own exception types so hosting views
can map them to responses the usual way (403 for ``PermissionDenied``,
form errors for ``ValidationError``).
"""

from django.core.exceptions import PermissionDenied, ValidationError


class AuthorizationError(PermissionDenied):
    """An actor referenced a row owned by another organisation."""


class StateTransitionError(ValidationError):
    """The requested lifecycle transition is not allowed."""

    def __init__(self, current, target, message=None):
        self.current = current
        self.target = target
        if message is None:
            message = (
                f"Cannot transition booking from '{current}' to '{target}'."
            )
        super().__init__(message, code="invalid_transition")


class ConflictError(ValidationError):
    """One or more assets are already held by an active booking.

    ``report`` carries the full per-asset verdicts.
    """

    def __init__(self, report):
        self.report = report
        messages = [c.describe() for c in report.collisions()]
        super().__init__(
            [
                ValidationError(m, code="booking_conflict")
                for m in messages or ["Booking conflict."]
            ]
        )
        self.code = "booking_conflict"
