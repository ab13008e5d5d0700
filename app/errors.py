"""
Booking error taxonomy

Services raise these; app.main maps them onto HTTP responses in one place.
"""

from typing import Optional

SLOT_ALREADY_BOOKED = "SlotAlreadyBooked"
SLOT_PAYMENT_IN_PROGRESS = "SlotPaymentInProgress"


class BookingError(Exception):
    """Base class for every error the booking core reports to a caller"""

    status_code = 500

    def __init__(self, detail: str, reason: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.reason = reason


class ValidationError(BookingError):
    """Missing or malformed request fields; nothing was written"""

    status_code = 400


class NotFoundError(BookingError):
    status_code = 404


class AuthorizationError(BookingError):
    status_code = 403


class ConflictError(BookingError):
    """Slot taken or held by a live payment; reason tells the client which"""

    status_code = 409


class SecurityError(BookingError):
    """Provider notification failed authentication"""

    status_code = 401


class UpstreamError(BookingError):
    """Payment provider call failed or timed out; safe to retry"""

    status_code = 502


class IntegrityViolation(BookingError):
    """
    A payment was captured but no appointment could be issued for it.

    Never surfaced to the provider; the intent is flagged for manual refund.
    """

    status_code = 409


def conflict_message(reason: str) -> str:
    if reason == SLOT_PAYMENT_IN_PROGRESS:
        return (
            "Another payment is already in progress for this slot. "
            "Please wait a few minutes or pick a different slot."
        )
    return "This slot has already been booked. Please choose another one."
