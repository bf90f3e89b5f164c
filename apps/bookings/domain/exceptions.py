"""
Booking Domain Errors

Every rejection the scheduling core can produce. Each error carries a
machine-readable ``code`` and the HTTP status the API layer answers with,
so views never have to guess.
"""

from __future__ import annotations

from datetime import datetime


class BookingError(Exception):
    """Base class for expected, reportable booking failures."""

    code = "booking_error"
    http_status = 400
    default_message = "Booking request could not be processed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


# ===== Input validation =====

class InvalidBookingWindow(BookingError):
    code = "invalid_booking_window"
    default_message = "End time must be after start time."


class InvalidExtensionWindow(BookingError):
    code = "invalid_extension_window"
    default_message = "New end date must be after the current end date."


class InvalidExtensionAmount(BookingError):
    code = "invalid_extension_amount"
    default_message = "Extension cost must be greater than zero."


# ===== Business rules =====

class BookingConflictError(BookingError):
    """Raised when a box is busy for the requested window."""

    code = "booking_conflict"
    http_status = 409
    default_message = "Box is not available for the selected period."

    def __init__(self, message: str | None = None, next_free_at: datetime | None = None):
        super().__init__(message)
        self.next_free_at = next_free_at

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.next_free_at is not None:
            data["next_free_at"] = self.next_free_at.isoformat()
        return data


class NoReassignmentAvailable(BookingError):
    code = "no_reassignment_available"
    http_status = 409
    default_message = "The box is booked after your current end date and no equivalent box is free."


class BoxNotFound(BookingError):
    code = "box_not_found"
    http_status = 404
    default_message = "Box not found."


class BoxNotActive(BookingError):
    code = "box_not_active"
    http_status = 409
    default_message = "Box is not available for booking."


class BookingNotExtendable(BookingError):
    code = "booking_not_extendable"
    http_status = 409
    default_message = "Cancelled or completed bookings cannot be extended."


class BookingNotCancellable(BookingError):
    code = "booking_not_cancellable"
    http_status = 409
    default_message = "Only upcoming, confirmed or active bookings can be cancelled."


class BookingNotReturnable(BookingError):
    code = "booking_not_returnable"
    http_status = 409
    default_message = "Only active bookings can be returned."


class NotBookingOwner(BookingError):
    code = "not_booking_owner"
    http_status = 403
    default_message = "You can only manage your own bookings."


class BookingNotFound(BookingError):
    code = "booking_not_found"
    http_status = 404
    default_message = "Booking not found."


class BookingClosed(BookingError):
    code = "booking_closed"
    http_status = 409
    default_message = "Booking is already cancelled or completed."


# ===== External dependency =====

class PaymentNotSucceeded(BookingError):
    code = "payment_not_succeeded"
    http_status = 402
    default_message = "Payment has not been completed."


class PaymentMismatch(BookingError):
    code = "payment_mismatch"
    http_status = 402
    default_message = "Payment does not match this booking."
