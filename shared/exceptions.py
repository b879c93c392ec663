"""
shared/exceptions.py
Domain errors raised by the booking core.
Each carries an HTTP status, a stable machine code and a context dict
(which slot, which field) that main.py renders into the error response.
"""

from typing import Any, Optional


class ClinicError(Exception):
    status_code: int = 400
    code: str = "clinic_error"
    default_detail: str = "Request could not be processed"

    def __init__(self, detail: Optional[str] = None, **context: Any):
        self.detail = detail or self.default_detail
        self.context = context
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {"detail": self.detail, "code": self.code, "context": self.context}


class ValidationError(ClinicError):
    status_code = 422
    code = "validation_error"
    default_detail = "Invalid input"


# ── Not found ─────────────────────────────────────────────────

class NotFound(ClinicError):
    status_code = 404
    code = "not_found"
    default_detail = "Resource not found"


class AppointmentNotFound(NotFound):
    code = "appointment_not_found"
    default_detail = "Appointment not found"


class PaymentNotFound(NotFound):
    code = "payment_not_found"
    default_detail = "Payment not found"


class ContactNotFound(NotFound):
    code = "contact_not_found"
    default_detail = "Contact message not found"


# ── Booking policy ────────────────────────────────────────────

class BookingPolicyError(ClinicError):
    status_code = 409
    code = "booking_policy"


class SlotUnavailable(BookingPolicyError):
    code = "slot_unavailable"
    default_detail = "Bookings are not accepted on this date"


class SlotOutsideHours(BookingPolicyError):
    code = "slot_outside_hours"
    default_detail = "Selected time is outside working hours for this date"


class SlotTaken(BookingPolicyError):
    code = "slot_taken"
    default_detail = "This time slot is already booked"


class CapacityExceeded(BookingPolicyError):
    code = "capacity_exceeded"
    default_detail = "No more appointments can be booked on this date"


class SlotConflict(BookingPolicyError):
    code = "slot_conflict"
    default_detail = "This time slot was just booked by another request"


# ── Payments ──────────────────────────────────────────────────

class DuplicatePayment(ClinicError):
    status_code = 409
    code = "duplicate_payment"
    default_detail = "A payment has already been submitted for this appointment"


class AlreadyVerified(ClinicError):
    status_code = 409
    code = "already_verified"
    default_detail = "Payment is already verified"


class InvalidReceipt(ClinicError):
    status_code = 400
    code = "invalid_receipt"
    default_detail = "Receipt must be a JPEG, PNG or PDF file"


class ReceiptTooLarge(InvalidReceipt):
    status_code = 413
    code = "receipt_too_large"
    default_detail = "Receipt exceeds the maximum upload size"


class ReceiptStoreFailure(ClinicError):
    status_code = 502
    code = "receipt_store_failure"
    default_detail = "Receipt could not be stored, please try again"
