"""Error taxonomy for the booking core.

Every error carries the HTTP status the API answers with, a stable ``code``
and a user-facing message. ``restart`` tells the client to go back to slot
selection instead of retrying the same step.
"""


class BookingError(Exception):
    status_code = 400
    code = "booking_error"
    message = "Booking request failed"
    restart = False

    def __init__(self, message=None, details=None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details

    def to_dict(self):
        out = {"error": self.message, "code": self.code, "restart": self.restart}
        if self.details:
            out["details"] = self.details
        return out


# ---------- NotFound ----------
class NotFound(BookingError):
    status_code = 404
    code = "not_found"
    message = "Not found"


class ServiceNotFound(NotFound):
    code = "service_not_found"
    message = "Service not found"


class SlotNotFound(NotFound):
    code = "slot_not_found"
    message = "Slot not found"
    restart = True


class HoldNotFound(NotFound):
    code = "hold_not_found"
    message = "Reservation not found"
    restart = True


class BookingNotFound(NotFound):
    code = "booking_not_found"
    message = "Booking not found"


class DraftNotFound(NotFound):
    code = "draft_not_found"
    message = "Booking session not found"


# ---------- Conflict ----------
class Conflict(BookingError):
    status_code = 409
    code = "conflict"
    message = "Conflict"


class SlotFull(Conflict):
    code = "slot_full"
    message = "This slot is fully booked. Please pick another slot."
    restart = True


class SlotUnavailable(Conflict):
    code = "slot_unavailable"
    message = "This slot can no longer be booked. Please pick another slot."
    restart = True


class SlotBusy(Conflict):
    code = "slot_busy"
    message = "This slot is being booked by someone else. Please try again."
    restart = True


class ReservationBusy(Conflict):
    code = "reservation_busy"
    message = "Your reservation is still being confirmed. Please try again."


class HoldAlreadyExists(Conflict):
    code = "hold_exists"
    message = "You already hold this slot"


class ServiceNotBookable(Conflict):
    code = "service_not_bookable"
    message = "This service cannot be booked online"


class AlreadyCancelled(Conflict):
    code = "already_cancelled"
    message = "Booking is already cancelled"


class InvalidTransition(Conflict):
    code = "invalid_transition"
    message = "This step is not available right now"


# ---------- Forbidden ----------
class NotOwner(BookingError):
    status_code = 403
    code = "not_owner"
    message = "This reservation belongs to another user"


# ---------- Validation ----------
class ValidationFailed(BookingError):
    status_code = 400
    code = "validation_failed"
    message = "Please correct the highlighted fields"


# ---------- Expired ----------
class Expired(BookingError):
    status_code = 410
    code = "expired"
    message = "Expired"
    restart = True


class HoldExpired(Expired):
    code = "hold_expired"
    message = "Your reservation expired. Please select a slot again."


# ---------- ExternalFailure ----------
class ExternalFailure(BookingError):
    status_code = 502
    code = "external_failure"
    message = "Payment provider error"


class InvalidSignature(ExternalFailure):
    status_code = 400
    code = "invalid_signature"
    message = "Payment confirmation could not be verified"


class PaymentDeclined(ExternalFailure):
    status_code = 402
    code = "payment_declined"
    message = "Payment was not completed. You can retry the payment."


class PaymentAttemptsExhausted(ExternalFailure):
    status_code = 402
    code = "payment_attempts_exhausted"
    message = "Too many failed payment attempts. Please start a new booking."
    restart = True


class GatewayError(ExternalFailure):
    code = "gateway_error"
    message = "Payment provider is unavailable. Please try again."


# ---------- Fatal ----------
class InvariantViolation(BookingError):
    status_code = 500
    code = "invariant_violation"
    message = "Slot accounting is inconsistent"
