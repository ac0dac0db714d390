from models.db import db
from utils.clock import utcnow

SERVICE_SELECTED = "SERVICE_SELECTED"
SLOT_HELD = "SLOT_HELD"
DETAILS_COLLECTED = "DETAILS_COLLECTED"
PAYMENT_PENDING = "PAYMENT_PENDING"
CONFIRMED = "CONFIRMED"
HOLD_EXPIRED = "HOLD_EXPIRED"
PAYMENT_FAILED = "PAYMENT_FAILED"
CANCELLED = "CANCELLED"


class BookingDraft(db.Model):
    """Server-side state of one pass through the booking flow."""

    __tablename__ = "booking_drafts"

    id = db.Column(db.String(40), primary_key=True)
    user_id = db.Column(db.String(128), db.ForeignKey("users.id"), nullable=False, index=True)
    service_id = db.Column(db.String(80), db.ForeignKey("services.id"), nullable=False)

    slot_id = db.Column(db.Integer, db.ForeignKey("slots.id"), nullable=True)
    hold_id = db.Column(db.String(40), db.ForeignKey("holds.id"), nullable=True, index=True)

    state = db.Column(db.String(30), nullable=False, default=SERVICE_SELECTED)
    details = db.Column(db.JSON, nullable=True)

    payment_ref = db.Column(db.String(255), nullable=True, index=True)  # current checkout session
    payment_attempts = db.Column(db.Integer, nullable=False, default=0)

    booking_id = db.Column(db.String(40), db.ForeignKey("bookings.id"), nullable=True)
    last_error = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    hold = db.relationship("Hold")

    def to_dict(self):
        return {
            "id": self.id,
            "service_id": self.service_id,
            "slot_id": self.slot_id,
            "state": self.state,
            "details": self.details,
            "hold": self.hold.to_dict() if self.hold else None,
            "payment_attempts": self.payment_attempts,
            "booking_id": self.booking_id,
            "last_error": self.last_error,
            "updated_at": self.updated_at.isoformat(),
        }
