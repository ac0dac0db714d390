from models.db import db
from utils.clock import utcnow

class BookingEvent(db.Model):
    __tablename__ = "booking_events"

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(60), nullable=False, index=True)  # e.g. booking.confirmed
    booking_id = db.Column(db.String(40), db.ForeignKey("bookings.id"), nullable=True, index=True)  # null for account notices
    user_id = db.Column(db.String(128), db.ForeignKey("users.id"), nullable=False, index=True)

    message = db.Column(db.String(255), nullable=False)
    payload = db.Column(db.JSON, nullable=True)

    seen = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    dispatched_at = db.Column(db.DateTime, nullable=True)

    booking = db.relationship("Booking")
    user = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.event_type,
            "booking_id": self.booking_id,
            "message": self.message,
            "seen": self.seen,
            "created_at": self.created_at.isoformat(),
        }
