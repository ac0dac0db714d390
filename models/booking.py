from models.db import db
from utils.clock import utcnow

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_PAY_LATER = "pay_later"
PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_PAY_LATER)

STATUS_PENDING_APPROVAL = "pending_approval"
STATUS_UPCOMING = "upcoming"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
BOOKING_STATUSES = (STATUS_PENDING_APPROVAL, STATUS_UPCOMING, STATUS_COMPLETED, STATUS_CANCELLED)

class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.String(40), primary_key=True)  # booking reference shown to the user
    transaction_id = db.Column(db.String(255), nullable=True, unique=True, index=True)

    service_id = db.Column(db.String(80), db.ForeignKey("services.id"), nullable=False, index=True)
    slot_id = db.Column(db.Integer, db.ForeignKey("slots.id"), nullable=False, index=True)
    hold_id = db.Column(db.String(40), db.ForeignKey("holds.id"), nullable=False)
    user_id = db.Column(db.String(128), db.ForeignKey("users.id"), nullable=False, index=True)

    # contact details captured in the flow
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(30), nullable=False)
    exam_applied = db.Column(db.String(160), nullable=True)
    previous_attempts = db.Column(db.Integer, nullable=True)

    payment_status = db.Column(db.String(20), nullable=False, default=PAYMENT_PENDING)
    status = db.Column(db.String(20), nullable=False, default=STATUS_PENDING_APPROVAL)

    meeting_link = db.Column(db.String(500), nullable=True)
    report_url = db.Column(db.String(500), nullable=True)
    user_feedback = db.Column(db.Text, nullable=True)

    refund_requested = db.Column(db.Boolean, default=False, nullable=False)
    refund_reason = db.Column(db.String(255), nullable=True)
    refunded_at = db.Column(db.DateTime, nullable=True)

    # True once the confirmed unit went back to the slot
    capacity_released = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    slot = db.relationship("Slot")
    service = db.relationship("Service")

    __table_args__ = (
        # a hold converts into at most one booking
        db.UniqueConstraint("hold_id", name="uq_booking_hold_once"),
    )

    def to_dict(self):
        s = self.slot
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "service_id": self.service_id,
            "service_name": self.service.name if self.service else None,
            "slot": {
                "slot_id": self.slot_id,
                "date": s.start_time.date().isoformat() if s else None,
                "time": s.start_time.strftime("%H:%M") if s else None,
                "start_time": s.start_time.isoformat() if s else None,
            },
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "exam_applied": self.exam_applied,
            "previous_attempts": self.previous_attempts,
            "payment_status": self.payment_status,
            "status": self.status,
            "meeting_link": self.meeting_link,
            "report_url": self.report_url,
            "user_feedback": self.user_feedback,
            "refund_requested": self.refund_requested,
            "created_at": self.created_at.isoformat(),
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
        }
