from models.db import db
from utils.clock import utcnow

class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    draft_id = db.Column(db.String(40), db.ForeignKey("booking_drafts.id"), nullable=True, index=True)
    booking_id = db.Column(db.String(40), db.ForeignKey("bookings.id"), nullable=True, index=True)

    provider = db.Column(db.String(20), nullable=False, default="STRIPE")
    amount = db.Column(db.Integer, nullable=False)   # smallest unit
    currency = db.Column(db.String(10), nullable=False, default="inr")

    status = db.Column(db.String(20), nullable=False, default="INIT")  # INIT, PAID, FAILED, ORPHANED, REFUNDED
    stripe_session_id = db.Column(db.String(255), nullable=True, unique=True, index=True)
    transaction_id = db.Column(db.String(255), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    paid_at = db.Column(db.DateTime, nullable=True)
