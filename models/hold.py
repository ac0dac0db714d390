from models.db import db
from utils.clock import utcnow

HOLD_ACTIVE = "ACTIVE"
HOLD_EXPIRED = "EXPIRED"
HOLD_CANCELLED = "CANCELLED"
HOLD_CONVERTED = "CONVERTED"

class Hold(db.Model):
    __tablename__ = "holds"

    id = db.Column(db.String(40), primary_key=True)

    slot_id = db.Column(db.Integer, db.ForeignKey("slots.id"), nullable=False, index=True)
    user_id = db.Column(db.String(128), db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(20), nullable=False, default=HOLD_ACTIVE)
    # status values: ACTIVE, EXPIRED, CANCELLED, CONVERTED

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    released_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        # one live hold per (slot, user)
        db.Index(
            "uq_active_hold_slot_user",
            "slot_id",
            "user_id",
            unique=True,
            sqlite_where=db.text("status = 'ACTIVE'"),
            postgresql_where=db.text("status = 'ACTIVE'"),
        ),
    )

    def is_expired(self, now) -> bool:
        return self.expires_at <= now

    def to_dict(self):
        return {
            "id": self.id,
            "slot_id": self.slot_id,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }
