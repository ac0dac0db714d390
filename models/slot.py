from datetime import timedelta

from models.db import db
from utils.clock import utcnow

class Slot(db.Model):
    __tablename__ = "slots"

    id = db.Column(db.Integer, primary_key=True)

    service_id = db.Column(db.String(80), db.ForeignKey("services.id"), nullable=False, index=True)
    start_time = db.Column(db.DateTime, nullable=False, index=True)
    duration_minutes = db.Column(db.Integer, nullable=False, default=60)

    capacity = db.Column(db.Integer, nullable=False, default=1)
    held_count = db.Column(db.Integer, nullable=False, default=0)
    confirmed_count = db.Column(db.Integer, nullable=False, default=0)

    # retired slots stay around for bookings that reference them
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("service_id", "start_time", name="uq_service_slot_time"),
        db.CheckConstraint("capacity >= 1", name="ck_slot_capacity_positive"),
    )

    # UPDATEs carry "WHERE version = :old" so a lost race raises StaleDataError
    __mapper_args__ = {"version_id_col": version}

    @property
    def end_time(self):
        return self.start_time + timedelta(minutes=self.duration_minutes)

    def to_dict(self, held=None):
        held = self.held_count if held is None else held
        return {
            "id": self.id,
            "service_id": self.service_id,
            "date": self.start_time.date().isoformat(),
            "time": self.start_time.strftime("%H:%M"),
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "capacity": self.capacity,
            "remaining": max(self.capacity - held - self.confirmed_count, 0),
            "is_active": self.is_active,
        }
