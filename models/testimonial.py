from models.db import db
from utils.clock import utcnow

class Testimonial(db.Model):
    __tablename__ = "testimonials"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(128), db.ForeignKey("users.id"), nullable=True, index=True)
    name = db.Column(db.String(120), nullable=False)
    batch = db.Column(db.String(80), nullable=True)
    story = db.Column(db.Text, nullable=False)
    service_taken = db.Column(db.String(160), nullable=False)
    image_url = db.Column(db.String(500), nullable=True)

    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    # status values: pending, approved, rejected

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "batch": self.batch,
            "story": self.story,
            "service_taken": self.service_taken,
            "image_url": self.image_url,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
        }
