from models.db import db
from utils.clock import utcnow

class Service(db.Model):
    __tablename__ = "services"

    id = db.Column(db.String(80), primary_key=True)  # slug, e.g. "ssb-mock-interview"
    name = db.Column(db.String(160), nullable=False)
    description = db.Column(db.Text, nullable=True)

    price = db.Column(db.Integer, nullable=False, default=0)  # smallest unit (paise)
    duration = db.Column(db.String(40), nullable=True)  # display only, e.g. "60 mins"
    features = db.Column(db.JSON, nullable=False, default=list)
    image_url = db.Column(db.String(500), nullable=True)

    is_bookable = db.Column(db.Boolean, default=True, nullable=False)
    has_details_page = db.Column(db.Boolean, default=False, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "duration": self.duration,
            "features": list(self.features or []),
            "image_url": self.image_url,
            "is_bookable": self.is_bookable,
            "has_details_page": self.has_details_page,
        }
