from models.db import db
from utils.clock import utcnow

# kind -> attributes that kind must carry
RESOURCE_KINDS = {
    "video": ("url", "duration_minutes"),
    "document": ("url", "file_format"),
    "link": ("url",),
}

class Resource(db.Model):
    __tablename__ = "resources"

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(20), nullable=False)  # video, document, link
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    service_category = db.Column(db.String(80), nullable=False, index=True)

    url = db.Column(db.String(500), nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=True)  # video only
    file_format = db.Column(db.String(20), nullable=True)    # document only

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.CheckConstraint("kind IN ('video', 'document', 'link')", name="ck_resource_kind"),
    )

    def to_dict(self):
        out = {
            "id": self.id,
            "kind": self.kind,
            "title": self.title,
            "description": self.description,
            "service_category": self.service_category,
        }
        for field in RESOURCE_KINDS[self.kind]:
            out[field] = getattr(self, field)
        return out
