from models.db import db
from utils.clock import utcnow


class UserMessage(db.Model):
    __tablename__ = "user_messages"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(128), db.ForeignKey("users.id"), nullable=False, index=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("user_messages.id"), nullable=True, index=True)

    sender_type = db.Column(db.String(10), nullable=False, default="user")  # user, admin
    admin_name = db.Column(db.String(120), nullable=True)
    subject = db.Column(db.String(160), nullable=False)
    body = db.Column(db.Text, nullable=False)

    status = db.Column(db.String(20), nullable=False, default="new", index=True)
    # status values: new, read, replied, closed

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "parent_id": self.parent_id,
            "sender_type": self.sender_type,
            "admin_name": self.admin_name,
            "subject": self.subject,
            "body": self.body,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
        }
