from models.db import db
from utils.clock import utcnow

class BlogPost(db.Model):
    __tablename__ = "blog_posts"

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(160), unique=True, nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    excerpt = db.Column(db.String(500), nullable=True)
    body = db.Column(db.Text, nullable=False)
    author = db.Column(db.String(120), nullable=True)
    image_url = db.Column(db.String(500), nullable=True)

    is_published = db.Column(db.Boolean, default=False, nullable=False)
    published_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self, with_body=True):
        out = {
            "id": self.id,
            "slug": self.slug,
            "title": self.title,
            "excerpt": self.excerpt,
            "author": self.author,
            "image_url": self.image_url,
            "is_published": self.is_published,
            "published_at": self.published_at.isoformat() if self.published_at else None,
        }
        if with_body:
            out["body"] = self.body
        return out
