import re

from flask import Blueprint, request, jsonify, g
from sqlalchemy.exc import IntegrityError

from core import events
from models import db
from models.blog_post import BlogPost
from models.resource import Resource, RESOURCE_KINDS
from models.testimonial import Testimonial
from models.user_message import UserMessage
from security.rbac import admin_required
from utils import clock
from utils.auth_context import login_required
from utils.audit import log_event
from utils.validation import text_field

content_bp = Blueprint("content", __name__)

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def _slugify(text: str) -> str:
    return _SLUG_STRIP.sub("-", (text or "").lower()).strip("-")


# ---------- PUBLIC: testimonials ----------
@content_bp.get("/testimonials")
def list_testimonials():
    rows = (
        Testimonial.query
        .filter_by(status="approved")
        .order_by(Testimonial.created_at.desc())
        .all()
    )
    return jsonify([t.to_dict() for t in rows]), 200


@content_bp.post("/testimonials")
@login_required
def submit_testimonial():
    data = request.get_json(silent=True) or {}
    story = text_field(data, "story")
    service_taken = text_field(data, "service_taken")
    if len(story) < 20:
        return jsonify(error="story must be at least 20 characters"), 400
    if not service_taken:
        return jsonify(error="service_taken is required"), 400

    t = Testimonial(
        user_id=g.user.id,
        name=text_field(data, "name") or (g.user.name or "").strip() or "Anonymous",
        batch=text_field(data, "batch") or None,
        story=story,
        service_taken=service_taken,
        status="pending",
    )
    db.session.add(t)
    db.session.commit()

    log_event("TESTIMONIAL_SUBMIT", user_id=g.user.id, entity="testimonial", entity_id=t.id)
    return jsonify(id=t.id, status=t.status), 201


# ---------- PUBLIC: blog ----------
@content_bp.get("/blog")
def list_posts():
    rows = (
        BlogPost.query
        .filter_by(is_published=True)
        .order_by(BlogPost.published_at.desc())
        .all()
    )
    return jsonify([p.to_dict(with_body=False) for p in rows]), 200


@content_bp.get("/blog/<slug>")
def get_post(slug: str):
    post = BlogPost.query.filter_by(slug=slug, is_published=True).first()
    if not post:
        return jsonify(error="Post not found"), 404
    return jsonify(post.to_dict()), 200


# ---------- USERS: resources ----------
@content_bp.get("/resources")
@login_required
def list_resources():
    q = Resource.query
    category = request.args.get("category")
    if category:
        q = q.filter_by(service_category=category)
    kind = request.args.get("kind")
    if kind:
        q = q.filter_by(kind=kind)
    rows = q.order_by(Resource.created_at.desc()).all()
    return jsonify([r.to_dict() for r in rows]), 200


# ---------- USERS: contact messages ----------
@content_bp.post("/messages")
@login_required
def create_message():
    data = request.get_json(silent=True) or {}
    subject = text_field(data, "subject")
    body = text_field(data, "body")
    if not subject or not body:
        return jsonify(error="subject and body are required"), 400

    msg = UserMessage(
        user_id=g.user.id,
        sender_type="user",
        subject=subject[:160],
        body=body,
        status="new",
    )
    db.session.add(msg)
    db.session.commit()

    log_event("MESSAGE_CREATE", user_id=g.user.id, entity="user_message", entity_id=msg.id)
    return jsonify(id=msg.id, status=msg.status), 201


@content_bp.get("/messages/me")
@login_required
def my_messages():
    rows = (
        UserMessage.query
        .filter_by(user_id=g.user.id)
        .order_by(UserMessage.created_at.asc(), UserMessage.id.asc())
        .all()
    )
    return jsonify([m.to_dict() for m in rows]), 200


# ---------- ADMIN: testimonials ----------
@content_bp.get("/admin/testimonials")
@admin_required
def admin_list_testimonials():
    q = Testimonial.query
    status = request.args.get("status")
    if status:
        q = q.filter_by(status=status)
    rows = q.order_by(Testimonial.created_at.desc()).limit(200).all()
    return jsonify([t.to_dict() for t in rows]), 200


@content_bp.post("/admin/testimonials/<int:testimonial_id>/status")
@admin_required
def admin_moderate_testimonial(testimonial_id: int):
    data = request.get_json(silent=True) or {}
    status = text_field(data, "status").lower()
    if status not in ("approved", "rejected", "pending"):
        return jsonify(error="status must be approved, rejected or pending"), 400

    t = db.session.get(Testimonial, testimonial_id)
    if not t:
        return jsonify(error="Testimonial not found"), 404
    t.status = status
    db.session.commit()

    log_event("ADMIN_TESTIMONIAL_MODERATE", user_id=g.user.id, entity="testimonial", entity_id=t.id, metadata={"status": status})
    return jsonify(t.to_dict()), 200


# ---------- ADMIN: blog ----------
def _apply_post_fields(post: BlogPost, data: dict):
    for field in ("title", "excerpt", "body", "author", "image_url"):
        if field in data:
            setattr(post, field, text_field(data, field) or None)
    if "slug" in data:
        post.slug = _slugify(data.get("slug"))
    if "is_published" in data:
        post.is_published = bool(data.get("is_published"))
        if post.is_published and not post.published_at:
            post.published_at = clock.utcnow()


@content_bp.post("/admin/blog")
@admin_required
def admin_create_post():
    data = request.get_json(silent=True) or {}
    title = text_field(data, "title")
    body = text_field(data, "body")
    if not title or not body:
        return jsonify(error="title and body are required"), 400

    post = BlogPost(slug=_slugify(data.get("slug") or title))
    _apply_post_fields(post, data)
    if not post.slug:
        return jsonify(error="slug could not be derived from title"), 400

    db.session.add(post)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify(error="Slug already exists"), 409

    log_event("ADMIN_BLOG_CREATE", user_id=g.user.id, entity="blog_post", entity_id=post.id)
    return jsonify(post.to_dict()), 201


@content_bp.put("/admin/blog/<int:post_id>")
@admin_required
def admin_update_post(post_id: int):
    data = request.get_json(silent=True) or {}
    post = db.session.get(BlogPost, post_id)
    if not post:
        return jsonify(error="Post not found"), 404

    _apply_post_fields(post, data)
    if not post.title or not post.body or not post.slug:
        db.session.rollback()
        return jsonify(error="title, body and slug cannot be empty"), 400
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify(error="Slug already exists"), 409

    log_event("ADMIN_BLOG_UPDATE", user_id=g.user.id, entity="blog_post", entity_id=post.id)
    return jsonify(post.to_dict()), 200


@content_bp.delete("/admin/blog/<int:post_id>")
@admin_required
def admin_delete_post(post_id: int):
    post = db.session.get(BlogPost, post_id)
    if not post:
        return jsonify(error="Post not found"), 404
    db.session.delete(post)
    db.session.commit()

    log_event("ADMIN_BLOG_DELETE", user_id=g.user.id, entity="blog_post", entity_id=post_id)
    return jsonify(message="Deleted"), 200


# ---------- ADMIN: resources ----------
def _build_resource(data: dict):
    """Returns (resource, error). Each kind carries only its own fields."""
    kind = text_field(data, "kind").lower()
    if kind not in RESOURCE_KINDS:
        return None, f"kind must be one of {', '.join(sorted(RESOURCE_KINDS))}"

    title = text_field(data, "title")
    category = text_field(data, "service_category")
    url = text_field(data, "url")
    if not title or not category:
        return None, "title and service_category are required"
    if not url.startswith(("http://", "https://")):
        return None, "url must be an http(s) link"

    resource = Resource(
        kind=kind,
        title=title,
        description=text_field(data, "description") or None,
        service_category=category,
        url=url,
    )

    if kind == "video":
        duration = data.get("duration_minutes")
        if isinstance(duration, bool) or not isinstance(duration, int) or duration < 1:
            return None, "video resources need duration_minutes (positive integer)"
        resource.duration_minutes = duration
    elif kind == "document":
        file_format = text_field(data, "file_format").lower()
        if not file_format:
            return None, "document resources need file_format (e.g. pdf)"
        resource.file_format = file_format

    return resource, None


@content_bp.post("/admin/resources")
@admin_required
def admin_create_resource():
    data = request.get_json(silent=True) or {}
    resource, error = _build_resource(data)
    if error:
        return jsonify(error=error), 400

    db.session.add(resource)
    db.session.commit()

    log_event("ADMIN_RESOURCE_CREATE", user_id=g.user.id, entity="resource", entity_id=resource.id, metadata={"kind": resource.kind})
    return jsonify(resource.to_dict()), 201


@content_bp.delete("/admin/resources/<int:resource_id>")
@admin_required
def admin_delete_resource(resource_id: int):
    resource = db.session.get(Resource, resource_id)
    if not resource:
        return jsonify(error="Resource not found"), 404
    db.session.delete(resource)
    db.session.commit()

    log_event("ADMIN_RESOURCE_DELETE", user_id=g.user.id, entity="resource", entity_id=resource_id)
    return jsonify(message="Deleted"), 200


# ---------- ADMIN: messages ----------
@content_bp.get("/admin/messages")
@admin_required
def admin_list_messages():
    q = UserMessage.query.filter_by(sender_type="user")
    status = request.args.get("status")
    if status:
        q = q.filter_by(status=status)
    rows = q.order_by(UserMessage.created_at.desc()).limit(200).all()
    return jsonify([m.to_dict() for m in rows]), 200


@content_bp.post("/admin/messages/<int:message_id>/reply")
@admin_required
def admin_reply_message(message_id: int):
    data = request.get_json(silent=True) or {}
    body = text_field(data, "body")
    if not body:
        return jsonify(error="body is required"), 400

    original = db.session.get(UserMessage, message_id)
    if not original:
        return jsonify(error="Message not found"), 404

    subject = original.subject if original.subject.startswith("Re: ") else f"Re: {original.subject}"
    reply = UserMessage(
        user_id=original.user_id,
        parent_id=original.id,
        sender_type="admin",
        admin_name=g.user.name,
        subject=subject[:160],
        body=body,
        status="new",
    )
    original.status = "replied"
    db.session.add(reply)
    events.notify_user(
        original.user_id,
        "message.replied",
        events.reply_notice(original.subject),
        payload={"message_id": original.id},
    )
    db.session.commit()

    log_event("ADMIN_MESSAGE_REPLY", user_id=g.user.id, entity="user_message", entity_id=original.id)
    return jsonify(reply.to_dict()), 201


@content_bp.post("/admin/messages/<int:message_id>/status")
@admin_required
def admin_message_status(message_id: int):
    data = request.get_json(silent=True) or {}
    status = text_field(data, "status").lower()
    if status not in ("new", "read", "replied", "closed"):
        return jsonify(error="status must be new, read, replied or closed"), 400

    msg = db.session.get(UserMessage, message_id)
    if not msg:
        return jsonify(error="Message not found"), 404
    msg.status = status
    db.session.commit()
    return jsonify(msg.to_dict()), 200
