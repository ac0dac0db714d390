from flask import Blueprint, request, jsonify, g

from models import db
from core import events
from utils.auth_context import login_required
from utils.audit import log_event
from utils.validation import is_valid_email, text_field

account_bp = Blueprint("account", __name__, url_prefix="/me")


def _profile(user):
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "phone": user.phone,
        "image_url": user.image_url,
        "roles": user.role_names,
    }


@account_bp.get("")
@login_required
def me():
    return jsonify(_profile(g.user)), 200


@account_bp.patch("")
@login_required
def update_me():
    data = request.get_json(silent=True) or {}
    user = g.user

    if "name" in data:
        name = text_field(data, "name")
        if len(name) < 2:
            return jsonify(error="Name must be at least 2 characters"), 400
        user.name = name

    if "email" in data:
        email = text_field(data, "email").lower()
        if not is_valid_email(email):
            return jsonify(error="Invalid email"), 400
        user.email = email

    if "phone" in data:
        phone = text_field(data, "phone")
        if phone and sum(c.isdigit() for c in phone) < 10:
            return jsonify(error="Phone number must be at least 10 digits"), 400
        user.phone = phone or None

    if "image_url" in data:
        user.image_url = text_field(data, "image_url") or None

    db.session.commit()
    log_event("PROFILE_UPDATE", user_id=user.id, entity="user", entity_id=user.id, metadata={"fields": sorted(data.keys())})
    return jsonify(_profile(user)), 200


@account_bp.get("/notifications")
@login_required
def notifications():
    unseen_only = request.args.get("unseen") == "1"
    rows = events.list_for_user(g.user.id, unseen_only=unseen_only)
    return jsonify([e.to_dict() for e in rows]), 200


@account_bp.post("/notifications/seen")
@login_required
def notifications_seen():
    count = events.mark_seen(g.user.id)
    return jsonify(updated=count), 200
