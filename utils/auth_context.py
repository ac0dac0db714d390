from functools import wraps
from flask import g, jsonify
from models import db
from models.user import User, Role
from security.identity import get_identity_from_request

def _ensure_profile(user_id, email, name):
    user = db.session.get(User, user_id)
    if user:
        return user

    # first visit: create the profile the identity collaborator vouched for
    user = User(id=user_id, email=email, name=name or "New User")
    user_role = Role.query.filter_by(name="USER").first()
    if user_role:
        user.roles.append(user_role)
    db.session.add(user)
    db.session.commit()
    return user

def load_current_user():
    identity = get_identity_from_request()
    if not identity:
        g.user = None
        return
    g.user = _ensure_profile(*identity)

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper
