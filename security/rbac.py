from functools import wraps
from flask import g, jsonify

ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"
DEFAULT_ROLES = [ROLE_USER, ROLE_ADMIN]


def is_admin(user=None) -> bool:
    user = user or getattr(g, "user", None)
    return bool(user) and ROLE_ADMIN in user.role_names


def require_roles(*role_names: str):
    """
    Usage: @require_roles("ADMIN")
    Anonymous callers get 401, signed-in callers without the role 403.
    """
    wanted = set(role_names)

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                return jsonify(error="Authentication required"), 401
            if wanted.isdisjoint(user.role_names):
                return jsonify(error="Forbidden"), 403
            return fn(*args, **kwargs)
        return wrapper
    return decorator


admin_required = require_roles(ROLE_ADMIN)
