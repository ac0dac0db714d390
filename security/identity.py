import hashlib
import hmac

from flask import request, current_app


def sign_user_id(user_id: str, secret: str) -> str:
    """What the identity collaborator sends in X-User-Signature."""
    return hmac.new(secret.encode("utf-8"), user_id.encode("utf-8"), hashlib.sha256).hexdigest()


def get_identity_from_request():
    """
    Returns (user_id, email, name) forwarded by the identity collaborator,
    or None when the request is anonymous or the signature does not match.
    """
    secret = current_app.config.get("IDENTITY_SHARED_SECRET")
    user_header = current_app.config.get("IDENTITY_USER_HEADER", "X-User-Id")
    sig_header = current_app.config.get("IDENTITY_SIGNATURE_HEADER", "X-User-Signature")

    user_id = (request.headers.get(user_header) or "").strip()
    signature = (request.headers.get(sig_header) or "").strip()
    if not user_id or not signature or not secret or len(user_id) > 128:
        return None

    expected = sign_user_id(user_id, secret)
    if not hmac.compare_digest(expected, signature):
        return None

    email = (request.headers.get("X-User-Email") or "").strip().lower() or None
    name = (request.headers.get("X-User-Name") or "").strip() or None
    return user_id, email, name
