from flask import Blueprint, request, jsonify

from core import orchestrator
from core.errors import InvalidSignature
from utils.audit import log_event

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")


@webhook_bp.post("/stripe")
def stripe_webhook():
    sig_header = request.headers.get("Stripe-Signature")
    payload = request.get_data()

    try:
        result, target = orchestrator.handle_payment_webhook(payload, sig_header)
    except InvalidSignature:
        log_event("PAYMENT_SIGNATURE_INVALID", user_id=None, entity="webhook", entity_id="stripe")
        return jsonify(error="Invalid webhook signature"), 400

    if target is not None:
        entity = "draft" if target.__tablename__ == "booking_drafts" else "booking"
        log_event(
            "PAYMENT_PAID" if result.success else ("PAYMENT_FAILED" if result.declined else "PAYMENT_EVENT"),
            user_id=None,
            entity=entity,
            entity_id=target.id,
            metadata={"stripe_session_id": result.session_id, "event": result.event_type},
        )
    return jsonify(received=True), 200
