from flask import Blueprint, request, jsonify, g

from core import ledger, orchestrator
from core.errors import SlotFull, HoldExpired, BookingNotFound
from utils.auth_context import login_required
from utils.audit import log_event
from utils.validation import text_field

booking_bp = Blueprint("booking", __name__)


def _intent_payload(draft_or_booking, intent):
    return {"id": draft_or_booking.id, "checkout_url": intent.url, "payment_ref": intent.id}


# ---------- USERS: booking flow ----------
@booking_bp.post("/drafts")
@login_required
def start_draft():
    data = request.get_json(silent=True) or {}
    service_id = data.get("service_id")
    if not isinstance(service_id, str) or not service_id.strip():
        return jsonify(error="service_id (string) required"), 400
    service_id = service_id.strip()

    draft = orchestrator.start(g.user.id, service_id)
    log_event("DRAFT_START", user_id=g.user.id, entity="draft", entity_id=draft.id, metadata={"service_id": service_id})
    return jsonify(draft.to_dict()), 201


@booking_bp.get("/drafts/<draft_id>")
@login_required
def get_draft(draft_id: str):
    draft = orchestrator.get_draft(draft_id, g.user.id)
    return jsonify(draft.to_dict()), 200


@booking_bp.post("/drafts/<draft_id>/hold")
@login_required
def hold_slot(draft_id: str):
    data = request.get_json(silent=True) or {}
    slot_id = data.get("slot_id")
    if not isinstance(slot_id, int) or isinstance(slot_id, bool):
        return jsonify(error="slot_id (integer) required"), 400

    try:
        draft = orchestrator.hold_slot(draft_id, g.user.id, slot_id)
    except SlotFull:
        log_event("HOLD_FAIL_SLOT_FULL", user_id=g.user.id, entity="slot", entity_id=slot_id)
        raise

    log_event("HOLD_CREATE", user_id=g.user.id, entity="hold", entity_id=draft.hold_id, metadata={"slot_id": slot_id, "draft_id": draft.id})
    return jsonify(draft.to_dict()), 200


@booking_bp.post("/drafts/<draft_id>/details")
@login_required
def submit_details(draft_id: str):
    data = request.get_json(silent=True) or {}
    draft = orchestrator.submit_details(draft_id, g.user.id, data)
    return jsonify(draft.to_dict()), 200


@booking_bp.post("/drafts/<draft_id>/payment")
@login_required
def begin_payment(draft_id: str):
    draft, intent = orchestrator.begin_payment(draft_id, g.user.id)
    log_event("PAYMENT_SESSION_CREATED", user_id=g.user.id, entity="draft", entity_id=draft.id, metadata={"stripe_session_id": intent.id, "attempt": draft.payment_attempts})
    payload = _intent_payload(draft, intent)
    payload["state"] = draft.state
    return jsonify(payload), 200


@booking_bp.post("/drafts/<draft_id>/pay-later")
@login_required
def pay_later(draft_id: str):
    try:
        draft = orchestrator.choose_pay_later(draft_id, g.user.id)
    except HoldExpired:
        log_event("BOOKING_FAIL_HOLD_EXPIRED", user_id=g.user.id, entity="draft", entity_id=draft_id)
        raise

    booking = ledger.get_booking(draft.booking_id)
    log_event("BOOKING_CREATE", user_id=g.user.id, entity="booking", entity_id=booking.id, metadata={"payment_status": booking.payment_status})
    return jsonify(draft=draft.to_dict(), booking=booking.to_dict()), 201


@booking_bp.post("/drafts/<draft_id>/cancel")
@login_required
def cancel_draft(draft_id: str):
    draft = orchestrator.cancel(draft_id, g.user.id)
    log_event("DRAFT_CANCEL", user_id=g.user.id, entity="draft", entity_id=draft.id)
    return jsonify(draft.to_dict()), 200


# ---------- USERS: my bookings ----------
@booking_bp.get("/bookings/me")
@login_required
def my_bookings():
    status = request.args.get("status")  # pending_approval/upcoming/completed/cancelled
    rows = ledger.list_bookings_for_user(g.user.id, status=status)
    return jsonify([b.to_dict() for b in rows]), 200


@booking_bp.get("/bookings/<booking_id>")
@login_required
def get_booking(booking_id: str):
    booking = ledger.get_booking(booking_id)
    if booking.user_id != g.user.id:
        raise BookingNotFound()
    return jsonify(booking.to_dict()), 200


@booking_bp.post("/bookings/<booking_id>/cancel")
@login_required
def cancel_booking(booking_id: str):
    data = request.get_json(silent=True) or {}
    reason = text_field(data, "reason") or None

    booking = ledger.get_booking(booking_id)
    if booking.user_id != g.user.id:
        raise BookingNotFound()

    booking = ledger.cancel_booking(booking.id, reason=reason)
    log_event("BOOKING_CANCEL", user_id=g.user.id, entity="booking", entity_id=booking.id, metadata={"reason": reason, "released": booking.capacity_released})
    return jsonify(booking.to_dict()), 200


@booking_bp.post("/bookings/<booking_id>/pay")
@login_required
def pay_booking(booking_id: str):
    booking, intent = orchestrator.pay_booking(booking_id, g.user.id)
    log_event("PAYMENT_SESSION_CREATED", user_id=g.user.id, entity="booking", entity_id=booking.id, metadata={"stripe_session_id": intent.id})
    return jsonify(_intent_payload(booking, intent)), 200


@booking_bp.post("/bookings/<booking_id>/feedback")
@login_required
def leave_feedback(booking_id: str):
    data = request.get_json(silent=True) or {}
    feedback = text_field(data, "feedback")
    if not feedback:
        return jsonify(error="feedback is required"), 400

    booking = ledger.get_booking(booking_id)
    if booking.user_id != g.user.id:
        raise BookingNotFound()
    booking = ledger.update_booking(booking.id, {"user_feedback": feedback})
    return jsonify(booking.to_dict()), 200
