from datetime import datetime

from flask import Blueprint, jsonify, g, request
from sqlalchemy import func

from core import availability, catalog, ledger, orchestrator
from core.errors import ValidationFailed
from models import db
from models.booking import Booking, PAYMENT_PAID, STATUS_PENDING_APPROVAL, STATUS_UPCOMING, STATUS_CANCELLED
from models.payment import Payment
from models.testimonial import Testimonial
from models.user import User
from models.user_message import UserMessage
from security.rbac import admin_required
from utils.audit import log_event
from utils.validation import text_field

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")

REPORT_KINDS = ("sessions", "sales", "users")


def _parse_start_time(value):
    if not isinstance(value, str) or not value.strip():
        raise ValidationFailed(details={"start_time": "start_time (ISO datetime) is required"})
    try:
        start = datetime.fromisoformat(value.strip())
    except ValueError:
        raise ValidationFailed(details={"start_time": "Invalid datetime. Use YYYY-MM-DDTHH:MM"})
    if start.tzinfo is not None:
        raise ValidationFailed(details={"start_time": "Send naive UTC times"})
    return start


@admin_bp.get("/overview")
@admin_required
def overview():
    pending = Booking.query.filter_by(status=STATUS_PENDING_APPROVAL).count()
    upcoming = Booking.query.filter_by(status=STATUS_UPCOMING).count()
    # amounts as charged; refunds flip the payment to REFUNDED
    total_sales = (
        db.session.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.status == "PAID")
        .scalar()
    )
    new_messages = UserMessage.query.filter_by(sender_type="user", status="new").count()
    pending_testimonials = Testimonial.query.filter_by(status="pending").count()

    log_event("ADMIN_DASHBOARD_VIEW", user_id=g.user.id)
    return jsonify(
        pending_approval=pending,
        upcoming=upcoming,
        total_sales=int(total_sales),
        new_messages=new_messages,
        pending_testimonials=pending_testimonials,
    ), 200


# ---------- services ----------
@admin_bp.get("/services")
@admin_required
def list_services():
    rows = catalog.list_services(include_inactive=True)
    return jsonify([s.to_dict() for s in rows]), 200


@admin_bp.post("/services")
@admin_required
def create_service():
    data = request.get_json(silent=True) or {}
    service = catalog.create_service(data)
    log_event("ADMIN_SERVICE_CREATE", user_id=g.user.id, entity="service", entity_id=service.id)
    return jsonify(service.to_dict()), 201


@admin_bp.patch("/services/<service_id>")
@admin_required
def update_service(service_id: str):
    data = request.get_json(silent=True) or {}
    service = catalog.update_service(service_id, data)
    log_event("ADMIN_SERVICE_UPDATE", user_id=g.user.id, entity="service", entity_id=service.id, metadata={"fields": sorted(data)})
    return jsonify(service.to_dict()), 200


# ---------- slots ----------
@admin_bp.post("/slots")
@admin_required
def create_slot():
    data = request.get_json(silent=True) or {}
    service_id = data.get("service_id")
    if not isinstance(service_id, str) or not service_id.strip():
        return jsonify(error="service_id (string) required"), 400
    service_id = service_id.strip()

    slot = availability.create_slot(
        service_id,
        _parse_start_time(data.get("start_time")),
        capacity=data.get("capacity", 1),
        duration_minutes=data.get("duration_minutes", 60),
    )
    log_event("ADMIN_SLOT_CREATE", user_id=g.user.id, entity="slot", entity_id=slot.id, metadata={"service_id": service_id, "capacity": slot.capacity})
    return jsonify(slot.to_dict()), 201


@admin_bp.get("/slots")
@admin_required
def list_slots():
    service_id = request.args.get("service_id")
    if not service_id:
        return jsonify(error="service_id required"), 400
    rows = availability.list_slots(service_id, include_full=True)
    return jsonify([
        dict(slot.to_dict(held=held), held=held, confirmed=slot.confirmed_count)
        for slot, held in rows
    ]), 200


@admin_bp.post("/slots/<int:slot_id>/retire")
@admin_required
def retire_slot(slot_id: int):
    slot = availability.retire_slot(slot_id)
    log_event("ADMIN_SLOT_RETIRE", user_id=g.user.id, entity="slot", entity_id=slot.id)
    return jsonify(message="Slot retired", id=slot.id), 200


# ---------- bookings ----------
@admin_bp.get("/bookings")
@admin_required
def list_bookings():
    rows = ledger.list_all_bookings(
        status=request.args.get("status"),
        payment_status=request.args.get("payment_status"),
    )
    log_event("ADMIN_BOOKINGS_VIEW", user_id=g.user.id)
    return jsonify([b.to_dict() for b in rows]), 200


@admin_bp.patch("/bookings/<booking_id>")
@admin_required
def update_booking(booking_id: str):
    data = request.get_json(silent=True) or {}
    booking = ledger.update_booking(booking_id, data)
    log_event("ADMIN_BOOKING_UPDATE", user_id=g.user.id, entity="booking", entity_id=booking.id, metadata={"fields": sorted(data), "status": booking.status})
    return jsonify(booking.to_dict()), 200


@admin_bp.post("/bookings/<booking_id>/cancel")
@admin_required
def cancel_booking(booking_id: str):
    data = request.get_json(silent=True) or {}
    reason = text_field(data, "reason") or "Cancelled by admin"
    booking = ledger.cancel_booking(booking_id, reason=reason)
    log_event("ADMIN_BOOKING_CANCEL", user_id=g.user.id, entity="booking", entity_id=booking.id, metadata={"reason": reason, "released": booking.capacity_released})
    return jsonify(booking.to_dict()), 200


@admin_bp.post("/bookings/<booking_id>/refund")
@admin_required
def refund_booking(booking_id: str):
    booking = orchestrator.refund_booking(booking_id)
    log_event("ADMIN_BOOKING_REFUND", user_id=g.user.id, entity="booking", entity_id=booking.id, metadata={"transaction_id": booking.transaction_id})
    return jsonify(booking.to_dict()), 200


# ---------- reports ----------
def _sessions_report():
    rows = Booking.query.filter(Booking.status != STATUS_CANCELLED).order_by(Booking.created_at.desc()).all()
    return [
        {
            "booking_id": b.id,
            "service": b.service.name if b.service else b.service_id,
            "start_time": b.slot.start_time.isoformat() if b.slot else None,
            "user": b.name,
            "email": b.email,
            "status": b.status,
            "meeting_link": b.meeting_link,
            "report_url": b.report_url,
            "user_feedback": b.user_feedback,
        }
        for b in rows
    ]


def _sales_report():
    rows = Booking.query.filter_by(payment_status=PAYMENT_PAID).order_by(Booking.created_at.desc()).all()
    charged = dict(
        db.session.query(Payment.booking_id, Payment.amount)
        .filter(Payment.booking_id.isnot(None), Payment.status.in_(("PAID", "REFUNDED")))
        .all()
    )
    return [
        {
            "booking_id": b.id,
            "transaction_id": b.transaction_id,
            "service": b.service.name if b.service else b.service_id,
            # marked paid by hand: no payment row, fall back to list price
            "amount": charged.get(b.id, b.service.price if b.service else None),
            "paid_by": b.email,
            "created_at": b.created_at.isoformat(),
            "refunded": b.refunded_at is not None,
            "user_feedback": b.user_feedback,
        }
        for b in rows
    ]


def _users_report():
    counts = dict(
        db.session.query(Booking.user_id, func.count(Booking.id))
        .group_by(Booking.user_id)
        .all()
    )
    rows = User.query.order_by(User.created_at.desc()).all()
    return [
        {
            "id": u.id,
            "name": u.name,
            "email": u.email,
            "phone": u.phone,
            "roles": u.role_names,
            "bookings": counts.get(u.id, 0),
            "created_at": u.created_at.isoformat(),
        }
        for u in rows
    ]


@admin_bp.get("/reports/<kind>")
@admin_required
def export_report(kind: str):
    builders = {"sessions": _sessions_report, "sales": _sales_report, "users": _users_report}
    if kind not in builders:
        return jsonify(error=f"kind must be one of {', '.join(REPORT_KINDS)}"), 400

    rows = builders[kind]()
    log_event("ADMIN_REPORT_EXPORT", user_id=g.user.id, metadata={"kind": kind, "rows": len(rows)})
    return jsonify(kind=kind, rows=rows), 200
