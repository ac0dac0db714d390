"""
Booking Ledger: the durable record of confirmed bookings.

Bookings are only created through ``reservations.convert_hold_to_booking``;
``create_booking`` adds the row to the caller's transaction and does not
commit.
"""

import logging
import secrets
from datetime import timedelta

from flask import current_app

from models import db
from models.booking import (
    Booking, PAYMENT_PAID, PAYMENT_PAY_LATER, PAYMENT_STATUSES, BOOKING_STATUSES,
    STATUS_UPCOMING, STATUS_PENDING_APPROVAL, STATUS_CANCELLED, STATUS_COMPLETED,
)
from models.slot import Slot
from core import events
from core.errors import BookingNotFound, AlreadyCancelled, InvalidTransition, ValidationFailed
from core.slot_lock import lock_slot, check_slot_counters, run_slot_transaction
from utils import clock
from utils.validation import text_field

logger = logging.getLogger(__name__)


def _new_booking_id() -> str:
    return "bk_" + secrets.token_hex(8)


def create_booking(hold, slot, details: dict, payment_status: str, transaction_id=None, now=None) -> Booking:
    now = now or clock.utcnow()
    if payment_status not in (PAYMENT_PAID, PAYMENT_PAY_LATER):
        raise ValueError(f"Cannot confirm a booking with payment status {payment_status!r}")

    booking = Booking(
        id=_new_booking_id(),
        transaction_id=transaction_id,
        service_id=slot.service_id,
        slot_id=slot.id,
        hold_id=hold.id,
        user_id=hold.user_id,
        name=details["name"],
        email=details["email"],
        phone=details["phone"],
        exam_applied=details.get("exam_applied"),
        previous_attempts=details.get("previous_attempts"),
        payment_status=payment_status,
        # pay-later bookings are tentative until an admin approves or payment lands
        status=STATUS_UPCOMING if payment_status == PAYMENT_PAID else STATUS_PENDING_APPROVAL,
        created_at=now,
        updated_at=now,
    )
    template = current_app.config.get("MEETING_LINK_TEMPLATE")
    if template:
        booking.meeting_link = template.format(booking_id=booking.id)

    db.session.add(booking)
    db.session.flush()
    return booking


def get_booking(booking_id) -> Booking:
    booking = db.session.get(Booking, booking_id) if booking_id else None
    if not booking:
        raise BookingNotFound()
    return booking


def update_payment_status(booking_id, status: str, transaction_id=None) -> Booking:
    """Caller commits."""
    if status not in PAYMENT_STATUSES:
        raise ValidationFailed(details={"payment_status": f"Unknown payment status {status}"})

    booking = get_booking(booking_id)
    if booking.status == STATUS_CANCELLED:
        raise InvalidTransition("Booking is cancelled")

    booking.payment_status = status
    if transaction_id:
        booking.transaction_id = transaction_id
    if status == PAYMENT_PAID and booking.status == STATUS_PENDING_APPROVAL:
        booking.status = STATUS_UPCOMING
    return booking


def cancel_booking(booking_id, reason=None, now=None):
    """
    Cancels a booking. Before the session starts the confirmed unit goes back
    to the slot; afterwards the cancellation is recorded and slot accounting
    is left alone (no refund).
    """
    now = now or clock.utcnow()
    cutoff = timedelta(hours=current_app.config.get("CANCEL_CUTOFF_HOURS", 12))
    get_booking(booking_id)

    def attempt():
        booking = get_booking(booking_id)
        slot = lock_slot(booking.slot_id)
        db.session.refresh(booking)

        if booking.status == STATUS_CANCELLED:
            raise AlreadyCancelled()

        booking.status = STATUS_CANCELLED
        booking.cancelled_at = now
        booking.cancel_reason = reason

        if now < slot.start_time:
            slot.confirmed_count -= 1
            booking.capacity_released = True
            if booking.payment_status == PAYMENT_PAID and slot.start_time - now >= cutoff:
                booking.refund_requested = True
                booking.refund_reason = reason or "Cancelled before cutoff"
        check_slot_counters(slot)

        events.emit(booking, "booking.cancelled", f"Session for '{events.short_name(booking)}' was cancelled.")
        return booking

    booking = run_slot_transaction(attempt)
    logger.info("Booking %s cancelled (released=%s)", booking.id, booking.capacity_released)
    return booking


def update_booking(booking_id, data: dict) -> Booking:
    """Admin edits: status (not cancel), meeting link, report url."""
    booking = get_booking(booking_id)
    previous_status = booking.status

    status = data.get("status")
    if status is not None:
        if status not in BOOKING_STATUSES or status == STATUS_CANCELLED:
            raise ValidationFailed(details={"status": "Use the cancel endpoint to cancel; otherwise one of pending_approval, upcoming, completed"})
        if booking.status == STATUS_CANCELLED:
            raise InvalidTransition("Booking is cancelled")
        booking.status = status

    for field in ("meeting_link", "report_url", "user_feedback"):
        if field in data:
            setattr(booking, field, text_field(data, field) or None)

    name = events.short_name(booking)
    if previous_status != STATUS_UPCOMING and booking.status == STATUS_UPCOMING and booking.meeting_link:
        events.emit(booking, "booking.scheduled", f"Session for '{name}' is scheduled.")
    if "report_url" in data and booking.report_url and booking.status == STATUS_COMPLETED:
        events.emit(booking, "booking.report_ready", f"Feedback report for '{name}' is now available.")

    db.session.commit()
    return booking


def mark_refunded(booking: Booking, now=None):
    """Caller commits."""
    booking.refund_requested = False
    booking.refunded_at = now or clock.utcnow()


def list_bookings_for_user(user_id, status=None):
    q = Booking.query.filter_by(user_id=user_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Booking.created_at.desc()).all()


def list_all_bookings(status=None, payment_status=None, limit=200):
    q = Booking.query
    if status:
        q = q.filter_by(status=status)
    if payment_status:
        q = q.filter_by(payment_status=payment_status)
    return q.order_by(Booking.created_at.desc()).limit(limit).all()


def release_unpaid_pay_later(now=None):
    """
    Cancels pay-later bookings still unpaid PAY_LATER_DEADLINE_HOURS before
    their session, handing the unit back to the slot. Returns the cancelled ids.
    """
    now = now or clock.utcnow()
    deadline = timedelta(hours=current_app.config.get("PAY_LATER_DEADLINE_HOURS", 24))

    rows = (
        Booking.query
        .join(Slot, Booking.slot_id == Slot.id)
        .filter(
            Booking.payment_status == PAYMENT_PAY_LATER,
            Booking.status != STATUS_CANCELLED,
            Slot.start_time > now,
            Slot.start_time <= now + deadline,
        )
        .all()
    )

    released = []
    for booking in rows:
        try:
            cancel_booking(booking.id, reason="Unpaid pay-later booking released", now=now)
        except AlreadyCancelled:
            continue
        released.append(booking.id)
    if released:
        logger.info("Released %s unpaid pay-later bookings", len(released))
    return released
