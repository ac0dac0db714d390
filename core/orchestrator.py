"""
Booking Orchestrator: the server-side state machine behind the booking flow.

    SERVICE_SELECTED -> SLOT_HELD -> DETAILS_COLLECTED -> PAYMENT_PENDING -> CONFIRMED
                                                      \\-> (pay later) ------/
    PAYMENT_PENDING <-> PAYMENT_FAILED   (bounded by PAYMENT_MAX_ATTEMPTS)
    any live state  ->  HOLD_EXPIRED     (hold TTL elapsed; details discarded)
    any live state  ->  CANCELLED

Every step loads the draft, checks ownership and checks the hold's TTL before
doing anything else. The orchestrator never holds a lock itself; slot
accounting is serialized inside the reservation manager.
"""

import logging
import secrets

from flask import current_app

from models import db
from models.booking import Booking, PAYMENT_PAID, PAYMENT_PAY_LATER, STATUS_CANCELLED
from models.draft import (
    BookingDraft, SERVICE_SELECTED, SLOT_HELD, DETAILS_COLLECTED, PAYMENT_PENDING,
    CONFIRMED, HOLD_EXPIRED, PAYMENT_FAILED, CANCELLED,
)
from models.hold import HOLD_ACTIVE, HOLD_EXPIRED as HOLD_STATUS_EXPIRED
from models.payment import Payment
from models.slot import Slot
from core import catalog, events, ledger, reservations
from core.errors import (
    DraftNotFound, BookingNotFound, InvalidTransition, ServiceNotBookable,
    SlotNotFound, SlotUnavailable, HoldExpired, HoldNotFound, PaymentAttemptsExhausted,
    GatewayError, ReservationBusy,
)
from core.payments import get_gateway
from utils import clock
from utils.validation import validate_booking_details

logger = logging.getLogger(__name__)

HOLDING_STATES = (SLOT_HELD, DETAILS_COLLECTED, PAYMENT_PENDING, PAYMENT_FAILED)


def _new_draft_id() -> str:
    return "drf_" + secrets.token_hex(10)


def _max_attempts() -> int:
    return current_app.config.get("PAYMENT_MAX_ATTEMPTS", 2)


def _load_draft(draft_id, user_id=None) -> BookingDraft:
    draft = db.session.get(BookingDraft, draft_id) if draft_id else None
    if not draft or (user_id is not None and draft.user_id != user_id):
        raise DraftNotFound()
    return draft


def _require_state(draft: BookingDraft, *states):
    if draft.state not in states:
        raise InvalidTransition(f"Not allowed while booking is {draft.state.lower()}")


def _expire_draft(draft: BookingDraft):
    draft.state = HOLD_EXPIRED
    draft.details = None
    draft.last_error = "hold_expired"
    db.session.commit()
    logger.info("Draft %s expired with its hold %s", draft.id, draft.hold_id)


def _refresh_expiry(draft: BookingDraft, now) -> bool:
    """Moves a draft whose hold lapsed to HOLD_EXPIRED. Returns True if it did."""
    if draft.state not in HOLDING_STATES or not draft.hold_id:
        return False
    hold = reservations.get_hold(draft.hold_id)
    lapsed = hold.status == HOLD_STATUS_EXPIRED or (hold.status == HOLD_ACTIVE and hold.is_expired(now))
    if not lapsed:
        return False
    reservations.expire_hold(hold.id, now)
    _expire_draft(draft)
    return True


def _ensure_hold_alive(draft: BookingDraft, now):
    if _refresh_expiry(draft, now):
        raise HoldExpired()


def _abandon(draft: BookingDraft, now, reason: str):
    if draft.hold_id:
        try:
            reservations.cancel_hold(draft.hold_id, draft.user_id, now)
        except HoldNotFound:
            pass  # already released
    draft.state = CANCELLED
    draft.details = None
    draft.last_error = reason
    db.session.commit()


def get_draft(draft_id, user_id, now=None) -> BookingDraft:
    draft = _load_draft(draft_id, user_id)
    _refresh_expiry(draft, now or clock.utcnow())
    return draft


# ---------- ServiceSelected ----------
def start(user_id, service_id) -> BookingDraft:
    service = catalog.get_service(service_id)
    if not service.is_bookable:
        raise ServiceNotBookable()

    draft = BookingDraft(
        id=_new_draft_id(),
        user_id=user_id,
        service_id=service.id,
        state=SERVICE_SELECTED,
    )
    db.session.add(draft)
    db.session.commit()
    return draft


# ---------- ServiceSelected -> SlotHeld ----------
def hold_slot(draft_id, user_id, slot_id, now=None) -> BookingDraft:
    now = now or clock.utcnow()
    draft = _load_draft(draft_id, user_id)
    _ensure_hold_alive(draft, now)
    _require_state(draft, SERVICE_SELECTED, SLOT_HELD)

    slot = db.session.get(Slot, slot_id) if slot_id else None
    if not slot or slot.service_id != draft.service_id:
        raise SlotNotFound()
    if draft.state == SLOT_HELD and draft.slot_id == slot.id:
        return draft

    # SlotFull / SlotUnavailable leave the draft where it was
    hold, created = reservations.create_hold(slot.id, user_id, now)

    previous_hold_id = draft.hold_id if draft.state == SLOT_HELD else None
    if previous_hold_id and previous_hold_id != hold.id:
        try:
            reservations.cancel_hold(previous_hold_id, user_id, now)
        except HoldNotFound:
            pass  # expired or released meanwhile

    if not created:
        # the same user re-entered the flow: the older draft gives the hold up
        stale = (
            BookingDraft.query
            .filter(
                BookingDraft.hold_id == hold.id,
                BookingDraft.id != draft.id,
                BookingDraft.state.in_(HOLDING_STATES),
            )
            .all()
        )
        for other in stale:
            other.state = CANCELLED
            other.last_error = "superseded"

    draft.slot_id = slot.id
    draft.hold_id = hold.id
    draft.state = SLOT_HELD
    draft.last_error = None
    db.session.commit()
    return draft


# ---------- SlotHeld -> DetailsCollected ----------
def submit_details(draft_id, user_id, data: dict, now=None) -> BookingDraft:
    now = now or clock.utcnow()
    draft = _load_draft(draft_id, user_id)
    _ensure_hold_alive(draft, now)
    _require_state(draft, SLOT_HELD, DETAILS_COLLECTED)

    service = catalog.get_service(draft.service_id)
    draft.details = validate_booking_details(data, require_exam=service.has_details_page)
    draft.state = DETAILS_COLLECTED
    db.session.commit()
    return draft


# ---------- DetailsCollected -> PaymentPending ----------
def begin_payment(draft_id, user_id, now=None):
    """Returns (draft, intent). A retry from PAYMENT_FAILED keeps the same hold."""
    now = now or clock.utcnow()
    draft = _load_draft(draft_id, user_id)
    _ensure_hold_alive(draft, now)
    _require_state(draft, DETAILS_COLLECTED, PAYMENT_PENDING, PAYMENT_FAILED)

    if draft.payment_attempts >= _max_attempts():
        _abandon(draft, now, "payment_attempts_exhausted")
        raise PaymentAttemptsExhausted()

    service = catalog.get_service(draft.service_id)
    slot = db.session.get(Slot, draft.slot_id)
    intent = get_gateway().create_payment_intent(
        amount=service.price,
        reference_id=draft.id,
        description=f"{service.name} ({slot.start_time:%d %b %Y %H:%M})",
        metadata={"kind": "draft", "user_id": user_id, "slot_id": slot.id},
    )

    db.session.add(Payment(
        draft_id=draft.id,
        amount=service.price,
        currency=current_app.config.get("PAYMENT_CURRENCY", "inr"),
        status="INIT",
        stripe_session_id=intent.id,
    ))
    draft.payment_ref = intent.id
    draft.payment_attempts += 1
    draft.state = PAYMENT_PENDING
    draft.last_error = None
    db.session.commit()
    return draft, intent


def _confirm(draft: BookingDraft, booking, payment=None, now=None):
    """Runs inside the conversion transaction."""
    draft.state = CONFIRMED
    draft.booking_id = booking.id
    draft.last_error = None
    if payment is not None:
        payment.status = "PAID"
        payment.paid_at = now
        payment.booking_id = booking.id
    events.emit(booking, "booking.confirmed", f"Booking for '{events.short_name(booking)}' is confirmed.")


# ---------- PaymentPending -> Confirmed (pay later) ----------
def choose_pay_later(draft_id, user_id, now=None) -> BookingDraft:
    """Never touches the payment gateway."""
    now = now or clock.utcnow()
    draft = _load_draft(draft_id, user_id)
    _ensure_hold_alive(draft, now)
    _require_state(draft, DETAILS_COLLECTED, PAYMENT_PENDING, PAYMENT_FAILED)

    try:
        reservations.convert_hold_to_booking(
            draft.hold_id, draft.details, PAYMENT_PAY_LATER, now=now,
            on_converted=lambda booking: _confirm(draft, booking),
        )
    except HoldExpired:
        _expire_draft(draft)
        raise
    except SlotUnavailable:
        _abandon(draft, now, "slot_unavailable")
        raise
    except ReservationBusy:
        # hold is still ACTIVE; the client repeats this step
        logger.warning("Draft %s: pay-later conversion lost every retry", draft_id)
        raise
    return draft


def cancel(draft_id, user_id, now=None) -> BookingDraft:
    now = now or clock.utcnow()
    draft = _load_draft(draft_id, user_id)
    if draft.state == CONFIRMED:
        raise InvalidTransition("Booking is confirmed; cancel the booking instead")
    if draft.state in (CANCELLED, HOLD_EXPIRED):
        return draft
    _abandon(draft, now, "cancelled_by_user")
    return draft


# ---------- PaymentPending -> Confirmed (gateway) ----------
def _orphan_payment(payment: Payment, reason: str):
    """Money arrived for something that can no longer be booked: refund it."""
    payment.status = "ORPHANED"
    db.session.commit()
    logger.warning("Payment %s (%s) orphaned: %s", payment.id, payment.transaction_id, reason)
    if not payment.transaction_id:
        return
    try:
        get_gateway().refund(payment.transaction_id)
    except GatewayError:
        logger.error("Refund of orphaned payment %s failed; left for manual follow-up", payment.id)
        return
    payment.status = "REFUNDED"
    db.session.commit()


def _settle_draft_payment(payment: Payment, result, now):
    draft = db.session.get(BookingDraft, payment.draft_id)
    if not draft or result.reference_id != draft.id:
        logger.warning("Payment %s reference %r does not match its draft", payment.id, result.reference_id)
        return None

    if result.success:
        # recorded before conversion so an orphan refund still knows what to refund
        payment.transaction_id = result.transaction_id
        db.session.commit()
        if result.amount is not None and result.amount != payment.amount:
            _orphan_payment(payment, f"amount {result.amount} != {payment.amount}")
            return draft

        if draft.state == CONFIRMED:
            booking = ledger.get_booking(draft.booking_id)
            if booking.payment_status == PAYMENT_PAY_LATER and booking.status != STATUS_CANCELLED:
                ledger.update_payment_status(booking.id, PAYMENT_PAID, transaction_id=result.transaction_id)
                payment.status = "PAID"
                payment.paid_at = now
                payment.booking_id = booking.id
                db.session.commit()
            else:
                _orphan_payment(payment, "draft already confirmed")
            return draft

        if draft.state not in (PAYMENT_PENDING, PAYMENT_FAILED):
            _orphan_payment(payment, f"draft is {draft.state}")
            return draft

        try:
            reservations.convert_hold_to_booking(
                draft.hold_id, draft.details, PAYMENT_PAID,
                transaction_id=result.transaction_id, now=now,
                on_converted=lambda booking: _confirm(draft, booking, payment, now),
            )
        except HoldExpired:
            _expire_draft(draft)
            _orphan_payment(payment, "hold expired before payment was confirmed")
        except HoldNotFound:
            _orphan_payment(payment, "hold no longer active")
        except SlotUnavailable:
            _abandon(draft, now, "slot_unavailable")
            _orphan_payment(payment, "slot retired or already started")
        except ReservationBusy:
            # payment stays INIT so the gateway's redelivery settles it
            logger.warning("Draft %s: paid conversion lost every retry; awaiting redelivery", payment.draft_id)
            raise
        return draft

    if result.declined:
        payment.status = "FAILED"
        if draft.state == PAYMENT_PENDING and draft.payment_ref == payment.stripe_session_id:
            if _refresh_expiry(draft, now):
                return draft
            draft.state = PAYMENT_FAILED
            draft.last_error = "payment_declined"
            if draft.payment_attempts >= _max_attempts():
                _abandon(draft, now, "payment_attempts_exhausted")
                return draft
        db.session.commit()
    return draft


def _settle_booking_payment(payment: Payment, result, now):
    booking = db.session.get(Booking, payment.booking_id)
    if not booking or result.reference_id != booking.id:
        logger.warning("Payment %s reference %r does not match its booking", payment.id, result.reference_id)
        return None

    if result.success:
        payment.transaction_id = result.transaction_id
        if booking.status == STATUS_CANCELLED or booking.payment_status == PAYMENT_PAID:
            _orphan_payment(payment, f"booking is {booking.status}/{booking.payment_status}")
            return booking
        ledger.update_payment_status(booking.id, PAYMENT_PAID, transaction_id=result.transaction_id)
        payment.status = "PAID"
        payment.paid_at = now
        events.emit(booking, "booking.paid", f"Payment received for '{events.short_name(booking)}'.")
        db.session.commit()
    elif result.declined:
        payment.status = "FAILED"
        db.session.commit()
    return booking


def handle_payment_webhook(payload, signature_header, now=None):
    """
    Verifies a gateway confirmation and applies it. InvalidSignature
    propagates and leaves every draft and hold untouched.
    """
    now = now or clock.utcnow()
    result = get_gateway().verify_payment(payload, signature_header)

    if not result.session_id:
        return result, None
    payment = Payment.query.filter_by(stripe_session_id=result.session_id).first()
    if not payment:
        logger.warning("Webhook %s for unknown checkout session %s", result.event_type, result.session_id)
        return result, None
    if payment.status in ("PAID", "ORPHANED", "REFUNDED"):
        return result, None  # redelivery

    if payment.booking_id and not payment.draft_id:
        return result, _settle_booking_payment(payment, result, now)
    return result, _settle_draft_payment(payment, result, now)


# ---------- pay-later bookings paying up ----------
def pay_booking(booking_id, user_id):
    booking = ledger.get_booking(booking_id)
    if booking.user_id != user_id:
        raise BookingNotFound()
    if booking.payment_status != PAYMENT_PAY_LATER or booking.status == STATUS_CANCELLED:
        raise InvalidTransition("This booking has no outstanding payment")

    service = catalog.get_service(booking.service_id)
    intent = get_gateway().create_payment_intent(
        amount=service.price,
        reference_id=booking.id,
        description=f"{service.name} (booking {booking.id})",
        metadata={"kind": "booking", "user_id": user_id},
    )
    db.session.add(Payment(
        booking_id=booking.id,
        amount=service.price,
        currency=current_app.config.get("PAYMENT_CURRENCY", "inr"),
        status="INIT",
        stripe_session_id=intent.id,
    ))
    db.session.commit()
    return booking, intent


def refund_booking(booking_id, now=None):
    """Admin refund of a paid booking; cancels it first if still live."""
    now = now or clock.utcnow()
    booking = ledger.get_booking(booking_id)
    if booking.payment_status != PAYMENT_PAID or not booking.transaction_id:
        raise InvalidTransition("Booking is not in a refundable state (not paid or no transaction id)")
    if booking.refunded_at:
        raise InvalidTransition("Booking was already refunded")

    get_gateway().refund(booking.transaction_id)

    if booking.status != STATUS_CANCELLED:
        booking = ledger.cancel_booking(booking.id, reason="Refunded by admin", now=now)
    ledger.mark_refunded(booking, now)
    Payment.query.filter_by(transaction_id=booking.transaction_id).update(
        {"status": "REFUNDED"}, synchronize_session=False,
    )
    db.session.commit()
    return booking


def expire_stale_drafts(now=None) -> int:
    """Sweep companion: drafts whose hold lapsed move to HOLD_EXPIRED."""
    now = now or clock.utcnow()
    count = 0
    for draft in BookingDraft.query.filter(BookingDraft.state.in_(HOLDING_STATES)).all():
        if _refresh_expiry(draft, now):
            count += 1
    return count
