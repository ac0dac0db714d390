"""
Reservation Manager: time-bounded holds on one unit of a slot's capacity.

A hold is ACTIVE until it expires, is cancelled, or is converted into a
booking. Each of those transitions moves exactly one unit out of the slot's
``held_count`` and happens inside ``run_slot_transaction``.
"""

import logging
import secrets
from datetime import timedelta

from flask import current_app

from models import db
from models.hold import Hold, HOLD_ACTIVE, HOLD_EXPIRED, HOLD_CANCELLED, HOLD_CONVERTED
from core import ledger
from core.errors import (
    SlotNotFound, SlotFull, SlotUnavailable, HoldAlreadyExists,
    HoldNotFound, HoldExpired, NotOwner, ReservationBusy,
)
from core.slot_lock import lock_slot, check_slot_counters, run_slot_transaction
from utils import clock

logger = logging.getLogger(__name__)


def _new_hold_id() -> str:
    return "hold_" + secrets.token_hex(10)


def _hold_ttl() -> timedelta:
    return timedelta(seconds=current_app.config.get("HOLD_TTL_SECONDS", 900))


def _release(hold: Hold, slot, status: str, now):
    hold.status = status
    hold.released_at = now
    slot.held_count -= 1


def _sweep_slot(slot, now) -> int:
    expired = (
        Hold.query
        .filter(Hold.slot_id == slot.id, Hold.status == HOLD_ACTIVE, Hold.expires_at <= now)
        .all()
    )
    for hold in expired:
        _release(hold, slot, HOLD_EXPIRED, now)
    return len(expired)


def _lock_hold(hold_id):
    hold = db.session.get(Hold, hold_id) if hold_id else None
    if not hold:
        raise HoldNotFound()
    slot = lock_slot(hold.slot_id)
    # re-read under the slot lock; every hold transition also writes the slot
    db.session.refresh(hold)
    return hold, slot


def get_hold(hold_id) -> Hold:
    hold = db.session.get(Hold, hold_id) if hold_id else None
    if not hold:
        raise HoldNotFound()
    return hold


def create_hold(slot_id, user_id, now=None):
    """
    Returns (hold, created). A second call for the same (slot, user) while the
    first hold is alive returns that hold with created=False, or raises
    HoldAlreadyExists when HOLD_REUSE_EXISTING is off.
    """
    now = now or clock.utcnow()
    reuse = current_app.config.get("HOLD_REUSE_EXISTING", True)

    def attempt():
        slot = lock_slot(slot_id)
        if not slot or not slot.is_active:
            raise SlotNotFound()
        if slot.start_time <= now:
            raise SlotUnavailable()

        swept = _sweep_slot(slot, now)

        existing = Hold.query.filter_by(slot_id=slot.id, user_id=user_id, status=HOLD_ACTIVE).first()
        if existing:
            if not reuse:
                db.session.commit()
                raise HoldAlreadyExists()
            if swept:
                check_slot_counters(slot)
            return existing, False

        # first come, first served: no waiting list
        if slot.held_count + slot.confirmed_count >= slot.capacity:
            if swept:
                check_slot_counters(slot)
                db.session.commit()
            raise SlotFull()

        hold = Hold(
            id=_new_hold_id(),
            slot_id=slot.id,
            user_id=user_id,
            status=HOLD_ACTIVE,
            created_at=now,
            # a hold never outlives the session start
            expires_at=min(now + _hold_ttl(), slot.start_time),
        )
        db.session.add(hold)
        slot.held_count += 1
        check_slot_counters(slot)
        return hold, True

    hold, created = run_slot_transaction(attempt)
    if created:
        logger.info("Hold %s created on slot %s for user %s", hold.id, slot_id, user_id)
    return hold, created


def expire_hold(hold_id, now=None) -> bool:
    """Expires a hold whose TTL has passed. No-op (False) otherwise."""
    now = now or clock.utcnow()

    def attempt():
        hold, slot = _lock_hold(hold_id)
        if hold.status != HOLD_ACTIVE or not hold.is_expired(now):
            return False
        _release(hold, slot, HOLD_EXPIRED, now)
        check_slot_counters(slot)
        return True

    return run_slot_transaction(attempt)


def cancel_hold(hold_id, user_id, now=None) -> Hold:
    now = now or clock.utcnow()

    def attempt():
        hold, slot = _lock_hold(hold_id)
        if hold.user_id != user_id:
            raise NotOwner()
        if hold.status != HOLD_ACTIVE:
            raise HoldNotFound()
        _release(hold, slot, HOLD_EXPIRED if hold.is_expired(now) else HOLD_CANCELLED, now)
        check_slot_counters(slot)
        return hold

    return run_slot_transaction(attempt)


def convert_hold_to_booking(hold_id, details: dict, payment_status: str, transaction_id=None, now=None, on_converted=None):
    """
    Turns a live hold into a booking in one transaction: the hold is marked
    CONVERTED, one unit moves from held to confirmed and the booking row is
    written. ``on_converted(booking)`` runs before the commit so callers can
    add their own rows to the same transaction.

    Expiry is checked after the slot lock is taken; an expired hold is
    released and HoldExpired raised, with no booking written. A hold on a slot
    that was retired or has started is released and SlotUnavailable raised.

    Losing the write race is retried CONVERT_TXN_RETRIES times; after that
    ReservationBusy is raised and the hold stays ACTIVE.
    """
    now = now or clock.utcnow()

    def attempt():
        hold, slot = _lock_hold(hold_id)
        if hold.status == HOLD_EXPIRED:
            raise HoldExpired()
        if hold.status != HOLD_ACTIVE:
            raise HoldNotFound()
        if not slot.is_active or slot.start_time <= now:
            _release(hold, slot, HOLD_EXPIRED if hold.is_expired(now) else HOLD_CANCELLED, now)
            check_slot_counters(slot)
            db.session.commit()
            raise SlotUnavailable()
        if hold.is_expired(now):
            _release(hold, slot, HOLD_EXPIRED, now)
            check_slot_counters(slot)
            db.session.commit()
            raise HoldExpired()

        hold.status = HOLD_CONVERTED
        hold.released_at = now
        slot.held_count -= 1
        slot.confirmed_count += 1

        booking = ledger.create_booking(hold, slot, details, payment_status, transaction_id=transaction_id, now=now)
        check_slot_counters(slot)
        if on_converted:
            on_converted(booking)
        return booking

    booking = run_slot_transaction(
        attempt,
        retries=current_app.config.get("CONVERT_TXN_RETRIES", 10),
        busy=ReservationBusy,
    )
    logger.info("Hold %s converted into booking %s (%s)", hold_id, booking.id, payment_status)
    return booking


def sweep_expired_holds(now=None) -> int:
    now = now or clock.utcnow()
    slot_ids = [
        row[0] for row in
        db.session.query(Hold.slot_id)
        .filter(Hold.status == HOLD_ACTIVE, Hold.expires_at <= now)
        .distinct()
        .all()
    ]

    total = 0
    for slot_id in slot_ids:
        def attempt(slot_id=slot_id):
            slot = lock_slot(slot_id)
            count = _sweep_slot(slot, now)
            if count:
                check_slot_counters(slot)
            return count
        total += run_slot_transaction(attempt)

    if total:
        logger.info("Expired %s holds across %s slots", total, len(slot_ids))
    return total
