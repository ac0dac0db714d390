"""
Per-slot serialization point.

All changes to a slot's ``held_count`` / ``confirmed_count`` go through
``run_slot_transaction``: the slot row is read ``FOR UPDATE`` and its UPDATE
carries a version check, so two writers on one slot can never both commit
against the same counter values. A lost race is retried from scratch.
"""

import logging

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from models import db
from models.booking import Booking
from models.hold import Hold, HOLD_ACTIVE
from models.slot import Slot
from core.errors import InvariantViolation, SlotBusy

logger = logging.getLogger(__name__)


def lock_slot(slot_id):
    return (
        Slot.query
        .filter_by(id=slot_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


def check_slot_counters(slot: Slot):
    """Raises InvariantViolation if the counters are impossible or disagree with the rows."""
    problem = None
    if slot.held_count < 0 or slot.confirmed_count < 0:
        problem = "negative counter"
    elif slot.held_count + slot.confirmed_count > slot.capacity:
        problem = "held + confirmed exceeds capacity"
    else:
        active_holds = (
            db.session.query(func.count(Hold.id))
            .filter(Hold.slot_id == slot.id, Hold.status == HOLD_ACTIVE)
            .scalar()
        )
        live_bookings = (
            db.session.query(func.count(Booking.id))
            .filter(Booking.slot_id == slot.id, Booking.capacity_released.is_(False))
            .scalar()
        )
        if active_holds != slot.held_count:
            problem = f"held_count={slot.held_count} but {active_holds} active holds"
        elif live_bookings != slot.confirmed_count:
            problem = f"confirmed_count={slot.confirmed_count} but {live_bookings} bookings"

    if problem:
        logger.critical(
            "Slot %s accounting violated: %s (capacity=%s held=%s confirmed=%s)",
            slot.id, problem, slot.capacity, slot.held_count, slot.confirmed_count,
        )
        raise InvariantViolation(details={"slot_id": slot.id, "problem": problem})


def run_slot_transaction(fn, retries=None, busy=SlotBusy):
    """
    Runs fn() and commits. fn must lock the slot it touches with lock_slot().
    Version conflicts and unique-index races are retried ``retries`` times
    (SLOT_TXN_RETRIES by default), then ``busy`` is raised.
    """
    if retries is None:
        retries = current_app.config.get("SLOT_TXN_RETRIES", 3)
    for attempt in range(1, retries + 1):
        try:
            result = fn()
            db.session.commit()
            return result
        except (StaleDataError, IntegrityError) as exc:
            db.session.rollback()
            logger.warning("Slot write conflict (attempt %s/%s): %s", attempt, retries, exc.__class__.__name__)
        except Exception:
            db.session.rollback()
            raise
    raise busy()
