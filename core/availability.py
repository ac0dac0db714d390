"""Per-service calendar of slots."""

from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from models import db
from models.hold import Hold, HOLD_ACTIVE
from models.slot import Slot
from core.catalog import get_service
from core.errors import SlotNotFound, ValidationFailed, Conflict
from utils import clock


def live_hold_counts(slot_ids, now):
    """Count ACTIVE, unexpired holds per slot id."""
    if not slot_ids:
        return {}
    rows = (
        db.session.query(Hold.slot_id, func.count(Hold.id))
        .filter(
            Hold.slot_id.in_(slot_ids),
            Hold.status == HOLD_ACTIVE,
            Hold.expires_at > now,
        )
        .group_by(Hold.slot_id)
        .all()
    )
    return {slot_id: count for slot_id, count in rows}


def list_slots(service_id: str, start: datetime = None, end: datetime = None, include_full=False, now=None):
    """
    Returns [(slot, live_held)] for active, not-yet-started slots of a service.
    Full slots are left out unless include_full is set.
    """
    now = now or clock.utcnow()
    service = get_service(service_id)

    q = Slot.query.filter(
        Slot.service_id == service.id,
        Slot.is_active.is_(True),
        Slot.start_time > now,
    )
    if start:
        q = q.filter(Slot.start_time >= start)
    if end:
        q = q.filter(Slot.start_time < end)

    slots = q.order_by(Slot.start_time.asc()).all()
    held = live_hold_counts([s.id for s in slots], now)

    out = []
    for s in slots:
        live = held.get(s.id, 0)
        if include_full or live + s.confirmed_count < s.capacity:
            out.append((s, live))
    return out


def create_slot(service_id: str, start_time: datetime, capacity: int = 1, duration_minutes: int = 60) -> Slot:
    service = get_service(service_id)

    errors = {}
    if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 1:
        errors["capacity"] = "Capacity must be an integer of at least 1"
    if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int) or duration_minutes < 1:
        errors["duration_minutes"] = "Duration must be a positive number of minutes"
    if start_time <= clock.utcnow():
        errors["start_time"] = "Slot must start in the future"
    if errors:
        raise ValidationFailed(details=errors)

    slot = Slot(
        service_id=service.id,
        start_time=start_time,
        duration_minutes=duration_minutes,
        capacity=capacity,
        held_count=0,
        confirmed_count=0,
    )
    db.session.add(slot)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("Slot already exists for that service and time")
    return slot


def retire_slot(slot_id: int) -> Slot:
    slot = db.session.get(Slot, slot_id)
    if not slot:
        raise SlotNotFound()
    # never deleted: bookings keep pointing at it
    slot.is_active = False
    db.session.commit()
    return slot
