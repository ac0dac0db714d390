"""
Outbox for the notification collaborator.

Events are written in the same transaction as the booking change that caused
them; delivery (email, meeting link) happens later in ``dispatch_pending``.
"""

import logging

from models import db
from models.booking_event import BookingEvent
from utils import clock

logger = logging.getLogger(__name__)


def short_name(booking) -> str:
    name = booking.service.name if booking.service else booking.service_id
    return f"{name[:17]}..." if len(name) > 20 else name


def emit(booking, event_type: str, message: str, payload=None) -> BookingEvent:
    """Caller commits."""
    event = BookingEvent(
        event_type=event_type,
        booking_id=booking.id,
        user_id=booking.user_id,
        message=message,
        payload=payload or {"booking_id": booking.id, "status": booking.status},
        created_at=clock.utcnow(),
    )
    db.session.add(event)
    return event


def notify_user(user_id, event_type: str, message: str, payload=None) -> BookingEvent:
    """Account notice with no booking behind it. Caller commits."""
    event = BookingEvent(
        event_type=event_type,
        user_id=user_id,
        message=message,
        payload=payload,
        created_at=clock.utcnow(),
    )
    db.session.add(event)
    return event


def reply_notice(subject: str) -> str:
    snippet = subject.replace("Re: ", "")[:25]
    return f'Admin replied in: "{snippet}{"..." if len(snippet) == 25 else ""}"'


def list_for_user(user_id, unseen_only=False, limit=50):
    q = BookingEvent.query.filter_by(user_id=user_id)
    if unseen_only:
        q = q.filter_by(seen=False)
    return q.order_by(BookingEvent.created_at.desc(), BookingEvent.id.desc()).limit(limit).all()


def mark_seen(user_id) -> int:
    count = (
        BookingEvent.query
        .filter_by(user_id=user_id, seen=False)
        .update({"seen": True}, synchronize_session=False)
    )
    db.session.commit()
    return count


def dispatch_pending(send, limit=100) -> int:
    """
    Hands undelivered events to ``send(event)``; it returns (ok, error).
    Delivered events are stamped, failed ones stay pending for the next run.
    """
    pending = (
        BookingEvent.query
        .filter(BookingEvent.dispatched_at.is_(None))
        .order_by(BookingEvent.id.asc())
        .limit(limit)
        .all()
    )
    sent = 0
    for event in pending:
        ok, error = send(event)
        if ok:
            event.dispatched_at = clock.utcnow()
            sent += 1
        else:
            logger.warning("Event %s (%s) not delivered: %s", event.id, event.event_type, error)
    db.session.commit()
    return sent
