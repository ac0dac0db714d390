from datetime import timedelta

from core import events, reservations
from models import db
from models.booking_event import BookingEvent
from models.hold import Hold
from models.user import User
from utils import clock
from utils.emailer import booking_event_email

from conftest import auth_headers, make_user

DETAILS = {"name": "Dev Patel", "email": "dev@example.com", "phone": "9000000001"}


def _confirmed_booking(slot_id, user_id="dev"):
    make_user(user_id)
    hold, _ = reservations.create_hold(slot_id, user_id)
    booking = reservations.convert_hold_to_booking(hold.id, DETAILS, "pay_later")
    events.emit(booking, "booking.confirmed", f"Booking for '{events.short_name(booking)}' is confirmed.")
    db.session.commit()
    return booking


def test_short_name_truncates_long_service_names(make_slot):
    booking = _confirmed_booking(make_slot())
    assert events.short_name(booking) == "Personal Counsell..."


def test_dispatch_marks_only_delivered_events(make_slot):
    booking = _confirmed_booking(make_slot())
    events.emit(booking, "booking.scheduled", "Session is scheduled.")
    db.session.commit()

    outcomes = iter([(True, None), (False, "smtp down")])
    sent = events.dispatch_pending(lambda event: next(outcomes))

    assert sent == 1
    pending = BookingEvent.query.filter(BookingEvent.dispatched_at.is_(None)).all()
    assert [e.event_type for e in pending] == ["booking.scheduled"]

    assert events.dispatch_pending(lambda event: (True, None)) == 1
    assert BookingEvent.query.filter(BookingEvent.dispatched_at.is_(None)).count() == 0


def test_notifications_feed_and_seen(client, make_slot):
    _confirmed_booking(make_slot(), user_id="dev")
    headers = auth_headers("dev")

    feed = client.get("/me/notifications?unseen=1", headers=headers).get_json()
    assert [n["type"] for n in feed] == ["booking.confirmed"]

    assert client.post("/me/notifications/seen", headers=headers).get_json() == {"updated": 1}
    assert client.get("/me/notifications?unseen=1", headers=headers).get_json() == []
    assert client.get("/me/notifications", headers=auth_headers("someone-else")).get_json() == []


def test_profile_is_created_from_identity_and_editable(client):
    headers = auth_headers("new-cadet", email="Cadet@Example.com", name="New Cadet")

    me = client.get("/me", headers=headers).get_json()
    assert (me["id"], me["email"], me["roles"]) == ("new-cadet", "cadet@example.com", ["USER"])

    resp = client.patch("/me", json={"phone": "98765 43210", "name": "Cadet N"}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()["name"] == "Cadet N"
    assert client.patch("/me", json={"email": "broken"}, headers=headers).status_code == 400


def test_health(client):
    assert client.get("/health").get_json() == {"status": "ok"}


def test_sweep_holds_command(app, make_slot):
    make_user("sleepy")
    t0 = clock.utcnow() - timedelta(minutes=20)
    hold, _ = reservations.create_hold(make_slot(), "sleepy", now=t0)

    result = app.test_cli_runner().invoke(args=["sweep-holds"])

    assert result.exit_code == 0
    assert "1 hold(s) released" in result.output
    db.session.expire_all()
    assert db.session.get(Hold, hold.id).status == "EXPIRED"


def test_make_admin_command(app):
    make_user("future-admin")

    result = app.test_cli_runner().invoke(args=["make-admin", "future-admin@example.com"])

    assert "promoted to ADMIN" in result.output
    db.session.expire_all()
    assert "ADMIN" in db.session.get(User, "future-admin").role_names


def test_dispatch_events_command_keeps_events_without_smtp(app, make_slot):
    _confirmed_booking(make_slot())

    result = app.test_cli_runner().invoke(args=["dispatch-events"])

    assert "0 notification(s) sent" in result.output
    assert BookingEvent.query.filter(BookingEvent.dispatched_at.is_(None)).count() == 1


def test_release_unpaid_command(app, make_slot):
    _confirmed_booking(make_slot(starts_in=timedelta(hours=5)))

    result = app.test_cli_runner().invoke(args=["release-unpaid"])

    assert "1 pay-later booking(s) released" in result.output


def test_seed_catalog_is_idempotent(app):
    result = app.test_cli_runner().invoke(args=["seed-catalog"])
    assert "0 service(s) added" in result.output


def test_account_notice_is_emailed_to_the_user(app):
    make_user("cadet")
    event = events.notify_user("cadet", "message.replied", events.reply_notice("Re: Fees"))
    db.session.commit()

    to_email, subject, body = booking_event_email(event)

    assert to_email == "cadet@example.com"
    assert subject == 'Admin replied in: "Fees"'
    assert "/dashboard/contact" in body
