from datetime import timedelta

import pytest
from sqlalchemy.orm.exc import StaleDataError

from core import availability, ledger, reservations
from core.errors import (
    SlotFull, SlotUnavailable, HoldAlreadyExists, HoldExpired, HoldNotFound, NotOwner,
    InvariantViolation, SlotBusy, ReservationBusy,
)
from core.slot_lock import check_slot_counters, run_slot_transaction
from models import db
from models.booking import Booking, PAYMENT_PAY_LATER, PAYMENT_PAID
from models.hold import Hold, HOLD_ACTIVE, HOLD_EXPIRED, HOLD_CONVERTED, HOLD_CANCELLED
from models.slot import Slot
from utils import clock

from conftest import make_user

DETAILS = {"name": "Asha Rao", "email": "asha@example.com", "phone": "9876543210"}


@pytest.fixture
def users(app):
    return [make_user(name).id for name in ("alice", "bob", "carol")]


def _slot(slot_id):
    slot = db.session.get(Slot, slot_id)
    db.session.refresh(slot)
    return slot


def test_capacity_one_gives_exactly_one_hold(make_slot, users):
    slot_id = make_slot(capacity=1)
    alice, bob, _ = users

    hold, created = reservations.create_hold(slot_id, alice)
    assert created

    with pytest.raises(SlotFull):
        reservations.create_hold(slot_id, bob)

    assert Hold.query.filter_by(slot_id=slot_id, status=HOLD_ACTIVE).count() == 1
    assert _slot(slot_id).held_count == 1


def test_same_user_gets_same_hold_back(make_slot, users):
    slot_id = make_slot(capacity=2)
    alice = users[0]

    first, created_first = reservations.create_hold(slot_id, alice)
    second, created_second = reservations.create_hold(slot_id, alice)

    assert first.id == second.id
    assert created_first and not created_second
    assert _slot(slot_id).held_count == 1


def test_duplicate_hold_rejected_when_reuse_disabled(app, make_slot, users):
    app.config["HOLD_REUSE_EXISTING"] = False
    slot_id = make_slot(capacity=2)

    reservations.create_hold(slot_id, users[0])
    with pytest.raises(HoldAlreadyExists):
        reservations.create_hold(slot_id, users[0])


def test_started_slot_cannot_be_held(make_slot, users):
    slot_id = make_slot(starts_in=timedelta(hours=1))
    later = clock.utcnow() + timedelta(hours=2)

    with pytest.raises(SlotUnavailable):
        reservations.create_hold(slot_id, users[0], now=later)


def test_hold_past_ttl_never_converts(make_slot, users):
    slot_id = make_slot()
    t0 = clock.utcnow()
    hold, _ = reservations.create_hold(slot_id, users[0], now=t0)

    with pytest.raises(HoldExpired):
        reservations.convert_hold_to_booking(hold.id, DETAILS, PAYMENT_PAY_LATER, now=t0 + timedelta(minutes=16))

    assert Booking.query.count() == 0
    assert db.session.get(Hold, hold.id).status == HOLD_EXPIRED
    slot = _slot(slot_id)
    assert (slot.held_count, slot.confirmed_count) == (0, 0)


def test_expired_hold_frees_unit_for_next_user(make_slot, users):
    slot_id = make_slot(capacity=1)
    alice, bob, _ = users
    t0 = clock.utcnow()

    reservations.create_hold(slot_id, alice, now=t0)
    with pytest.raises(SlotFull):
        reservations.create_hold(slot_id, bob, now=t0 + timedelta(minutes=5))

    hold, created = reservations.create_hold(slot_id, bob, now=t0 + timedelta(minutes=16))
    assert created and hold.user_id == bob
    assert _slot(slot_id).held_count == 1


def test_conversion_moves_unit_from_held_to_confirmed(make_slot, users):
    slot_id = make_slot(capacity=2)
    hold, _ = reservations.create_hold(slot_id, users[0])

    booking = reservations.convert_hold_to_booking(hold.id, DETAILS, PAYMENT_PAID, transaction_id="pi_1")

    assert booking.id.startswith("bk_")
    assert booking.transaction_id == "pi_1"
    assert booking.status == "upcoming"
    assert db.session.get(Hold, hold.id).status == HOLD_CONVERTED
    slot = _slot(slot_id)
    assert (slot.held_count, slot.confirmed_count) == (0, 1)


def test_converted_hold_cannot_convert_twice(make_slot, users):
    slot_id = make_slot(capacity=2)
    hold, _ = reservations.create_hold(slot_id, users[0])
    reservations.convert_hold_to_booking(hold.id, DETAILS, PAYMENT_PAY_LATER)

    with pytest.raises(HoldNotFound):
        reservations.convert_hold_to_booking(hold.id, DETAILS, PAYMENT_PAY_LATER)
    assert Booking.query.count() == 1


def test_held_plus_confirmed_stays_within_capacity(make_slot, users):
    slot_id = make_slot(capacity=2)
    alice, bob, carol = users

    a, _ = reservations.create_hold(slot_id, alice)
    b, _ = reservations.create_hold(slot_id, bob)
    reservations.convert_hold_to_booking(a.id, DETAILS, PAYMENT_PAY_LATER)
    with pytest.raises(SlotFull):
        reservations.create_hold(slot_id, carol)
    reservations.convert_hold_to_booking(b.id, DETAILS, PAYMENT_PAY_LATER)
    with pytest.raises(SlotFull):
        reservations.create_hold(slot_id, carol)

    slot = _slot(slot_id)
    assert slot.held_count + slot.confirmed_count <= slot.capacity
    assert slot.confirmed_count == 2


def test_cancel_hold_checks_owner(make_slot, users):
    slot_id = make_slot()
    hold, _ = reservations.create_hold(slot_id, users[0])

    with pytest.raises(NotOwner):
        reservations.cancel_hold(hold.id, users[1])

    reservations.cancel_hold(hold.id, users[0])
    assert db.session.get(Hold, hold.id).status == HOLD_CANCELLED
    assert _slot(slot_id).held_count == 0


def test_expire_hold_is_noop_before_ttl(make_slot, users):
    slot_id = make_slot()
    t0 = clock.utcnow()
    hold, _ = reservations.create_hold(slot_id, users[0], now=t0)

    assert reservations.expire_hold(hold.id, now=t0 + timedelta(minutes=1)) is False
    assert reservations.expire_hold(hold.id, now=t0 + timedelta(minutes=15)) is True
    assert _slot(slot_id).held_count == 0


def test_sweep_releases_only_lapsed_holds(make_slot, users):
    first = make_slot(capacity=1)
    second = make_slot(capacity=1, starts_in=timedelta(days=4))
    t0 = clock.utcnow()

    reservations.create_hold(first, users[0], now=t0)
    reservations.create_hold(second, users[1], now=t0 + timedelta(minutes=10))

    released = reservations.sweep_expired_holds(now=t0 + timedelta(minutes=20))

    assert released == 1
    assert _slot(first).held_count == 0
    assert _slot(second).held_count == 1


def test_counter_drift_is_reported_not_repaired(make_slot):
    slot_id = make_slot(capacity=2)
    slot = _slot(slot_id)
    slot.held_count = 1  # no hold row behind it

    with pytest.raises(InvariantViolation):
        check_slot_counters(slot)
    assert slot.held_count == 1
    db.session.rollback()


def test_version_conflict_is_retried(app):
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise StaleDataError("slot changed underneath")
        return "done"

    assert run_slot_transaction(flaky) == "done"
    assert len(calls) == 2


def test_persistent_conflict_gives_up_with_slot_busy(app):
    app.config["SLOT_TXN_RETRIES"] = 2
    calls = []

    def always_stale():
        calls.append(1)
        raise StaleDataError("slot changed underneath")

    with pytest.raises(SlotBusy):
        run_slot_transaction(always_stale)
    assert len(calls) == 2


def test_hold_expiry_is_capped_at_session_start(make_slot, users):
    slot_id = make_slot(starts_in=timedelta(minutes=5))
    t0 = clock.utcnow()

    hold, _ = reservations.create_hold(slot_id, users[0], now=t0)

    assert hold.expires_at == _slot(slot_id).start_time


def test_hold_does_not_convert_once_session_started(make_slot, users):
    slot_id = make_slot(starts_in=timedelta(minutes=5))
    t0 = clock.utcnow()
    hold, _ = reservations.create_hold(slot_id, users[0], now=t0)

    with pytest.raises(SlotUnavailable):
        reservations.convert_hold_to_booking(hold.id, DETAILS, PAYMENT_PAY_LATER, now=t0 + timedelta(minutes=10))

    assert Booking.query.count() == 0
    assert db.session.get(Hold, hold.id).status == HOLD_EXPIRED
    slot = _slot(slot_id)
    assert (slot.held_count, slot.confirmed_count) == (0, 0)


def test_hold_on_retired_slot_does_not_convert(make_slot, users):
    slot_id = make_slot(capacity=2)
    hold, _ = reservations.create_hold(slot_id, users[0])
    availability.retire_slot(slot_id)

    with pytest.raises(SlotUnavailable):
        reservations.convert_hold_to_booking(hold.id, DETAILS, PAYMENT_PAY_LATER)

    assert Booking.query.count() == 0
    assert db.session.get(Hold, hold.id).status == HOLD_CANCELLED
    slot = _slot(slot_id)
    assert (slot.held_count, slot.confirmed_count) == (0, 0)


def test_conversion_keeps_retrying_past_the_hold_limit(app, make_slot, users, monkeypatch):
    app.config["SLOT_TXN_RETRIES"] = 3
    slot_id = make_slot()
    hold, _ = reservations.create_hold(slot_id, users[0])

    real_create = ledger.create_booking
    calls = []

    def contended(*args, **kwargs):
        calls.append(1)
        if len(calls) <= 4:
            raise StaleDataError("slot changed underneath")
        return real_create(*args, **kwargs)

    monkeypatch.setattr(ledger, "create_booking", contended)
    booking = reservations.convert_hold_to_booking(hold.id, DETAILS, PAYMENT_PAY_LATER)

    assert len(calls) == 5
    assert db.session.get(Hold, hold.id).status == HOLD_CONVERTED
    assert booking.slot_id == slot_id
    slot = _slot(slot_id)
    assert (slot.held_count, slot.confirmed_count) == (0, 1)


def test_contended_conversion_keeps_the_hold(app, make_slot, users, monkeypatch):
    app.config["CONVERT_TXN_RETRIES"] = 2
    slot_id = make_slot()
    hold, _ = reservations.create_hold(slot_id, users[0])

    def always_stale(*args, **kwargs):
        raise StaleDataError("slot changed underneath")

    monkeypatch.setattr(ledger, "create_booking", always_stale)
    with pytest.raises(ReservationBusy) as exc:
        reservations.convert_hold_to_booking(hold.id, DETAILS, PAYMENT_PAY_LATER)

    assert exc.value.restart is False
    assert db.session.get(Hold, hold.id).status == HOLD_ACTIVE
    slot = _slot(slot_id)
    assert (slot.held_count, slot.confirmed_count) == (1, 0)


def test_retry_budget_and_error_can_be_chosen(app):
    calls = []

    def always_stale():
        calls.append(1)
        raise StaleDataError("slot changed underneath")

    with pytest.raises(ReservationBusy):
        run_slot_transaction(always_stale, retries=4, busy=ReservationBusy)
    assert len(calls) == 4
