import hashlib
import hmac
import json
import time
from datetime import timedelta

import pytest

from app import create_app
from core import availability
from core.errors import GatewayError
from core.payments import StripeGateway, IntentRef
from models import db
from models.user import User, Role
from security.identity import sign_user_id
from security.rbac import ROLE_ADMIN, ROLE_USER
from utils import clock
from utils.seed import seed_roles, seed_catalog

IDENTITY_SECRET = "test-identity-secret"
WEBHOOK_SECRET = "whsec_test_secret"
COUNSELLING = "personal-counselling-session"
COUNSELLING_PRICE = 149900

DETAILS = {
    "name": "Asha Rao",
    "email": "asha@example.com",
    "phone": "+91 98765 43210",
}


class FakeGateway(StripeGateway):
    """Stripe without the network: checkout sessions and refunds are recorded,
    webhook signatures are verified for real."""

    def __init__(self):
        super().__init__(
            secret_key="sk_test_fake",
            webhook_secret=WEBHOOK_SECRET,
            success_url="http://localhost/pay/success",
            cancel_url="http://localhost/pay/cancel",
        )
        self.intents = []
        self.refunds = []
        self.fail_create = False

    def create_payment_intent(self, amount, reference_id, description, metadata=None):
        if self.fail_create:
            raise GatewayError()
        session_id = f"cs_test_{len(self.intents) + 1}"
        self.intents.append({"id": session_id, "amount": amount, "reference_id": reference_id, "metadata": metadata})
        return IntentRef(id=session_id, url=f"https://checkout.stripe.test/{session_id}")

    def refund(self, transaction_id):
        self.refunds.append(transaction_id)
        return {"id": f"re_{transaction_id}", "payment_intent": transaction_id}


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'test.db'}",
        "IDENTITY_SHARED_SECRET": IDENTITY_SECRET,
        "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
        "MEETING_LINK_TEMPLATE": "",
        "LOG_LEVEL": "WARNING",
    })
    with app.app_context():
        db.create_all()
        seed_roles()
        seed_catalog()
        app.extensions["payment_gateway"] = FakeGateway()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def gateway(app):
    return app.extensions["payment_gateway"]


def auth_headers(user_id, email=None, name=None):
    headers = {
        "X-User-Id": user_id,
        "X-User-Signature": sign_user_id(user_id, IDENTITY_SECRET),
    }
    if email:
        headers["X-User-Email"] = email
    if name:
        headers["X-User-Name"] = name
    return headers


def make_user(user_id, admin=False):
    user = User(id=user_id, email=f"{user_id}@example.com", name=user_id.title())
    wanted = [ROLE_USER, ROLE_ADMIN] if admin else [ROLE_USER]
    user.roles = Role.query.filter(Role.name.in_(wanted)).all()
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def admin_headers(app):
    make_user("admin-1", admin=True)
    return auth_headers("admin-1")


@pytest.fixture
def make_slot(app):
    def _make(service_id=COUNSELLING, capacity=1, starts_in=timedelta(days=3)):
        slot = availability.create_slot(service_id, clock.utcnow() + starts_in, capacity=capacity)
        return slot.id
    return _make


@pytest.fixture
def set_now(monkeypatch):
    """Pins utils.clock.utcnow for everything that reads the clock through it."""
    def _set(when):
        monkeypatch.setattr(clock, "utcnow", lambda: when)
    return _set


def checkout_event(session_id, reference_id, event_type="checkout.session.completed",
                   payment_status="paid", amount=COUNSELLING_PRICE, payment_intent="pi_test_1"):
    return {
        "id": "evt_test_1",
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "client_reference_id": reference_id,
                "metadata": {"reference_id": reference_id},
                "payment_status": payment_status,
                "amount_total": amount,
                "payment_intent": payment_intent,
            }
        },
    }


def sign_webhook(event, secret=WEBHOOK_SECRET):
    """Returns (payload, Stripe-Signature header) in Stripe's own format."""
    payload = json.dumps(event)
    timestamp = int(time.time())
    signature = hmac.new(secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return payload, f"t={timestamp},v1={signature}"


def post_webhook(client, event):
    payload, header = sign_webhook(event)
    return client.post(
        "/webhooks/stripe",
        data=payload,
        headers={"Stripe-Signature": header},
        content_type="application/json",
    )
