"""
Payment Gateway Adapter backed by Stripe Checkout.

Inbound confirmations are untrusted until ``verify_payment`` has checked the
``Stripe-Signature`` header against the webhook secret.
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

import stripe
from flask import current_app

from core.errors import GatewayError, InvalidSignature

logger = logging.getLogger(__name__)

SUCCESS_EVENTS = ("checkout.session.completed", "checkout.session.async_payment_succeeded")
FAILURE_EVENTS = ("checkout.session.expired", "checkout.session.async_payment_failed")


@dataclass
class IntentRef:
    id: str
    url: str


@dataclass
class PaymentResult:
    success: bool
    event_type: str
    declined: bool = False
    session_id: Optional[str] = None
    transaction_id: Optional[str] = None
    reference_id: Optional[str] = None
    kind: Optional[str] = None
    amount: Optional[int] = None


class StripeGateway:
    def __init__(self, secret_key=None, webhook_secret=None, currency="inr",
                 success_url=None, cancel_url=None, tolerance=300):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.success_url = success_url
        self.cancel_url = cancel_url
        self.tolerance = tolerance

    @classmethod
    def from_config(cls, config):
        return cls(
            secret_key=config.get("STRIPE_SECRET_KEY"),
            webhook_secret=config.get("STRIPE_WEBHOOK_SECRET"),
            currency=config.get("PAYMENT_CURRENCY", "inr"),
            success_url=config.get("STRIPE_SUCCESS_URL"),
            cancel_url=config.get("STRIPE_CANCEL_URL"),
            tolerance=config.get("STRIPE_WEBHOOK_TOLERANCE_SECONDS", 300),
        )

    def create_payment_intent(self, amount: int, reference_id: str, description: str, metadata=None) -> IntentRef:
        if not self.secret_key:
            raise GatewayError("Stripe secret key not configured")
        if not self.success_url or not self.cancel_url:
            raise GatewayError("Stripe success/cancel URLs not configured")

        meta = {"reference_id": reference_id}
        meta.update({k: str(v) for k, v in (metadata or {}).items()})

        try:
            session = stripe.checkout.Session.create(
                api_key=self.secret_key,
                mode="payment",
                line_items=[{
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {"name": description},
                        "unit_amount": amount,
                    },
                    "quantity": 1,
                }],
                client_reference_id=reference_id,
                success_url=self.success_url,
                cancel_url=self.cancel_url,
                metadata=meta,
            )
        except stripe.StripeError as exc:
            logger.error("Stripe checkout session create failed for %s: %s", reference_id, exc)
            raise GatewayError() from exc

        return IntentRef(id=session["id"], url=session["url"])

    def verify_payment(self, payload: bytes, signature_header: str) -> PaymentResult:
        if not self.webhook_secret:
            raise GatewayError("Webhook secret not configured")
        if not signature_header:
            raise InvalidSignature()

        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        try:
            stripe.WebhookSignature.verify_header(payload, signature_header, self.webhook_secret, self.tolerance)
            event = json.loads(payload)
        except (stripe.SignatureVerificationError, ValueError) as exc:
            logger.warning("Rejected payment confirmation: %s", exc)
            raise InvalidSignature() from exc

        event_type = event.get("type")
        session = (event.get("data") or {}).get("object") or {}
        meta = session.get("metadata") or {}

        success = event_type in SUCCESS_EVENTS and session.get("payment_status") in ("paid", "no_payment_required")
        return PaymentResult(
            success=success,
            event_type=event_type,
            declined=event_type in FAILURE_EVENTS,
            session_id=session.get("id"),
            transaction_id=session.get("payment_intent"),
            reference_id=meta.get("reference_id") or session.get("client_reference_id"),
            kind=meta.get("kind"),
            amount=session.get("amount_total"),
        )

    def refund(self, transaction_id: str):
        if not self.secret_key:
            raise GatewayError("Stripe secret key not configured")
        try:
            return stripe.Refund.create(api_key=self.secret_key, payment_intent=transaction_id)
        except stripe.StripeError as exc:
            logger.error("Stripe refund failed for %s: %s", transaction_id, exc)
            raise GatewayError("Refund could not be processed") from exc


def get_gateway():
    """The app-wide adapter; tests swap it through app.extensions."""
    gateway = current_app.extensions.get("payment_gateway")
    if gateway is None:
        gateway = StripeGateway.from_config(current_app.config)
        current_app.extensions["payment_gateway"] = gateway
    return gateway
