"""Thin wrapper around the Stripe SDK used by the checkout and refund services."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

import stripe

from ..errors import UpstreamUnavailableError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class CheckoutSession:
    id: str
    url: str | None = None
    payment_status: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    payment_intent: str | None = None
    subscription: str | None = None
    customer: str | None = None


@dataclass
class Subscription:
    id: str
    cancel_at_period_end: bool = False
    current_period_end: int | None = None
    billing_cycle_anchor: int | None = None
    start_date: int | None = None


def _object_id(value: object) -> str | None:
    """Stripe returns either an id string or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return getattr(value, "id", None)


def _field(obj: object, name: str) -> object:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


@contextmanager
def _stripe_call(action: str) -> Iterator[None]:
    try:
        yield
    except stripe.StripeError as exc:
        logger.exception("Stripe API error while %s", action)
        raise UpstreamUnavailableError(f"Payment processor error while {action}") from exc


class StripeGateway:
    """Payment processor collaborator.

    Every failing call raises ``UpstreamUnavailableError`` with the Stripe
    exception chained, so callers never need to import ``stripe`` themselves.
    """

    def __init__(self, secret_key: str | None, webhook_secret: str | None = None) -> None:
        if not secret_key:
            logger.warning("Stripe secret key not configured")
            raise UpstreamUnavailableError("Payment processing not configured")
        stripe.api_key = secret_key
        self.webhook_secret = webhook_secret

    def create_checkout_session(self, **params: object) -> CheckoutSession:
        with _stripe_call("creating checkout session"):
            session = stripe.checkout.Session.create(**params)
        return CheckoutSession(id=session.id, url=getattr(session, "url", None))

    def retrieve_checkout_session(self, session_id: str, expand: list[str] | None = None) -> CheckoutSession:
        with _stripe_call("retrieving checkout session"):
            if expand:
                session = stripe.checkout.Session.retrieve(session_id, expand=expand)
            else:
                session = stripe.checkout.Session.retrieve(session_id)
        metadata = _field(session, "metadata") or {}
        return CheckoutSession(
            id=_field(session, "id") or session_id,
            url=_field(session, "url"),
            payment_status=_field(session, "payment_status"),
            metadata={key: str(value) for key, value in dict(metadata).items()},
            payment_intent=_object_id(_field(session, "payment_intent")),
            subscription=_object_id(_field(session, "subscription")),
            customer=_object_id(_field(session, "customer")),
        )

    def create_customer(self, email: str, name: str, metadata: dict[str, str] | None = None) -> str:
        with _stripe_call("creating customer"):
            customer = stripe.Customer.create(email=email, name=name, metadata=metadata or {})
        return customer.id

    def retrieve_subscription(self, subscription_id: str) -> Subscription:
        with _stripe_call("retrieving subscription"):
            sub = stripe.Subscription.retrieve(subscription_id)

        period_end = _field(sub, "current_period_end")
        if period_end is None:
            # Newer API versions report the billing period on the subscription items.
            items = _field(_field(sub, "items") or {}, "data") or []
            if items:
                period_end = _field(items[0], "current_period_end")

        return Subscription(
            id=_field(sub, "id") or subscription_id,
            cancel_at_period_end=bool(_field(sub, "cancel_at_period_end") or False),
            current_period_end=period_end,
            billing_cycle_anchor=_field(sub, "billing_cycle_anchor"),
            start_date=_field(sub, "start_date"),
        )

    def update_subscription(self, subscription_id: str, cancel_at_period_end: bool) -> None:
        with _stripe_call("updating subscription"):
            stripe.Subscription.modify(subscription_id, cancel_at_period_end=cancel_at_period_end)

    def create_refund(self, payment_intent_id: str, reason: str = "requested_by_customer") -> str:
        with _stripe_call("creating refund"):
            refund = stripe.Refund.create(payment_intent=payment_intent_id, reason=reason)
        return refund.id

    def construct_event(self, payload: bytes, signature: str | None) -> dict[str, object]:
        if not self.webhook_secret:
            raise UpstreamUnavailableError("Stripe webhook secret not configured")
        if not signature:
            raise ValidationError("No signature")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as exc:
            raise ValidationError("Invalid webhook payload") from exc
        except stripe.SignatureVerificationError as exc:
            raise ValidationError("Invalid signature") from exc
        return event
