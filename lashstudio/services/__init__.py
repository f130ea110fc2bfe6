"""Booking, checkout, membership and refund services.

The helpers below build collaborators from the active Flask app so that
routes stay thin; services themselves take their collaborators explicitly.
"""
from __future__ import annotations

from flask import current_app

from ..config import BookingPolicy
from ..errors import UpstreamUnavailableError
from .notifications import NotificationDispatcher, Notifier
from .payments import StripeGateway


def get_policy() -> BookingPolicy:
    return BookingPolicy.from_config(current_app.config)


def get_gateway(required: bool = True) -> StripeGateway | None:
    """Return a Stripe gateway, or ``None`` when optional and unconfigured."""
    try:
        return StripeGateway(
            current_app.config.get("STRIPE_SECRET_KEY"),
            current_app.config.get("STRIPE_WEBHOOK_SECRET"),
        )
    except UpstreamUnavailableError:
        if required:
            raise
        return None


def get_dispatcher() -> NotificationDispatcher:
    return current_app.extensions["notifications"]


def init_notifications(app) -> NotificationDispatcher:
    notifier = Notifier(
        api_key=app.config.get("RESEND_API_KEY"),
        from_email=app.config.get("FROM_EMAIL", "onboarding@resend.dev"),
        store_name=app.config.get("STORE_NAME", ""),
        admin_email=app.config.get("STORE_EMAIL"),
    )
    dispatcher = NotificationDispatcher(
        notifier,
        run_async=bool(app.config.get("NOTIFY_ASYNC", True)),
        max_attempts=int(app.config.get("NOTIFY_MAX_ATTEMPTS", 3)),
        retry_delay=float(app.config.get("NOTIFY_RETRY_DELAY_SECONDS", 2)),
    )
    app.extensions["notifications"] = dispatcher
    return dispatcher
