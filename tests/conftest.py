"""Shared fixtures: an in-memory app, a mocked Stripe module and a recording notifier."""
from __future__ import annotations

import sys
from datetime import date, timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import stripe

# Ensure the project root is importable when the package is not installed.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from lashstudio import create_app
from lashstudio.auth import build_token
from lashstudio.config import TestingConfig
from lashstudio.errors import NotificationError
from lashstudio.extensions import db
from lashstudio.models import Appointment, Membership, User


class RecordingNotifier:
    """Stands in for the Resend notifier and remembers every call."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, tuple]] = []

    def _record(self, kind: str, *args: object) -> None:
        self.sent.append((kind, args))
        if self.fail:
            raise NotificationError(f"{kind} failed")

    def send_appointment_confirmation(self, *args: object) -> None:
        self._record("send_appointment_confirmation", *args)

    def send_order_confirmation(self, *args: object) -> None:
        self._record("send_order_confirmation", *args)

    def send_refund_notice(self, *args: object) -> None:
        self._record("send_refund_notice", *args)

    def send_refund_admin_notice(self, *args: object) -> None:
        self._record("send_refund_admin_notice", *args)

    def send_membership_activated(self, *args: object) -> None:
        self._record("send_membership_activated", *args)

    def send_membership_activated_admin(self, *args: object) -> None:
        self._record("send_membership_activated_admin", *args)

    def send_membership_cancelled(self, *args: object) -> None:
        self._record("send_membership_cancelled", *args)

    def send_membership_cancelled_admin(self, *args: object) -> None:
        self._record("send_membership_cancelled_admin", *args)

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.sent]


@pytest.fixture
def app():
    flask_app = create_app(TestingConfig)
    with flask_app.app_context():
        db.create_all()
    yield flask_app
    with flask_app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def notifier(app) -> RecordingNotifier:
    fake = RecordingNotifier()
    app.extensions["notifications"].notifier = fake
    return fake


@pytest.fixture
def stripe_mock():
    """Mock the Stripe SDK as seen by the payment gateway."""
    with patch("lashstudio.services.payments.stripe") as mock_stripe:
        mock_stripe.StripeError = stripe.StripeError
        mock_stripe.SignatureVerificationError = stripe.SignatureVerificationError
        mock_stripe.checkout.Session.create.return_value = MagicMock(
            id="cs_test_123", url="https://checkout.stripe.test/cs_test_123"
        )
        mock_stripe.Customer.create.return_value = MagicMock(id="cus_test_123")
        mock_stripe.Refund.create.return_value = MagicMock(id="re_test_123")
        yield mock_stripe


def next_weekday(weekday: int, min_days: int = 3) -> date:
    """First date at least ``min_days`` ahead falling on ``weekday`` (Monday is 0)."""
    candidate = date.today() + timedelta(days=min_days)
    while candidate.weekday() != weekday:
        candidate += timedelta(days=1)
    return candidate


def create_user(app, email: str = "client@example.com", role: str = "customer") -> int:
    with app.app_context():
        user = User(email=email, first_name="Test", last_name="Client", role=role)
        db.session.add(user)
        db.session.commit()
        return user.user_id


def auth_headers(app, user_id: int, role: str = "customer") -> dict[str, str]:
    with app.app_context():
        token = build_token({"user_id": user_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


def create_appointment(app, **overrides: object) -> str:
    values: dict[str, object] = {
        "service_id": "classic-full-set",
        "service_name": "Classic Full Set",
        "customer_name": "Test Client",
        "customer_email": "client@example.com",
        "date": next_weekday(0),
        "time": "09:00",
        "price_cents": 15000,
        "deposit_amount_cents": 0,
        "deposit_paid": False,
        "remaining_balance_cents": 15000,
        "balance_paid": False,
        "status": "pending",
        "payment_status": "pending",
    }
    values.update(overrides)
    with app.app_context():
        appointment = Appointment(**values)
        db.session.add(appointment)
        db.session.commit()
        return appointment.appointment_id


def give_membership(app, user_id: int, tier_id: str = "volume", **overrides: object) -> None:
    values: dict[str, object] = {
        "user_id": user_id,
        "tier_id": tier_id,
        "tier_name": f"Renfaye {tier_id.capitalize()}",
        "status": "active",
        "stripe_customer_id": "cus_existing",
        "stripe_subscription_id": "sub_existing",
    }
    values.update(overrides)
    with app.app_context():
        db.session.add(Membership(**values))
        db.session.commit()
