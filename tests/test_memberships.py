"""Tests for membership checkout, activation, cancellation and benefits."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import stripe

from conftest import auth_headers, create_user, give_membership
from lashstudio.models import Membership
from lashstudio.services.memberships import (SUBSCRIPTION_SESSION_TYPE, add_months,
                                             period_end_from_subscription, usage_period_elapsed)
from lashstudio.services.payments import Subscription

PERIOD_END = 1767225600  # 2026-01-01T00:00:00Z


def subscription_session(user_id: int, **overrides: object) -> dict:
    session = {
        "id": "cs_sub_123",
        "payment_status": "paid",
        "subscription": "sub_123",
        "customer": "cus_test_123",
        "metadata": {
            "userId": str(user_id),
            "tierId": "volume",
            "tierName": "Renfaye Volume",
            "type": SUBSCRIPTION_SESSION_TYPE,
        },
    }
    session.update(overrides)
    return session


def test_create_membership_checkout(app, client, stripe_mock) -> None:
    user_id = create_user(app)

    response = client.post(
        "/create-membership-checkout", json={"tier_id": "volume"}, headers=auth_headers(app, user_id)
    )

    assert response.status_code == 200
    assert response.get_json()["session_id"] == "cs_test_123"
    stripe_mock.Customer.create.assert_called_once()
    kwargs = stripe_mock.checkout.Session.create.call_args.kwargs
    assert kwargs["mode"] == "subscription"
    assert kwargs["customer"] == "cus_test_123"
    price_data = kwargs["line_items"][0]["price_data"]
    assert price_data["unit_amount"] == 14000
    assert price_data["recurring"] == {"interval": "month"}
    assert kwargs["metadata"]["type"] == SUBSCRIPTION_SESSION_TYPE
    assert kwargs["metadata"]["userId"] == str(user_id)

    with app.app_context():
        membership = Membership.query.filter_by(user_id=user_id).one()
        assert membership.status == "inactive"
        assert membership.stripe_customer_id == "cus_test_123"
        assert membership.tier_id == "volume"


def test_create_membership_checkout_reuses_customer(app, client, stripe_mock) -> None:
    user_id = create_user(app)
    give_membership(app, user_id, status="inactive", stripe_customer_id="cus_existing")

    client.post("/create-membership-checkout", json={"tier_id": "mega"}, headers=auth_headers(app, user_id))

    stripe_mock.Customer.create.assert_not_called()
    assert stripe_mock.checkout.Session.create.call_args.kwargs["customer"] == "cus_existing"


def test_create_membership_checkout_invalid_tier(app, client, stripe_mock) -> None:
    user_id = create_user(app)

    response = client.post(
        "/create-membership-checkout", json={"tier_id": "platinum"}, headers=auth_headers(app, user_id)
    )

    assert response.status_code == 400
    stripe_mock.checkout.Session.create.assert_not_called()


def test_create_membership_checkout_while_active(app, client, stripe_mock) -> None:
    user_id = create_user(app)
    give_membership(app, user_id)

    response = client.post(
        "/create-membership-checkout", json={"tier_id": "mega"}, headers=auth_headers(app, user_id)
    )

    assert response.status_code == 409
    assert response.get_json()["error"] == "already_active"
    stripe_mock.Customer.create.assert_not_called()
    stripe_mock.checkout.Session.create.assert_not_called()


def test_create_membership_checkout_requires_login(client, stripe_mock) -> None:
    response = client.post("/create-membership-checkout", json={"tier_id": "volume"})

    assert response.status_code == 401


def test_verify_membership_session_activates(app, client, stripe_mock, notifier) -> None:
    user_id = create_user(app)
    give_membership(app, user_id, status="inactive", stripe_subscription_id=None, refills_used=2)
    stripe_mock.checkout.Session.retrieve.return_value = subscription_session(user_id)
    stripe_mock.Subscription.retrieve.return_value = {
        "id": "sub_123",
        "cancel_at_period_end": False,
        "current_period_end": PERIOD_END,
    }

    response = client.post("/verify-membership-session", json={"session_id": "cs_sub_123"})

    assert response.status_code == 200
    membership = response.get_json()["membership"]
    assert membership["status"] == "active"
    assert membership["tier_id"] == "volume"
    assert membership["stripe_subscription_id"] == "sub_123"
    assert membership["current_period_end"].startswith("2026-01-01T00:00:00")
    assert membership["usage"]["refills_used"] == 0
    assert notifier.kinds() == ["send_membership_activated", "send_membership_activated_admin"]


def test_verify_membership_session_twice(app, client, stripe_mock, notifier) -> None:
    user_id = create_user(app)
    stripe_mock.checkout.Session.retrieve.return_value = subscription_session(user_id)
    stripe_mock.Subscription.retrieve.return_value = {"id": "sub_123", "current_period_end": PERIOD_END}

    first = client.post("/verify-membership-session", json={"session_id": "cs_sub_123"})
    second = client.post("/verify-membership-session", json={"session_id": "cs_sub_123"})

    assert first.status_code == second.status_code == 200
    assert stripe_mock.Subscription.retrieve.call_count == 1
    assert notifier.kinds() == ["send_membership_activated", "send_membership_activated_admin"]


def test_verify_membership_session_wrong_type(app, client, stripe_mock) -> None:
    user_id = create_user(app)
    session = subscription_session(user_id)
    session["metadata"]["type"] = "booking"
    stripe_mock.checkout.Session.retrieve.return_value = session

    response = client.post("/verify-membership-session", json={"session_id": "cs_sub_123"})

    assert response.status_code == 409
    assert response.get_json()["error"] == "invalid_session_type"


def test_verify_membership_session_unpaid(app, client, stripe_mock) -> None:
    user_id = create_user(app)
    stripe_mock.checkout.Session.retrieve.return_value = subscription_session(user_id, payment_status="unpaid")

    response = client.post("/verify-membership-session", json={"session_id": "cs_sub_123"})

    assert response.status_code == 402


def test_verify_membership_session_missing_metadata(app, client, stripe_mock) -> None:
    user_id = create_user(app)
    session = subscription_session(user_id)
    del session["metadata"]["tierName"]
    stripe_mock.checkout.Session.retrieve.return_value = session

    response = client.post("/verify-membership-session", json={"session_id": "cs_sub_123"})

    assert response.status_code == 400


def test_cancel_membership_keeps_it_active(app, client, stripe_mock, notifier) -> None:
    user_id = create_user(app)
    give_membership(app, user_id, current_period_end=datetime(2026, 1, 1))

    response = client.post("/cancel-membership", headers=auth_headers(app, user_id))

    assert response.status_code == 200
    membership = response.get_json()["membership"]
    assert membership["status"] == "active"
    assert membership["cancel_at_period_end"] is True
    stripe_mock.Subscription.modify.assert_called_once_with("sub_existing", cancel_at_period_end=True)
    assert notifier.kinds() == ["send_membership_cancelled", "send_membership_cancelled_admin"]
    assert notifier.sent[0][1][-1] == "2026-01-01"


def test_cancel_membership_when_stripe_fails(app, client, stripe_mock, notifier) -> None:
    user_id = create_user(app)
    give_membership(app, user_id)
    stripe_mock.Subscription.modify.side_effect = stripe.StripeError("stripe is down")

    response = client.post("/cancel-membership", headers=auth_headers(app, user_id))

    assert response.status_code == 200
    with app.app_context():
        membership = Membership.query.filter_by(user_id=user_id).one()
        assert membership.status == "active"
        assert membership.cancel_at_period_end is True


def test_cancel_membership_without_active_membership(app, client, stripe_mock) -> None:
    user_id = create_user(app)

    response = client.post("/cancel-membership", headers=auth_headers(app, user_id))

    assert response.status_code == 409


def test_get_membership_reports_remaining_benefits(app, client) -> None:
    user_id = create_user(app)
    now = datetime.now(timezone.utc)
    give_membership(
        app,
        user_id,
        tier_id="mega",
        refills_used=1,
        usage_period_start=now - timedelta(days=5),
        current_period_end=now + timedelta(days=25),
    )

    response = client.get("/membership", headers=auth_headers(app, user_id))

    assert response.status_code == 200
    data = response.get_json()
    assert data["membership"]["tier_id"] == "mega"
    assert data["remaining"] == {"refills": 2, "full_sets": 1}


def test_get_membership_without_membership(app, client) -> None:
    user_id = create_user(app)

    response = client.get("/membership", headers=auth_headers(app, user_id))

    assert response.get_json() == {"membership": None, "remaining": {"refills": 0, "full_sets": 0}}


def test_period_end_falls_back_to_billing_anchor() -> None:
    anchor = int(datetime(2025, 1, 31, tzinfo=timezone.utc).timestamp())

    period_end = period_end_from_subscription(Subscription(id="sub_1", billing_cycle_anchor=anchor))

    assert period_end == datetime(2025, 2, 28, tzinfo=timezone.utc)


def test_period_end_falls_back_to_thirty_days() -> None:
    now = datetime(2025, 6, 1, tzinfo=timezone.utc)

    assert period_end_from_subscription(Subscription(id="sub_1"), now) == now + timedelta(days=30)


def test_add_months_crosses_year() -> None:
    assert add_months(datetime(2025, 12, 15), 1) == datetime(2026, 1, 15)
    assert add_months(datetime(2025, 3, 31), -1) == datetime(2025, 2, 28)


def test_usage_period_elapsed() -> None:
    now = datetime(2025, 6, 15, tzinfo=timezone.utc)
    current = Membership(usage_period_start=now - timedelta(days=10), current_period_end=now + timedelta(days=20))
    renewed = Membership(usage_period_start=now - timedelta(days=10), current_period_end=now - timedelta(days=1))
    stale = Membership(usage_period_start=now - timedelta(days=45), current_period_end=None)

    assert not usage_period_elapsed(current, now)
    assert usage_period_elapsed(renewed, now)
    assert usage_period_elapsed(stale, now)
    assert usage_period_elapsed(Membership(), now)
