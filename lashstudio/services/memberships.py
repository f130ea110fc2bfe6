"""Membership subscription lifecycle and benefit usage tracking."""
from __future__ import annotations

import calendar
import logging
from datetime import datetime, timedelta, timezone

from ..config import BookingPolicy
from ..errors import (AlreadyActiveError, BenefitLimitReachedError,
                      InvalidSessionTypeError, InvalidTransitionError,
                      NotFoundError, PaymentIncompleteError,
                      UpstreamUnavailableError, ValidationError)
from ..models import Membership, User, as_utc, utc_now
from ..repositories import UserRepository, commit
from .notifications import NotificationDispatcher
from .payments import StripeGateway

logger = logging.getLogger(__name__)

SUBSCRIPTION_SESSION_TYPE = "membership_subscription"
BENEFIT_COUNTERS = {"refill": "refills_used", "full_set": "full_sets_used"}
BENEFIT_ALLOWANCES = {"refill": "free_refills_per_month", "full_set": "free_full_sets_per_month"}


def add_months(value: datetime, months: int) -> datetime:
    """Shift ``value`` by calendar months, clamping to the last day of the month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def period_end_from_subscription(subscription, now: datetime | None = None) -> datetime:
    """Resolve the end of the paid period, falling back when Stripe omits it."""
    if subscription.current_period_end:
        return datetime.fromtimestamp(subscription.current_period_end, tz=timezone.utc)
    if subscription.billing_cycle_anchor:
        anchor = datetime.fromtimestamp(subscription.billing_cycle_anchor, tz=timezone.utc)
        return add_months(anchor, 1)
    if subscription.start_date:
        start = datetime.fromtimestamp(subscription.start_date, tz=timezone.utc)
        return add_months(start, 1)
    return (now or utc_now()) + timedelta(days=30)


def usage_period_elapsed(membership: Membership, now: datetime | None = None) -> bool:
    """True when the benefit counters belong to a previous billing period."""
    now = now or utc_now()
    period_start = as_utc(membership.usage_period_start)
    if period_start is None:
        return True
    period_end = as_utc(membership.current_period_end)
    if period_end is not None and period_start < period_end < now:
        return True
    return period_start < add_months(now, -1)


def reset_usage(membership: Membership, now: datetime | None = None) -> None:
    membership.usage_period_start = now or utc_now()
    membership.refills_used = 0
    membership.full_sets_used = 0


def expire_if_period_ended(membership: Membership | None, now: datetime | None = None) -> bool:
    """Move a cancel-at-period-end membership to ``cancelled`` once its period is over."""
    if membership is None or membership.status != "active" or not membership.cancel_at_period_end:
        return False
    period_end = as_utc(membership.current_period_end)
    if period_end is None or period_end > (now or utc_now()):
        return False
    membership.status = "cancelled"
    return True


class MembershipService:
    def __init__(
        self,
        gateway: StripeGateway | None,
        dispatcher: NotificationDispatcher,
        policy: BookingPolicy,
    ) -> None:
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.policy = policy

    def _require_gateway(self) -> StripeGateway:
        if self.gateway is None:
            raise UpstreamUnavailableError("Payment processing not configured")
        return self.gateway

    def create_checkout(self, user: User, tier_id: str | None) -> dict[str, str | None]:
        membership = user.membership
        if membership is not None and membership.status == "active":
            raise AlreadyActiveError()

        tier = self.policy.tier(tier_id)
        if tier is None:
            raise ValidationError("Invalid membership tier")

        gateway = self._require_gateway()
        customer_id = membership.stripe_customer_id if membership else None
        if not customer_id:
            customer_id = gateway.create_customer(
                email=user.email,
                name=user.full_name,
                metadata={"userId": str(user.user_id)},
            )
            if membership is None:
                membership = Membership(
                    user_id=user.user_id,
                    tier_id=tier_id,
                    tier_name=tier["name"],
                    status="inactive",
                    stripe_customer_id=customer_id,
                )
                user.membership = membership
            else:
                membership.stripe_customer_id = customer_id
                membership.tier_id = tier_id
                membership.tier_name = tier["name"]
            commit(user, membership)

        session = gateway.create_checkout_session(
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": self.policy.currency,
                        "product_data": {
                            "name": tier["name"],
                            "description": f"Monthly membership - {tier['name']}",
                        },
                        "unit_amount": int(tier["price_cents"]),
                        "recurring": {"interval": "month"},
                    },
                    "quantity": 1,
                }
            ],
            success_url=f"{self.policy.base_url}/membership/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{self.policy.base_url}/membership",
            metadata={
                "userId": str(user.user_id),
                "tierId": tier_id,
                "tierName": tier["name"],
                "type": SUBSCRIPTION_SESSION_TYPE,
            },
        )
        return {"session_id": session.id, "url": session.url}

    def activate(self, session_id: str, now: datetime | None = None) -> Membership:
        gateway = self._require_gateway()
        session = gateway.retrieve_checkout_session(session_id, expand=["subscription", "customer"])
        if session.payment_status != "paid":
            raise PaymentIncompleteError()

        metadata = session.metadata or {}
        if metadata.get("type") != SUBSCRIPTION_SESSION_TYPE:
            raise InvalidSessionTypeError()

        user_id, tier_id, tier_name = metadata.get("userId"), metadata.get("tierId"), metadata.get("tierName")
        if not user_id or not tier_id or not tier_name:
            raise ValidationError("Missing required session metadata")
        if not session.subscription:
            raise ValidationError("Subscription not found on session")

        try:
            user = UserRepository.get(int(user_id))
        except ValueError as exc:
            raise ValidationError("Invalid user reference on session") from exc
        if user is None:
            raise NotFoundError("User not found")

        membership = user.membership
        if (
            membership is not None
            and membership.status == "active"
            and membership.stripe_subscription_id == session.subscription
        ):
            return membership

        subscription = gateway.retrieve_subscription(session.subscription)
        now = now or utc_now()
        if membership is None:
            membership = Membership(user_id=user.user_id)
            user.membership = membership
        membership.tier_id = tier_id
        membership.tier_name = tier_name
        membership.status = "active"
        membership.stripe_subscription_id = subscription.id
        membership.stripe_customer_id = session.customer or membership.stripe_customer_id
        membership.current_period_end = period_end_from_subscription(subscription, now)
        membership.cancel_at_period_end = subscription.cancel_at_period_end
        reset_usage(membership, now)
        commit(user, membership)

        tier = self.policy.tier(tier_id) or {}
        self.dispatcher.submit(
            "send_membership_activated",
            user.email,
            user.full_name,
            tier_name,
            int(tier.get("price_cents", 0)),
        )
        self.dispatcher.submit("send_membership_activated_admin", user.email, user.full_name, tier_name)
        return membership

    def cancel(self, user: User) -> Membership:
        membership = user.membership
        if membership is None or membership.status != "active":
            raise InvalidTransitionError("No active membership to cancel")
        if membership.cancel_at_period_end:
            return membership

        if membership.stripe_subscription_id:
            if self.gateway is None:
                logger.error(
                    "Stripe not configured; subscription %s for user %s must be cancelled manually",
                    membership.stripe_subscription_id,
                    user.user_id,
                )
            else:
                try:
                    self.gateway.update_subscription(membership.stripe_subscription_id, cancel_at_period_end=True)
                except UpstreamUnavailableError:
                    logger.error(
                        "Stripe cancellation failed for subscription %s (user %s); manual cancel may be needed",
                        membership.stripe_subscription_id,
                        user.user_id,
                    )

        membership.cancel_at_period_end = True
        commit(membership)

        tier = self.policy.tier(membership.tier_id) or {}
        period_end = as_utc(membership.current_period_end) or utc_now()
        self.dispatcher.submit(
            "send_membership_cancelled",
            user.email,
            user.full_name,
            membership.tier_name,
            int(tier.get("price_cents", 0)),
            period_end.date().isoformat(),
        )
        self.dispatcher.submit(
            "send_membership_cancelled_admin",
            user.email,
            user.full_name,
            membership.tier_name,
            int(tier.get("price_cents", 0)),
        )
        return membership

    def record_benefit_usage(self, membership: Membership, benefit_type: str, now: datetime | None = None) -> None:
        """Count one redemption of ``benefit_type``; the caller commits."""
        counter = BENEFIT_COUNTERS.get(benefit_type)
        if counter is None:
            raise ValidationError("benefit_type must be 'refill' or 'full_set'")

        now = now or utc_now()
        if usage_period_elapsed(membership, now):
            reset_usage(membership, now)

        used = getattr(membership, counter) or 0
        if self.policy.enforce_benefit_limits:
            allowance = self.allowance(membership, benefit_type)
            if used >= allowance:
                raise BenefitLimitReachedError()
        setattr(membership, counter, used + 1)

    def allowance(self, membership: Membership, benefit_type: str) -> int:
        tier = self.policy.tier(membership.tier_id) or {}
        return int(tier.get(BENEFIT_ALLOWANCES[benefit_type], 0))

    def remaining_benefits(self, membership: Membership, now: datetime | None = None) -> dict[str, int]:
        if membership.status != "active":
            return {"refills": 0, "full_sets": 0}
        elapsed = usage_period_elapsed(membership, now)
        refills = 0 if elapsed else membership.refills_used or 0
        full_sets = 0 if elapsed else membership.full_sets_used or 0
        return {
            "refills": max(0, self.allowance(membership, "refill") - refills),
            "full_sets": max(0, self.allowance(membership, "full_set") - full_sets),
        }
