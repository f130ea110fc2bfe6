"""Application configuration loaded from the environment."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


# Monthly membership tiers. Prices are in cents.
_TIERS: dict[str, dict[str, object]] = {
    "natural": {
        "name": "Renfaye Natural",
        "price_cents": 10000,
        "free_refills_per_month": 1,
        "free_full_sets_per_month": 0,
    },
    "hybrid": {
        "name": "Renfaye Hybrid",
        "price_cents": 12000,
        "free_refills_per_month": 2,
        "free_full_sets_per_month": 0,
    },
    "volume": {
        "name": "Renfaye Volume",
        "price_cents": 14000,
        "free_refills_per_month": 2,
        "free_full_sets_per_month": 1,
    },
    "mega": {
        "name": "Renfaye Mega",
        "price_cents": 16500,
        "free_refills_per_month": 3,
        "free_full_sets_per_month": 1,
    },
}

# Read-only so that one app cannot alter the tiers another app sees.
DEFAULT_MEMBERSHIP_TIERS: Mapping[str, Mapping[str, object]] = MappingProxyType(
    {tier_id: MappingProxyType(tier) for tier_id, tier in _TIERS.items()}
)


class Config:
    """Default settings; every value can be overridden through the environment."""

    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///lashstudio.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Stripe
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    CURRENCY = os.getenv("CURRENCY", "usd")
    BASE_URL = os.getenv("BASE_URL", "http://localhost:3000")

    # Booking policy
    DEPOSIT_AMOUNT_CENTS = int(os.getenv("DEPOSIT_AMOUNT_CENTS", "2500"))
    STUDIO_TIMEZONE = os.getenv("STUDIO_TIMEZONE", "UTC")
    MEMBERSHIP_TIERS = DEFAULT_MEMBERSHIP_TIERS
    ENFORCE_BENEFIT_LIMITS = _env_bool("ENFORCE_BENEFIT_LIMITS", False)

    # Email (Resend)
    RESEND_API_KEY = os.getenv("RESEND_API_KEY")
    FROM_EMAIL = os.getenv("FROM_EMAIL", "onboarding@resend.dev")
    STORE_NAME = os.getenv("STORE_NAME", "RENFAYE LASHES")
    STORE_EMAIL = os.getenv("STORE_EMAIL", "hello@renfayelashes.com")

    # Notification dispatch
    NOTIFY_ASYNC = _env_bool("NOTIFY_ASYNC", True)
    NOTIFY_MAX_ATTEMPTS = int(os.getenv("NOTIFY_MAX_ATTEMPTS", "3"))
    NOTIFY_RETRY_DELAY_SECONDS = float(os.getenv("NOTIFY_RETRY_DELAY_SECONDS", "2"))

    AUTH_TOKEN_MAX_AGE = int(os.getenv("AUTH_TOKEN_MAX_AGE", "86400"))
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    RESEND_API_KEY = None
    NOTIFY_ASYNC = False
    NOTIFY_MAX_ATTEMPTS = 1
    NOTIFY_RETRY_DELAY_SECONDS = 0


@dataclass(frozen=True)
class BookingPolicy:
    """Booking and pricing constants handed to the checkout and membership services."""

    deposit_amount_cents: int = 2500
    currency: str = "usd"
    base_url: str = "http://localhost:3000"
    membership_tiers: Mapping[str, Mapping[str, object]] = field(
        default_factory=lambda: DEFAULT_MEMBERSHIP_TIERS
    )
    enforce_benefit_limits: bool = False
    studio_timezone: str = "UTC"
    store_email: str | None = None

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> "BookingPolicy":
        return cls(
            deposit_amount_cents=int(config.get("DEPOSIT_AMOUNT_CENTS", 2500)),
            currency=str(config.get("CURRENCY", "usd")),
            base_url=str(config.get("BASE_URL", "http://localhost:3000")).rstrip("/"),
            membership_tiers=config.get("MEMBERSHIP_TIERS") or DEFAULT_MEMBERSHIP_TIERS,
            enforce_benefit_limits=bool(config.get("ENFORCE_BENEFIT_LIMITS", False)),
            studio_timezone=str(config.get("STUDIO_TIMEZONE", "UTC")),
            store_email=config.get("STORE_EMAIL"),
        )

    def tier(self, tier_id: str | None) -> Mapping[str, object] | None:
        if not tier_id:
            return None
        return self.membership_tiers.get(tier_id)
