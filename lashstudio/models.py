"""Database models for the lash studio booking backend."""
from __future__ import annotations

import secrets
import time
from datetime import datetime, timezone

from .extensions import db

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

APPOINTMENT_STATUSES = ("pending", "confirmed", "completed", "cancelled")
APPOINTMENT_PAYMENT_STATUSES = ("pending", "deposit_paid", "paid", "refunded")
ORDER_STATUSES = ("pending", "processing", "completed", "cancelled")
ORDER_PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")
MEMBERSHIP_STATUSES = ("inactive", "active", "cancelled")


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from the database."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def generate_id(prefix: str) -> str:
    """Build an opaque id that sorts by creation time, e.g. ``APT-1718000000000-k3j9x2``."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def _iso(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


class User(db.Model):
    __tablename__ = "users"

    user_id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False, server_default="")
    phone = db.Column(db.String(30))
    role = db.Column(
        db.Enum(
            "customer",
            "admin",
            name="user_role",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="customer",
        server_default="customer",
    )
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    membership = db.relationship(
        "Membership",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict_basic(self) -> dict[str, object]:
        return {
            "id": self.user_id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone": self.phone,
            "role": self.role,
            "membership": self.membership.to_dict() if self.membership else None,
        }


class Membership(db.Model):
    """Subscription-backed membership; at most one per user."""

    __tablename__ = "memberships"

    membership_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), unique=True, nullable=False)
    tier_id = db.Column(db.String(50), nullable=False)
    tier_name = db.Column(db.String(100), nullable=False)
    status = db.Column(
        db.Enum(
            *MEMBERSHIP_STATUSES,
            name="membership_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="inactive",
        server_default="inactive",
    )
    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False, server_default="0")
    stripe_customer_id = db.Column(db.String(255))
    stripe_subscription_id = db.Column(db.String(255))
    current_period_end = db.Column(db.DateTime)
    # Benefit usage for the current billing period
    usage_period_start = db.Column(db.DateTime)
    refills_used = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    full_sets_used = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    user = db.relationship("User", back_populates="membership")

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self) -> dict[str, object]:
        return {
            "tier_id": self.tier_id,
            "tier_name": self.tier_name,
            "status": self.status,
            "cancel_at_period_end": bool(self.cancel_at_period_end),
            "stripe_customer_id": self.stripe_customer_id,
            "stripe_subscription_id": self.stripe_subscription_id,
            "current_period_end": _iso(self.current_period_end),
            "usage": {
                "current_period_start": _iso(self.usage_period_start),
                "refills_used": self.refills_used or 0,
                "full_sets_used": self.full_sets_used or 0,
            },
        }


class ScheduleSettings(db.Model):
    """Studio operating hours and booking policy (single row)."""

    __tablename__ = "schedule_settings"

    settings_id = db.Column(db.Integer, primary_key=True)
    # {"monday": {"enabled": true, "time_slots": [{"start": "09:00", "end": "12:00"}],
    #             "max_appointments_per_slot": 1}, ...}
    days = db.Column(db.JSON, nullable=False, default=dict)
    slot_duration_minutes = db.Column(db.Integer, nullable=False, default=60)
    break_between_slots_minutes = db.Column(db.Integer, nullable=False, default=15)
    max_appointments_per_slot = db.Column(db.Integer, nullable=False, default=1)
    booking_buffer_hours = db.Column(db.Integer, nullable=False, default=24)
    advance_booking_days = db.Column(db.Integer, nullable=False, default=30)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    @classmethod
    def default(cls) -> "ScheduleSettings":
        working_day = {
            "enabled": True,
            "time_slots": [{"start": "09:00", "end": "12:00"}, {"start": "13:00", "end": "17:00"}],
            "max_appointments_per_slot": 1,
        }
        day_off = {"enabled": False, "time_slots": [], "max_appointments_per_slot": 1}
        days = {day: dict(working_day) for day in WEEKDAYS[:5]}
        days.update({day: dict(day_off) for day in WEEKDAYS[5:]})
        return cls(
            days=days,
            slot_duration_minutes=60,
            break_between_slots_minutes=15,
            max_appointments_per_slot=1,
            booking_buffer_hours=24,
            advance_booking_days=30,
        )

    def day_policy(self, weekday: str) -> dict[str, object]:
        """Return the policy for a weekday, filling gaps with the global defaults."""
        day = (self.days or {}).get(weekday) or {}
        return {
            "enabled": bool(day.get("enabled", False)),
            "time_slots": list(day.get("time_slots") or []),
            "max_appointments_per_slot": int(
                day.get("max_appointments_per_slot") or self.max_appointments_per_slot or 1
            ),
        }

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {day: self.day_policy(day) for day in WEEKDAYS}
        payload.update(
            {
                "slot_duration_minutes": self.slot_duration_minutes,
                "break_between_slots_minutes": self.break_between_slots_minutes,
                "max_appointments_per_slot": self.max_appointments_per_slot,
                "booking_buffer_hours": self.booking_buffer_hours,
                "advance_booking_days": self.advance_booking_days,
            }
        )
        return payload


class Appointment(db.Model):
    """Customer appointments and their deposit/balance payment state."""

    __tablename__ = "appointments"

    appointment_id = db.Column(db.String(64), primary_key=True, default=lambda: generate_id("APT"))
    service_id = db.Column(db.String(64), nullable=False)
    service_name = db.Column(db.String(150), nullable=False)
    customer_name = db.Column(db.String(150), nullable=False)
    customer_email = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(30))
    date = db.Column(db.Date, nullable=False, index=True)
    time = db.Column(db.String(5), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    deposit_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    deposit_paid = db.Column(db.Boolean, nullable=False, default=False)
    remaining_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_paid = db.Column(db.Boolean, nullable=False, default=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    technician_id = db.Column(db.String(64))
    technician_name = db.Column(db.String(150))
    status = db.Column(
        db.Enum(
            *APPOINTMENT_STATUSES,
            name="appointment_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="pending",
    )
    payment_status = db.Column(
        db.Enum(
            *APPOINTMENT_PAYMENT_STATUSES,
            name="appointment_payment_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="pending",
    )
    payment_intent_id = db.Column(db.String(255))
    stripe_session_id = db.Column(db.String(255))
    benefit_type = db.Column(db.String(20))
    notes = db.Column(db.Text)
    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    user = db.relationship("User")

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.appointment_id,
            "service_id": self.service_id,
            "service_name": self.service_name,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "date": self.date.isoformat() if self.date else None,
            "time": self.time,
            "price_cents": self.price_cents,
            "price_dollars": self.price_cents / 100.0,
            "deposit_amount_cents": self.deposit_amount_cents,
            "deposit_paid": bool(self.deposit_paid),
            "remaining_balance_cents": self.remaining_balance_cents,
            "balance_paid": bool(self.balance_paid),
            "user_id": self.user_id,
            "technician_id": self.technician_id,
            "technician_name": self.technician_name,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_intent_id": self.payment_intent_id,
            "benefit_type": self.benefit_type,
            "notes": self.notes,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Order(db.Model):
    """Product orders paid through Stripe checkout."""

    __tablename__ = "orders"

    order_id = db.Column(db.String(64), primary_key=True, default=lambda: generate_id("ORD"))
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    customer_name = db.Column(db.String(150), nullable=False)
    customer_email = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(30))
    shipping_address = db.Column(db.JSON, nullable=True)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(
        db.Enum(
            *ORDER_STATUSES,
            name="order_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="pending",
    )
    payment_status = db.Column(
        db.Enum(
            *ORDER_PAYMENT_STATUSES,
            name="order_payment_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="pending",
    )
    stripe_session_id = db.Column(db.String(255))
    stripe_payment_intent_id = db.Column(db.String(255))
    notes = db.Column(db.Text)
    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.item_id",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.order_id,
            "user_id": self.user_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "shipping_address": self.shipping_address,
            "items": [item.to_dict() for item in self.items],
            "shipping_cents": self.shipping_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "total_dollars": self.total_cents / 100.0,
            "status": self.status,
            "payment_status": self.payment_status,
            "stripe_session_id": self.stripe_session_id,
            "stripe_payment_intent_id": self.stripe_payment_intent_id,
            "notes": self.notes,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class OrderItem(db.Model):
    __tablename__ = "order_items"

    item_id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(64), db.ForeignKey("orders.order_id"), nullable=False)
    product_id = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(200), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    order = db.relationship("Order", back_populates="items")

    def to_dict(self) -> dict[str, object]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_price_dollars": self.unit_price_cents / 100.0,
        }
