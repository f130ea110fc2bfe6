"""Appointment creation and status/payment-status transitions."""
from __future__ import annotations

import logging
from datetime import date, datetime

from ..config import BookingPolicy
from ..errors import (InvalidTransitionError, NotFoundError,
                      PermissionDeniedError, ValidationError)
from ..models import APPOINTMENT_STATUSES, Appointment, User, generate_id, utc_now
from ..repositories import AppointmentRepository, ScheduleRepository, commit
from .availability import is_slot_available, parse_time_label, studio_timezone
from .memberships import MembershipService, expire_if_period_ended
from .notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

PATCHABLE_FIELDS = ("date", "time", "technician_id", "technician_name", "notes", "status")


def parse_date(value: object) -> date:
    try:
        return date.fromisoformat(str(value))
    except (TypeError, ValueError) as exc:
        raise ValidationError("date must be in YYYY-MM-DD format") from exc


def parse_cents(payload: dict[str, object], cents_key: str, dollars_key: str) -> int:
    """Read an amount given either in cents or in dollars."""
    try:
        if payload.get(cents_key) is not None:
            cents = int(payload[cents_key])
        elif payload.get(dollars_key) is not None:
            cents = int(round(float(payload[dollars_key]) * 100))
        else:
            raise ValidationError(f"{cents_key} is required")
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{cents_key} must be a number") from exc
    if cents < 0:
        raise ValidationError(f"{cents_key} must not be negative")
    return cents


def _ensure_not_refunded(appointment: Appointment) -> None:
    if appointment.payment_status == "refunded":
        raise InvalidTransitionError("Refunded appointments cannot be changed")


class AppointmentService:
    def __init__(self, dispatcher: NotificationDispatcher, policy: BookingPolicy) -> None:
        self.dispatcher = dispatcher
        self.policy = policy

    def get(self, appointment_id: str) -> Appointment:
        appointment = AppointmentRepository.get(appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment not found")
        return appointment

    def _check_slot(self, target_date: date, time_label: str, now: datetime | None) -> None:
        parse_time_label(time_label)
        settings = ScheduleRepository.get()
        existing = AppointmentRepository.list(on_date=target_date)
        if not is_slot_available(
            target_date,
            time_label,
            settings,
            existing,
            now=now,
            tz=studio_timezone(self.policy.studio_timezone),
        ):
            raise ValidationError(f"{target_date.isoformat()} {time_label} is not available")

    def create_appointment(
        self,
        payload: dict[str, object],
        user_id: int | None = None,
        now: datetime | None = None,
    ) -> Appointment:
        """Create a ``pending/pending`` appointment awaiting its deposit checkout."""
        required = ("service_id", "service_name", "customer_name", "customer_email", "date", "time")
        missing = [key for key in required if not payload.get(key)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        target_date = parse_date(payload["date"])
        time_label = str(payload["time"])
        price_cents = parse_cents(payload, "price_cents", "price")
        self._check_slot(target_date, time_label, now)

        appointment = Appointment(
            appointment_id=generate_id("APT"),
            service_id=str(payload["service_id"]),
            service_name=str(payload["service_name"]),
            customer_name=str(payload["customer_name"]).strip(),
            customer_email=str(payload["customer_email"]).strip().lower(),
            customer_phone=(payload.get("customer_phone") or None),
            date=target_date,
            time=time_label,
            price_cents=price_cents,
            deposit_amount_cents=0,
            deposit_paid=False,
            remaining_balance_cents=price_cents,
            balance_paid=False,
            user_id=user_id,
            technician_id=payload.get("technician_id") or None,
            technician_name=payload.get("technician_name") or None,
            status="pending",
            payment_status="pending",
            notes=(str(payload.get("notes") or "").strip() or None),
        )
        return AppointmentRepository.upsert(appointment)

    def priority_booking(
        self,
        user: User,
        payload: dict[str, object],
        memberships: MembershipService,
        now: datetime | None = None,
    ) -> Appointment:
        """Book a membership-funded appointment straight into ``confirmed/paid``."""
        benefit_type = payload.get("benefit_type")
        required = ("service_id", "date", "time", "benefit_type")
        missing = [key for key in required if not payload.get(key)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        membership = user.membership
        now = now or utc_now()
        if expire_if_period_ended(membership, now):
            commit(membership)
        if membership is None or membership.status != "active":
            raise PermissionDeniedError("No active membership")

        target_date = parse_date(payload["date"])
        time_label = str(payload["time"])
        self._check_slot(target_date, time_label, now)

        memberships.record_benefit_usage(membership, str(benefit_type), now)
        label = "Refill" if benefit_type == "refill" else "Full Set"
        appointment = Appointment(
            appointment_id=generate_id("APT"),
            service_id=str(payload["service_id"]),
            service_name=str(payload.get("service_name") or label),
            customer_name=str(payload.get("customer_name") or user.full_name),
            customer_email=str(payload.get("customer_email") or user.email).strip().lower(),
            customer_phone=payload.get("customer_phone") or user.phone,
            date=target_date,
            time=time_label,
            price_cents=0,
            deposit_amount_cents=0,
            deposit_paid=True,
            remaining_balance_cents=0,
            balance_paid=True,
            user_id=user.user_id,
            technician_id=payload.get("technician_id") or None,
            technician_name=payload.get("technician_name") or None,
            status="confirmed",
            payment_status="paid",
            benefit_type=str(benefit_type),
            notes=f"Priority booking - Free {label} ({membership.tier_name} membership)",
        )
        commit(membership, appointment)

        self.dispatcher.submit("send_appointment_confirmation", appointment.to_dict())
        return appointment

    def mark_balance_paid(self, appointment_id: str) -> Appointment:
        appointment = self.get(appointment_id)
        _ensure_not_refunded(appointment)
        if appointment.payment_status == "paid":
            return appointment
        if appointment.payment_status != "deposit_paid":
            raise InvalidTransitionError("The deposit has not been paid yet")
        appointment.balance_paid = True
        appointment.payment_status = "paid"
        appointment.updated_at = utc_now()
        return AppointmentRepository.upsert(appointment)

    def complete(self, appointment_id: str) -> Appointment:
        appointment = self.get(appointment_id)
        _ensure_not_refunded(appointment)
        if appointment.status == "completed":
            return appointment
        if appointment.status != "confirmed":
            raise InvalidTransitionError("Only confirmed appointments can be completed")
        appointment.status = "completed"
        appointment.updated_at = utc_now()
        return AppointmentRepository.upsert(appointment)

    def cancel(self, appointment_id: str) -> Appointment:
        appointment = self.get(appointment_id)
        if appointment.status == "cancelled":
            return appointment
        if appointment.status == "completed":
            raise InvalidTransitionError("Completed appointments cannot be cancelled")
        appointment.status = "cancelled"
        appointment.updated_at = utc_now()
        return AppointmentRepository.upsert(appointment)

    def update_appointment(self, appointment_id: str, changes: dict[str, object]) -> Appointment:
        """Admin edit of scheduling details; payment fields are never writable here."""
        appointment = self.get(appointment_id)
        unknown = sorted(set(changes) - set(PATCHABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}")
        _ensure_not_refunded(appointment)

        if "status" in changes and changes["status"] not in APPOINTMENT_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(APPOINTMENT_STATUSES)}")
        if "date" in changes:
            appointment.date = parse_date(changes["date"])
        if "time" in changes:
            parse_time_label(str(changes["time"]))
            appointment.time = str(changes["time"])
        if "status" in changes:
            appointment.status = changes["status"]
        for key in ("technician_id", "technician_name", "notes"):
            if key in changes:
                setattr(appointment, key, changes[key] or None)
        appointment.updated_at = utc_now()
        return AppointmentRepository.upsert(appointment)
