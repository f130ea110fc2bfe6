"""Bookable slot computation from the studio's schedule policy."""
from __future__ import annotations

from collections import Counter
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable
from zoneinfo import ZoneInfo

from ..errors import ValidationError
from ..models import WEEKDAYS, Appointment, ScheduleSettings, utc_now


def studio_timezone(name: str | None) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def parse_time_label(label: str) -> int:
    """Convert an ``HH:MM`` label into minutes after midnight."""
    try:
        hours, minutes = (int(part) for part in str(label).split(":"))
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid time '{label}', expected HH:MM") from exc
    if not (0 <= hours <= 24 and 0 <= minutes < 60) or hours * 60 + minutes > 24 * 60:
        raise ValidationError(f"Invalid time '{label}', expected HH:MM")
    return hours * 60 + minutes


def format_time_label(total_minutes: int) -> str:
    return f"{total_minutes // 60:02d}:{total_minutes % 60:02d}"


def generate_day_slots(settings: ScheduleSettings, weekday: str) -> list[str]:
    """All slot labels the policy defines for ``weekday``, ignoring bookings.

    Windows are walked in their configured order; overlapping windows are a
    configuration problem and are not merged.
    """
    policy = settings.day_policy(weekday)
    if not policy["enabled"] or not policy["time_slots"]:
        return []

    duration = int(settings.slot_duration_minutes)
    step = duration + int(settings.break_between_slots_minutes or 0)
    if duration <= 0 or step <= 0:
        raise ValidationError("slot_duration_minutes must be positive")

    labels: list[str] = []
    for window in policy["time_slots"]:
        current = parse_time_label(window["start"])
        end = parse_time_label(window["end"])
        while current + duration <= end:
            labels.append(format_time_label(current))
            current += step
    return labels


def booked_counts(appointments: Iterable[Appointment], target_date: date) -> Counter:
    """Per-label count of appointments holding capacity on ``target_date``.

    Only fully paid, non-cancelled appointments hold a slot; pending checkouts
    and deposit-only bookings do not.
    """
    return Counter(
        appt.time
        for appt in appointments
        if appt.date == target_date and appt.status != "cancelled" and appt.payment_status == "paid"
    )


def available_slots(
    target_date: date,
    settings: ScheduleSettings,
    appointments: Iterable[Appointment],
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> list[str]:
    """Return the bookable ``HH:MM`` labels for ``target_date`` in chronological order."""
    weekday = WEEKDAYS[target_date.weekday()]
    labels = generate_day_slots(settings, weekday)
    if not labels:
        return []

    capacity = settings.day_policy(weekday)["max_appointments_per_slot"]
    counts = booked_counts(appointments, target_date)
    labels = [label for label in labels if counts.get(label, 0) < capacity]

    tz = tz or timezone.utc
    now = now or utc_now()
    earliest = now + timedelta(hours=int(settings.booking_buffer_hours or 0))

    def starts_at(label: str) -> datetime:
        minutes = parse_time_label(label)
        return datetime.combine(target_date, time(minutes // 60, minutes % 60), tzinfo=tz)

    return [label for label in labels if starts_at(label) > earliest]


def is_slot_available(
    target_date: date,
    time_label: str,
    settings: ScheduleSettings,
    appointments: Iterable[Appointment],
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> bool:
    """Whether ``time_label`` on ``target_date`` is currently offered to customers."""
    now = now or utc_now()
    local_today = now.astimezone(tz or timezone.utc).date()
    horizon = int(settings.advance_booking_days or 0)
    if horizon and target_date > local_today + timedelta(days=horizon):
        return False
    return time_label in available_slots(target_date, settings, appointments, now=now, tz=tz)


def validate_schedule_payload(payload: dict[str, object]) -> dict[str, object]:
    """Check an admin schedule update and normalise it into model fields."""
    fields: dict[str, object] = {}
    days: dict[str, object] = {}
    for day in WEEKDAYS:
        if day not in payload:
            continue
        raw = payload[day]
        if not isinstance(raw, dict):
            raise ValidationError(f"{day} must be an object")
        windows = raw.get("time_slots") or []
        if not isinstance(windows, list):
            raise ValidationError(f"{day}.time_slots must be a list")
        cleaned = []
        for window in windows:
            if not isinstance(window, dict) or "start" not in window or "end" not in window:
                raise ValidationError(f"{day}.time_slots entries need start and end")
            if parse_time_label(window["start"]) >= parse_time_label(window["end"]):
                raise ValidationError(f"{day}: window start must be before its end")
            cleaned.append({"start": window["start"], "end": window["end"]})
        day_policy: dict[str, object] = {"enabled": bool(raw.get("enabled", False)), "time_slots": cleaned}
        if raw.get("max_appointments_per_slot") is not None:
            day_policy["max_appointments_per_slot"] = _positive_int(
                raw["max_appointments_per_slot"], f"{day}.max_appointments_per_slot"
            )
        days[day] = day_policy
    if days:
        fields["days"] = days

    for key, minimum in (
        ("slot_duration_minutes", 1),
        ("break_between_slots_minutes", 0),
        ("max_appointments_per_slot", 1),
        ("booking_buffer_hours", 0),
        ("advance_booking_days", 0),
    ):
        if key in payload:
            fields[key] = _positive_int(payload[key], key, minimum=minimum)
    return fields


def _positive_int(value: object, name: str, minimum: int = 1) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be an integer") from exc
    if number < minimum:
        raise ValidationError(f"{name} must be at least {minimum}")
    return number
