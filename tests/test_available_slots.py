"""Tests for slot availability."""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from conftest import create_appointment, next_weekday
from lashstudio.errors import ValidationError
from lashstudio.models import Appointment, ScheduleSettings
from lashstudio.services.availability import (available_slots, generate_day_slots,
                                               is_slot_available, parse_time_label)

# 2025-06-02 is a Monday.
NOW = datetime(2025, 6, 2, 8, 0, tzinfo=timezone.utc)
TWO_WEEKS_OUT = date(2025, 6, 16)


def monday_settings(**overrides: object) -> ScheduleSettings:
    values: dict[str, object] = {
        "days": {
            "monday": {
                "enabled": True,
                "time_slots": [{"start": "09:00", "end": "12:00"}],
                "max_appointments_per_slot": 1,
            },
            "sunday": {"enabled": False, "time_slots": [{"start": "09:00", "end": "12:00"}]},
        },
        "slot_duration_minutes": 60,
        "break_between_slots_minutes": 0,
        "max_appointments_per_slot": 1,
        "booking_buffer_hours": 24,
        "advance_booking_days": 30,
    }
    values.update(overrides)
    return ScheduleSettings(**values)


def booking(time_label: str, payment_status: str = "paid", status: str = "confirmed",
            on: date = TWO_WEEKS_OUT) -> Appointment:
    return Appointment(date=on, time=time_label, status=status, payment_status=payment_status)


def test_paid_booking_removes_its_slot() -> None:
    slots = available_slots(TWO_WEEKS_OUT, monday_settings(), [booking("10:00")], now=NOW)

    assert slots == ["09:00", "11:00"]


def test_slots_never_run_past_window_end() -> None:
    settings = monday_settings(
        days={"monday": {"enabled": True, "time_slots": [{"start": "09:00", "end": "11:30"}]}}
    )

    assert generate_day_slots(settings, "monday") == ["09:00", "10:00"]


def test_break_between_slots_spaces_labels() -> None:
    settings = monday_settings(break_between_slots_minutes=15)

    assert generate_day_slots(settings, "monday") == ["09:00", "10:15"]


def test_windows_are_walked_in_configured_order() -> None:
    settings = monday_settings(
        days={
            "monday": {
                "enabled": True,
                "time_slots": [{"start": "13:00", "end": "15:00"}, {"start": "09:00", "end": "10:00"}],
            }
        }
    )

    assert generate_day_slots(settings, "monday") == ["13:00", "14:00", "09:00"]


def test_disabled_day_has_no_slots() -> None:
    sunday = TWO_WEEKS_OUT + timedelta(days=6)

    assert available_slots(sunday, monday_settings(), [], now=NOW) == []


def test_unconfigured_day_has_no_slots() -> None:
    tuesday = TWO_WEEKS_OUT + timedelta(days=1)

    assert available_slots(tuesday, monday_settings(), [], now=NOW) == []


def test_capacity_counts_only_paid_active_bookings() -> None:
    settings = monday_settings(max_appointments_per_slot=2)
    settings.days["monday"].pop("max_appointments_per_slot")

    one_paid = [booking("09:00")]
    two_paid = [booking("09:00"), booking("09:00")]
    unpaid = [
        booking("09:00", payment_status="pending", status="pending"),
        booking("09:00", payment_status="deposit_paid"),
        booking("09:00", status="cancelled"),
        booking("09:00", status="cancelled"),
    ]

    assert "09:00" in available_slots(TWO_WEEKS_OUT, settings, one_paid, now=NOW)
    assert "09:00" not in available_slots(TWO_WEEKS_OUT, settings, two_paid, now=NOW)
    assert "09:00" in available_slots(TWO_WEEKS_OUT, settings, unpaid, now=NOW)


def test_per_day_capacity_overrides_global_default() -> None:
    settings = monday_settings(max_appointments_per_slot=5)

    slots = available_slots(TWO_WEEKS_OUT, settings, [booking("11:00")], now=NOW)

    assert slots == ["09:00", "10:00"]


def test_bookings_on_other_dates_are_ignored() -> None:
    other_day = booking("09:00", on=TWO_WEEKS_OUT - timedelta(days=7))

    assert available_slots(TWO_WEEKS_OUT, monday_settings(), [other_day], now=NOW) == [
        "09:00",
        "10:00",
        "11:00",
    ]


def test_booking_buffer_is_strict() -> None:
    target = TWO_WEEKS_OUT
    exactly_buffer = datetime(2025, 6, 15, 9, 0, tzinfo=timezone.utc)
    just_inside = datetime(2025, 6, 15, 8, 59, tzinfo=timezone.utc)

    assert available_slots(target, monday_settings(), [], now=exactly_buffer) == ["10:00", "11:00"]
    assert available_slots(target, monday_settings(), [], now=just_inside) == ["09:00", "10:00", "11:00"]


def test_zero_duration_is_rejected() -> None:
    with pytest.raises(ValidationError):
        generate_day_slots(monday_settings(slot_duration_minutes=0), "monday")


def test_invalid_time_label_is_rejected() -> None:
    with pytest.raises(ValidationError):
        parse_time_label("9am")


def test_slot_beyond_advance_booking_window_is_unavailable() -> None:
    settings = monday_settings(advance_booking_days=7)

    assert not is_slot_available(TWO_WEEKS_OUT, "09:00", settings, [], now=NOW)
    assert is_slot_available(TWO_WEEKS_OUT, "09:00", monday_settings(), [], now=NOW)


def test_available_slots_endpoint_requires_date(client) -> None:
    response = client.get("/appointments/available-slots")

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_payload"


def test_available_slots_endpoint_rejects_bad_date(client) -> None:
    response = client.get("/appointments/available-slots?date=16-06-2025")

    assert response.status_code == 400


def test_available_slots_endpoint_uses_default_schedule(app, client) -> None:
    monday = next_weekday(0)
    create_appointment(app, date=monday, time="10:15", status="confirmed", payment_status="paid")

    response = client.get(f"/appointments/available-slots?date={monday.isoformat()}")

    assert response.status_code == 200
    data = response.get_json()
    assert data["date"] == monday.isoformat()
    assert data["slots"] == ["09:00", "13:00", "14:15", "15:30"]
