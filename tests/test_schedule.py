"""Tests for the schedule policy endpoints."""
from __future__ import annotations

import pytest

from conftest import auth_headers, create_user, next_weekday
from lashstudio.models import ScheduleSettings


@pytest.fixture
def admin_headers(app) -> dict[str, str]:
    admin_id = create_user(app, email="admin@example.com", role="admin")
    return auth_headers(app, admin_id, role="admin")


def test_get_schedule_returns_defaults(client) -> None:
    response = client.get("/schedule")

    assert response.status_code == 200
    schedule = response.get_json()["schedule"]
    assert schedule["monday"]["enabled"] is True
    assert schedule["sunday"]["enabled"] is False
    assert schedule["slot_duration_minutes"] == 60
    assert schedule["booking_buffer_hours"] == 24


def test_update_schedule(app, client, admin_headers) -> None:
    response = client.put(
        "/schedule",
        json={
            "saturday": {
                "enabled": True,
                "time_slots": [{"start": "10:00", "end": "14:00"}],
                "max_appointments_per_slot": 2,
            },
            "slot_duration_minutes": 90,
            "break_between_slots_minutes": 0,
        },
        headers=admin_headers,
    )

    assert response.status_code == 200
    schedule = response.get_json()["schedule"]
    assert schedule["saturday"]["max_appointments_per_slot"] == 2
    assert schedule["monday"]["enabled"] is True
    assert schedule["slot_duration_minutes"] == 90

    with app.app_context():
        assert ScheduleSettings.query.count() == 1

    saturday = next_weekday(5)
    slots = client.get(f"/appointments/available-slots?date={saturday.isoformat()}").get_json()["slots"]
    assert slots == ["10:00", "11:30"]


def test_update_schedule_requires_admin(app, client) -> None:
    customer_id = create_user(app)

    response = client.put("/schedule", json={"slot_duration_minutes": 30}, headers=auth_headers(app, customer_id))

    assert response.status_code == 403


@pytest.mark.parametrize(
    "payload",
    [
        {"slot_duration_minutes": 0},
        {"break_between_slots_minutes": -5},
        {"monday": {"enabled": True, "time_slots": [{"start": "12:00", "end": "09:00"}]}},
        {"monday": {"enabled": True, "time_slots": [{"start": "9am", "end": "12:00"}]}},
        {"tuesday": "closed"},
    ],
)
def test_update_schedule_rejects_invalid_payload(client, admin_headers, payload) -> None:
    response = client.put("/schedule", json=payload, headers=admin_headers)

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_payload"
