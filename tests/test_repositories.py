"""Tests for the per-entity repositories."""
from __future__ import annotations

from conftest import create_appointment, create_user, give_membership, next_weekday
from lashstudio.repositories import AppointmentRepository, ScheduleRepository, UserRepository


def test_appointment_list_filters(app) -> None:
    monday, tuesday = next_weekday(0), next_weekday(1)
    user_id = create_user(app)
    create_appointment(app, date=monday, time="10:15")
    first = create_appointment(app, date=monday, time="09:00", user_id=user_id)
    create_appointment(app, date=tuesday, status="confirmed", payment_status="paid")

    with app.app_context():
        on_monday = AppointmentRepository.list(on_date=monday)
        mine = AppointmentRepository.list(user_id=user_id)
        confirmed = AppointmentRepository.list(status="confirmed")

    assert [appt.time for appt in on_monday] == ["09:00", "10:15"]
    assert [appt.appointment_id for appt in mine] == [first]
    assert len(confirmed) == 1


def test_user_lookup_and_membership(app) -> None:
    user_id = create_user(app, email="jane@example.com")
    create_user(app, email="admin@example.com", role="admin")
    give_membership(app, user_id, tier_id="hybrid")

    with app.app_context():
        assert UserRepository.get_by_email(" Jane@Example.com ").user_id == user_id
        assert {user.email for user in UserRepository.list()} == {"jane@example.com", "admin@example.com"}
        assert UserRepository.get_membership(user_id).tier_id == "hybrid"
        assert UserRepository.get(user_id).to_dict_basic()["membership"]["tier_id"] == "hybrid"


def test_schedule_defaults_until_saved(app) -> None:
    with app.app_context():
        settings = ScheduleRepository.get()
        assert settings.settings_id is None
        assert settings.day_policy("saturday")["enabled"] is False

        ScheduleRepository.upsert(settings)
        assert ScheduleRepository.get().settings_id is not None
