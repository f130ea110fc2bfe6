"""Tests for version-checked writes."""
from __future__ import annotations

import pytest
from sqlalchemy import text

from conftest import create_appointment
from lashstudio.errors import ConflictError
from lashstudio.extensions import db
from lashstudio.models import Appointment
from lashstudio.repositories import AppointmentRepository


def test_stale_write_raises_conflict(app) -> None:
    appointment_id = create_appointment(app)

    with app.app_context():
        appointment = db.session.get(Appointment, appointment_id)
        assert appointment.version == 1
        # Simulate a concurrent writer bumping the row underneath us.
        db.session.execute(
            text("UPDATE appointments SET version = version + 1 WHERE appointment_id = :id"),
            {"id": appointment_id},
        )
        appointment.notes = "stale edit"

        with pytest.raises(ConflictError):
            AppointmentRepository.upsert(appointment)

        db.session.expire_all()
        assert db.session.get(Appointment, appointment_id).notes is None


def test_successful_write_bumps_version(app) -> None:
    appointment_id = create_appointment(app)

    with app.app_context():
        appointment = db.session.get(Appointment, appointment_id)
        appointment.notes = "first"
        AppointmentRepository.upsert(appointment)

        assert appointment.version == 2
