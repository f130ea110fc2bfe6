"""Per-entity persistence helpers.

Every write goes through ``upsert`` so that the optimistic ``version`` check
configured on the models is turned into a ``ConflictError`` in one place.
"""
from __future__ import annotations

from datetime import date
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from .errors import ConflictError
from .extensions import db
from .models import Appointment, Membership, Order, ScheduleSettings, User


def commit(*entities: db.Model) -> None:
    """Add ``entities`` to the session and commit, rolling back on failure."""
    for entity in entities:
        db.session.add(entity)
    try:
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise ConflictError("The record was modified by another request. Please retry.") from exc
    except SQLAlchemyError:
        db.session.rollback()
        raise


class AppointmentRepository:
    @staticmethod
    def get(appointment_id: str) -> Optional[Appointment]:
        return db.session.get(Appointment, appointment_id)

    @staticmethod
    def list(
        on_date: date | None = None,
        user_id: int | None = None,
        status: str | None = None,
    ) -> list[Appointment]:
        query = Appointment.query
        if on_date is not None:
            query = query.filter(Appointment.date == on_date)
        if user_id is not None:
            query = query.filter(Appointment.user_id == user_id)
        if status is not None:
            query = query.filter(Appointment.status == status)
        return query.order_by(Appointment.date, Appointment.time, Appointment.created_at).all()

    @staticmethod
    def upsert(appointment: Appointment) -> Appointment:
        commit(appointment)
        return appointment


class OrderRepository:
    @staticmethod
    def get(order_id: str) -> Optional[Order]:
        return db.session.get(Order, order_id)

    @staticmethod
    def list(user_id: int | None = None, customer_email: str | None = None) -> list[Order]:
        query = Order.query
        if user_id is not None:
            query = query.filter(Order.user_id == user_id)
        if customer_email is not None:
            query = query.filter(Order.customer_email == customer_email)
        return query.order_by(Order.created_at.desc()).all()

    @staticmethod
    def upsert(order: Order) -> Order:
        commit(order)
        return order


class UserRepository:
    @staticmethod
    def get(user_id: int) -> Optional[User]:
        return db.session.get(User, user_id)

    @staticmethod
    def get_by_email(email: str) -> Optional[User]:
        return User.query.filter(User.email == email.strip().lower()).first()

    @staticmethod
    def list() -> list[User]:
        return User.query.order_by(User.created_at.desc()).all()

    @staticmethod
    def upsert(user: User) -> User:
        if user.membership is not None:
            commit(user, user.membership)
        else:
            commit(user)
        return user

    @staticmethod
    def get_membership(user_id: int) -> Optional[Membership]:
        return Membership.query.filter(Membership.user_id == user_id).first()


class ScheduleRepository:
    @staticmethod
    def get() -> ScheduleSettings:
        """Return the stored policy, or an unsaved default when none exists yet."""
        settings = ScheduleSettings.query.order_by(ScheduleSettings.settings_id).first()
        return settings if settings is not None else ScheduleSettings.default()

    @staticmethod
    def upsert(settings: ScheduleSettings) -> ScheduleSettings:
        commit(settings)
        return settings
