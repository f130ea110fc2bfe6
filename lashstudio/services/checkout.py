"""Stripe checkout sessions for deposits and orders, and their reconciliation.

Reconciliation is idempotent: local state only moves forward from
``pending``, so a repeated verify call, a webhook racing the redirect,
or a concurrent duplicate request all return the already-reconciled record.
"""
from __future__ import annotations

import logging

from ..config import BookingPolicy
from ..errors import (ConflictError, InvalidTransitionError, NotFoundError,
                      PaymentIncompleteError, ValidationError)
from ..extensions import db
from ..models import Appointment, Order, OrderItem, generate_id, utc_now
from ..repositories import AppointmentRepository, OrderRepository
from .appointments import parse_cents
from .notifications import NotificationDispatcher
from .payments import StripeGateway, _field

logger = logging.getLogger(__name__)


def deposit_for(price_cents: int, policy: BookingPolicy) -> tuple[int, int]:
    """Return ``(deposit, remaining)``; the deposit never exceeds the price."""
    deposit = min(policy.deposit_amount_cents, price_cents)
    return deposit, price_cents - deposit


class CheckoutService:
    def __init__(
        self,
        gateway: StripeGateway,
        dispatcher: NotificationDispatcher,
        policy: BookingPolicy,
    ) -> None:
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.policy = policy

    # --- Appointment deposits -------------------------------------------

    def create_deposit_session(self, appointment_id: str) -> dict[str, str | None]:
        appointment = AppointmentRepository.get(appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment not found")
        if appointment.status == "cancelled" or appointment.payment_status != "pending":
            raise InvalidTransitionError("This appointment is not awaiting payment")

        deposit, remaining = deposit_for(appointment.price_cents, self.policy)
        if deposit <= 0:
            raise ValidationError("Nothing to pay for this appointment")

        session = self.gateway.create_checkout_session(
            payment_method_types=["card"],
            mode="payment",
            line_items=[
                {
                    "price_data": {
                        "currency": self.policy.currency,
                        "product_data": {
                            "name": f"Deposit - {appointment.service_name}",
                            "description": (
                                f"Appointment on {appointment.date.isoformat()} at {appointment.time}"
                            ),
                        },
                        "unit_amount": deposit,
                    },
                    "quantity": 1,
                }
            ],
            success_url=(
                f"{self.policy.base_url}/booking-confirmation"
                f"?session_id={{CHECKOUT_SESSION_ID}}&appointment_id={appointment.appointment_id}"
            ),
            cancel_url=f"{self.policy.base_url}/services?booking_cancelled=true",
            client_reference_id=appointment.appointment_id,
            customer_email=appointment.customer_email,
            metadata={
                "appointmentId": appointment.appointment_id,
                "depositAmount": str(deposit),
                "remainingBalance": str(remaining),
            },
        )

        appointment.stripe_session_id = session.id
        AppointmentRepository.upsert(appointment)
        return {"session_id": session.id, "url": session.url}

    def verify_and_reconcile(self, session_id: str, appointment_id: str) -> Appointment:
        session = self.gateway.retrieve_checkout_session(session_id)
        if session.payment_status != "paid":
            raise PaymentIncompleteError()

        session_appointment = session.metadata.get("appointmentId")
        if session_appointment and session_appointment != appointment_id:
            raise ValidationError("Session does not belong to this appointment")

        appointment = AppointmentRepository.get(appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment not found")
        return self._apply_deposit(appointment, session.id, session.payment_intent, session.metadata)

    def _apply_deposit(
        self,
        appointment: Appointment,
        session_id: str,
        payment_intent: str | None,
        metadata: dict[str, str],
    ) -> Appointment:
        if appointment.payment_status != "pending":
            return appointment

        deposit = self._metadata_cents(metadata, "depositAmount")
        if deposit is None:
            deposit, _ = deposit_for(appointment.price_cents, self.policy)
        deposit = min(deposit, appointment.price_cents)
        remaining = appointment.price_cents - deposit

        appointment.deposit_amount_cents = deposit
        appointment.deposit_paid = True
        appointment.remaining_balance_cents = remaining
        appointment.balance_paid = remaining == 0
        appointment.payment_status = "paid" if remaining == 0 else "deposit_paid"
        appointment.status = "confirmed"
        appointment.payment_intent_id = payment_intent
        appointment.stripe_session_id = session_id
        appointment.updated_at = utc_now()
        try:
            AppointmentRepository.upsert(appointment)
        except ConflictError:
            # Another request reconciled the same appointment first.
            logger.info("Appointment %s already reconciled concurrently", appointment.appointment_id)
            db.session.expire_all()
            return AppointmentRepository.get(appointment.appointment_id)

        self.dispatcher.submit("send_appointment_confirmation", appointment.to_dict())
        return appointment

    @staticmethod
    def _metadata_cents(metadata: dict[str, str], key: str) -> int | None:
        value = metadata.get(key)
        if value in (None, ""):
            return None
        try:
            return int(value)
        except ValueError:
            logger.warning("Ignoring malformed %s metadata: %r", key, value)
            return None

    # --- Product orders --------------------------------------------------

    def create_order_session(
        self,
        order_data: dict[str, object],
        items: list[dict[str, object]],
        shipping_cents: int = 0,
        tax_cents: int = 0,
        user_id: int | None = None,
    ) -> dict[str, str | None]:
        if not items:
            raise ValidationError("No items in cart")
        if not order_data.get("customer_name") or not order_data.get("customer_email"):
            raise ValidationError("customer_name and customer_email are required")
        if shipping_cents < 0 or tax_cents < 0:
            raise ValidationError("shipping and tax must not be negative")

        order = Order(
            order_id=generate_id("ORD"),
            user_id=user_id,
            customer_name=str(order_data["customer_name"]).strip(),
            customer_email=str(order_data["customer_email"]).strip().lower(),
            customer_phone=order_data.get("customer_phone") or None,
            shipping_address=order_data.get("shipping_address") or None,
            notes=order_data.get("notes") or None,
            shipping_cents=shipping_cents,
            tax_cents=tax_cents,
            status="pending",
            payment_status="pending",
        )
        line_items = []
        subtotal = 0
        for raw in items:
            name = raw.get("name") or raw.get("product_name")
            if not raw.get("product_id") or not name:
                raise ValidationError("Each item needs product_id and name")
            try:
                quantity = int(raw.get("quantity") or 0)
            except (TypeError, ValueError) as exc:
                raise ValidationError("quantity must be an integer") from exc
            if quantity <= 0:
                raise ValidationError("quantity must be at least 1")
            unit_price = parse_cents(raw, "price_cents", "price")

            order.items.append(
                OrderItem(
                    product_id=str(raw["product_id"]),
                    product_name=str(name),
                    quantity=quantity,
                    unit_price_cents=unit_price,
                )
            )
            subtotal += unit_price * quantity
            product_data = {"name": str(name)}
            if raw.get("category"):
                product_data["description"] = str(raw["category"])
            line_items.append(
                {
                    "price_data": {
                        "currency": self.policy.currency,
                        "product_data": product_data,
                        "unit_amount": unit_price,
                    },
                    "quantity": quantity,
                }
            )

        for label, description, amount in (
            ("Shipping", "Standard shipping", shipping_cents),
            ("Tax", "Sales tax", tax_cents),
        ):
            if amount > 0:
                line_items.append(
                    {
                        "price_data": {
                            "currency": self.policy.currency,
                            "product_data": {"name": label, "description": description},
                            "unit_amount": amount,
                        },
                        "quantity": 1,
                    }
                )
        order.total_cents = subtotal + shipping_cents + tax_cents
        OrderRepository.upsert(order)

        session = self.gateway.create_checkout_session(
            payment_method_types=["card"],
            line_items=line_items,
            mode="payment",
            success_url=(
                f"{self.policy.base_url}/order-confirmation"
                f"?session_id={{CHECKOUT_SESSION_ID}}&order_id={order.order_id}"
            ),
            cancel_url=f"{self.policy.base_url}/checkout",
            metadata={"orderId": order.order_id},
            payment_intent_data={"metadata": {"orderId": order.order_id}},
            customer_email=order.customer_email,
            shipping_address_collection={"allowed_countries": ["US", "CA"]},
        )
        order.stripe_session_id = session.id
        OrderRepository.upsert(order)
        return {"session_id": session.id, "url": session.url, "order_id": order.order_id}

    def verify_order_session(self, session_id: str, order_id: str) -> Order:
        session = self.gateway.retrieve_checkout_session(session_id)
        if session.payment_status != "paid":
            raise PaymentIncompleteError()

        order = OrderRepository.get(order_id)
        if order is None:
            raise NotFoundError("Order not found")
        return self._mark_order_paid(order, session.id, session.payment_intent)

    def _mark_order_paid(self, order: Order, session_id: str, payment_intent: str | None) -> Order:
        if order.payment_status in ("paid", "refunded"):
            return order

        order.payment_status = "paid"
        order.status = "processing"
        order.stripe_session_id = session_id
        order.stripe_payment_intent_id = payment_intent
        order.updated_at = utc_now()
        try:
            OrderRepository.upsert(order)
        except ConflictError:
            logger.info("Order %s already reconciled concurrently", order.order_id)
            db.session.expire_all()
            return OrderRepository.get(order.order_id)

        self.dispatcher.submit("send_order_confirmation", order.to_dict())
        return order

    # --- Webhooks ----------------------------------------------------------

    def handle_webhook_event(self, event) -> str:
        """Apply a verified Stripe event; returns a short description for logging."""
        event_type = _field(event, "type")
        data = _field(event, "data") or {}
        obj = _field(data, "object") or {}
        metadata = dict(_field(obj, "metadata") or {})

        if event_type == "checkout.session.completed":
            if _field(obj, "payment_status") != "paid":
                return "session not paid"
            session_id = _field(obj, "id")
            payment_intent = _field(obj, "payment_intent")
            if not isinstance(payment_intent, str):
                payment_intent = _field(payment_intent, "id") if payment_intent else None

            if metadata.get("orderId"):
                order = OrderRepository.get(metadata["orderId"])
                if order is None:
                    logger.warning("Webhook for unknown order %s", metadata["orderId"])
                    return "unknown order"
                self._mark_order_paid(order, session_id, payment_intent)
                logger.info("Order %s marked as paid", order.order_id)
                return "order paid"

            if metadata.get("appointmentId"):
                appointment = AppointmentRepository.get(metadata["appointmentId"])
                if appointment is None:
                    logger.warning("Webhook for unknown appointment %s", metadata["appointmentId"])
                    return "unknown appointment"
                self._apply_deposit(appointment, session_id, payment_intent, metadata)
                return "appointment reconciled"
            return "no local reference"

        if event_type == "payment_intent.payment_failed":
            order_id = metadata.get("orderId")
            logger.info("Payment failed: %s", _field(obj, "id"))
            order = OrderRepository.get(order_id) if order_id else None
            if order is not None and order.payment_status == "pending":
                order.payment_status = "failed"
                order.updated_at = utc_now()
                OrderRepository.upsert(order)
                return "order payment failed"
            return "payment failed"

        logger.info("Unhandled event type: %s", event_type)
        return "ignored"
