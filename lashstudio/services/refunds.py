"""Admin refunds for paid orders and appointments."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from ..config import BookingPolicy
from ..errors import (AlreadyRefundedError, NotFoundError, NotPaidError,
                      UpstreamUnavailableError, ValidationError)
from ..models import utc_now
from ..repositories import AppointmentRepository, OrderRepository
from .notifications import NotificationDispatcher
from .payments import StripeGateway

logger = logging.getLogger(__name__)

REFUND_KINDS = {"order": "order", "appointment": "appointment", "booking": "appointment"}
DEFAULT_REASON = "Requested by customer"


@dataclass
class RefundResult:
    kind: str
    id: str
    stripe_refund_id: str | None
    message: str
    manual_reconciliation_required: bool = False

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


class RefundService:
    """Marks the local record refunded, then asks Stripe to move the money.

    The local commit happens first: a processor failure afterwards is logged
    for manual reconciliation and never rolls the record back.
    """

    def __init__(
        self,
        gateway: StripeGateway | None,
        dispatcher: NotificationDispatcher,
        policy: BookingPolicy,
    ) -> None:
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.policy = policy

    def refund(self, kind: str | None, entity_id: str | None, reason: str | None = None) -> RefundResult:
        normalized = REFUND_KINDS.get((kind or "").strip().lower())
        if normalized is None:
            raise ValidationError("type must be 'order' or 'appointment'")
        if not entity_id:
            raise ValidationError("id is required")
        reason = (reason or "").strip() or DEFAULT_REASON

        if normalized == "order":
            return self._refund_order(entity_id, reason)
        return self._refund_appointment(entity_id, reason)

    def _refund_order(self, order_id: str, reason: str) -> RefundResult:
        order = OrderRepository.get(order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if order.payment_status == "refunded":
            raise AlreadyRefundedError("Order has already been refunded")
        if order.payment_status != "paid" and order.status != "completed":
            raise NotPaidError("Order has not been paid")

        order.payment_status = "refunded"
        order.status = "cancelled"
        order.updated_at = utc_now()
        OrderRepository.upsert(order)

        refund_id = self._create_refund("order", order.order_id, order.stripe_payment_intent_id)
        self._notify(order.customer_email, order.customer_name, f"order {order.order_id}", order.total_cents, reason)
        return self._result("order", order.order_id, refund_id)

    def _refund_appointment(self, appointment_id: str, reason: str) -> RefundResult:
        appointment = AppointmentRepository.get(appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment not found")
        if appointment.payment_status == "refunded":
            raise AlreadyRefundedError("Appointment has already been refunded")
        # A deposit alone is non-refundable once the booking is cancelled.
        if appointment.payment_status != "paid" and appointment.status not in ("confirmed", "completed"):
            raise NotPaidError("Appointment has not been paid")

        # Money actually collected: the deposit, plus the balance once settled.
        amount = appointment.deposit_amount_cents or 0
        if appointment.balance_paid:
            amount += appointment.remaining_balance_cents or 0

        appointment.payment_status = "refunded"
        appointment.status = "cancelled"
        appointment.updated_at = utc_now()
        AppointmentRepository.upsert(appointment)

        refund_id = self._create_refund("appointment", appointment.appointment_id, appointment.payment_intent_id)
        self._notify(
            appointment.customer_email,
            appointment.customer_name,
            f"{appointment.service_name} on {appointment.date.isoformat()} at {appointment.time}",
            amount,
            reason,
        )
        return self._result("appointment", appointment.appointment_id, refund_id)

    def _create_refund(self, kind: str, entity_id: str, payment_intent_id: str | None) -> str | None:
        if not payment_intent_id:
            logger.error(
                "No payment intent on %s %s; refund must be issued manually in Stripe", kind, entity_id
            )
            return None
        if self.gateway is None:
            logger.error(
                "Stripe not configured; %s %s (payment intent %s) must be refunded manually",
                kind,
                entity_id,
                payment_intent_id,
            )
            return None
        try:
            return self.gateway.create_refund(payment_intent_id)
        except UpstreamUnavailableError:
            logger.error(
                "Stripe refund failed for %s %s (payment intent %s); manual reconciliation required",
                kind,
                entity_id,
                payment_intent_id,
            )
            return None

    def _notify(self, email: str, name: str, description: str, amount_cents: int, reason: str) -> None:
        self.dispatcher.submit("send_refund_notice", email, name, description, amount_cents, reason)
        self.dispatcher.submit(
            "send_refund_admin_notice", email, name, description, amount_cents, reason, self.policy.store_email
        )

    @staticmethod
    def _result(kind: str, entity_id: str, refund_id: str | None) -> RefundResult:
        if refund_id:
            message = f"{kind.capitalize()} refunded successfully"
        else:
            message = f"{kind.capitalize()} marked as refunded; Stripe refund must be completed manually"
        return RefundResult(
            kind=kind,
            id=entity_id,
            stripe_refund_id=refund_id,
            message=message,
            manual_reconciliation_required=refund_id is None,
        )
