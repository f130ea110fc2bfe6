"""Transactional email via Resend, delivered best-effort off the request path.

Callers hand plain ``dict`` snapshots to the dispatcher so that background
delivery never touches a SQLAlchemy session.
"""
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

import resend

from ..errors import NotificationError

logger = logging.getLogger(__name__)


def _dollars(cents: int | None) -> str:
    return f"${(cents or 0) / 100:.2f}"


class Notifier:
    """Renders and sends the customer-facing emails."""

    def __init__(
        self,
        api_key: str | None,
        from_email: str,
        store_name: str,
        admin_email: str | None = None,
    ) -> None:
        self.api_key = api_key
        self.from_email = from_email
        self.store_name = store_name
        self.admin_email = admin_email

    def send(self, to: str, subject: str, html: str) -> dict | None:
        if not self.api_key:
            logger.warning("RESEND_API_KEY not configured. Email to %s not sent.", to)
            return None
        resend.api_key = self.api_key
        try:
            response = resend.Emails.send(
                {"from": self.from_email, "to": [to], "subject": subject, "html": html}
            )
        except Exception as exc:
            raise NotificationError(f"Failed to send email to {to}: {exc}") from exc
        logger.info("Email sent to %s: %s", to, subject)
        return response

    def send_appointment_confirmation(self, appointment: dict[str, object]) -> None:
        lines = [
            f"<p>Hi {appointment['customer_name']},</p>",
            f"<p>Your {appointment['service_name']} appointment is confirmed for "
            f"{appointment['date']} at {appointment['time']}.</p>",
        ]
        if appointment.get("deposit_paid") and appointment.get("remaining_balance_cents"):
            lines.append(
                f"<p>Deposit paid: {_dollars(appointment['deposit_amount_cents'])}. "
                f"Balance due at your visit: {_dollars(appointment['remaining_balance_cents'])}.</p>"
            )
        self.send(
            appointment["customer_email"],
            f"Appointment Confirmed - {appointment['date']}",
            "".join(lines),
        )

    def send_order_confirmation(self, order: dict[str, object]) -> None:
        rows = "".join(
            f"<li>{item['product_name']} x {item['quantity']}: "
            f"{_dollars(item['unit_price_cents'] * item['quantity'])}</li>"
            for item in order.get("items", [])
        )
        self.send(
            order["customer_email"],
            f"Order Confirmation - {order['id']}",
            f"<p>Thank you, {order['customer_name']}!</p><ul>{rows}</ul>"
            f"<p>Total: {_dollars(order['total_cents'])}</p>",
        )

    def send_refund_notice(
        self, email: str, name: str, description: str, amount_cents: int, reason: str
    ) -> None:
        self.send(
            email,
            f"Refund Confirmation - {self.store_name}",
            f"<p>Hi {name},</p><p>We have refunded {_dollars(amount_cents)} for {description}.</p>"
            f"<p>Reason: {reason}</p>",
        )

    def send_refund_admin_notice(
        self,
        email: str,
        name: str,
        description: str,
        amount_cents: int,
        reason: str,
        to: str | None = None,
    ) -> None:
        admin = to or self.admin_email
        if not admin:
            logger.debug("No admin address; refund copy for %s skipped", email)
            return
        self.send(
            admin,
            f"Refund Processed: {_dollars(amount_cents)} for {name}",
            f"<p>{name} ({email}) was refunded {_dollars(amount_cents)} for {description}.</p>"
            f"<p>Reason: {reason}</p>",
        )

    def send_membership_activated(self, email: str, name: str, tier_name: str, price_cents: int) -> None:
        self.send(
            email,
            f"Welcome to {tier_name} - Your Membership is Active!",
            f"<p>Hi {name},</p><p>Your {tier_name} membership ({_dollars(price_cents)}/month) is now active.</p>",
        )

    def send_membership_activated_admin(self, email: str, name: str, tier_name: str) -> None:
        if not self.admin_email:
            return
        self.send(
            self.admin_email,
            f"New Membership: {name} subscribed to {tier_name}",
            f"<p>{name} ({email}) subscribed to {tier_name}.</p>",
        )

    def send_membership_cancelled(
        self, email: str, name: str, tier_name: str, price_cents: int, cancel_date: str
    ) -> None:
        self.send(
            email,
            f"Membership Cancellation Scheduled - {self.store_name}",
            f"<p>Hi {name},</p><p>Your {tier_name} membership will end on {cancel_date}. "
            "You keep your benefits until then.</p>",
        )

    def send_membership_cancelled_admin(self, email: str, name: str, tier_name: str, price_cents: int) -> None:
        if not self.admin_email:
            return
        self.send(
            self.admin_email,
            f"Membership Cancelled: {name} cancelled {tier_name}",
            f"<p>{name} ({email}) cancelled {tier_name} ({_dollars(price_cents)}/month).</p>",
        )


class NotificationDispatcher:
    """Fire-and-forget delivery with a bounded retry policy.

    ``submit`` never raises. With ``run_async`` off the job runs inline,
    which keeps tests deterministic while still swallowing failures.
    Each job sends one email, so a retry never repeats a delivered message.
    """

    def __init__(
        self,
        notifier: Notifier,
        run_async: bool = True,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
        max_workers: int = 2,
    ) -> None:
        self.notifier = notifier
        self.run_async = run_async
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify") if run_async else None

    def submit(self, kind: str, *args: object, **kwargs: object) -> None:
        send: Callable[..., object] | None = getattr(self.notifier, kind, None)
        if send is None:
            logger.error("Unknown notification kind %s", kind)
            return
        if self._executor is None:
            self._deliver(kind, send, args, kwargs)
            return
        try:
            self._executor.submit(self._deliver, kind, send, args, kwargs)
        except RuntimeError:
            logger.exception("Notification executor unavailable; %s dropped", kind)

    def _deliver(self, kind: str, send: Callable[..., object], args: tuple, kwargs: dict) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            try:
                send(*args, **kwargs)
                return True
            except Exception as exc:
                logger.warning("Notification %s failed (attempt %d/%d): %s", kind, attempt, self.max_attempts, exc)
                if attempt < self.max_attempts and self.retry_delay:
                    time.sleep(self.retry_delay * attempt)
        logger.error("Giving up on notification %s after %d attempts", kind, self.max_attempts)
        return False

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
