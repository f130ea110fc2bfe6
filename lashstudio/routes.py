from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .auth import authenticate, build_token, current_user, register_user, require_admin, require_user
from .errors import ServiceError, ValidationError
from .extensions import db
from .models import utc_now
from .repositories import AppointmentRepository, OrderRepository, ScheduleRepository, commit
from .services import get_dispatcher, get_gateway, get_policy
from .services.appointments import AppointmentService, parse_cents, parse_date
from .services.availability import available_slots, studio_timezone, validate_schedule_payload
from .services.checkout import CheckoutService
from .services.memberships import MembershipService, expire_if_period_ended
from .services.refunds import RefundService

bp = Blueprint("api", __name__)


def _json_body() -> dict[str, object]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object")
    return payload


def _arg(payload: dict[str, object], *names: str) -> object:
    """First non-empty value among ``names`` (snake_case and camelCase spellings)."""
    for name in names:
        value = payload.get(name)
        if value not in (None, ""):
            return value
    return None


def _optional_cents(payload: dict[str, object], cents_key: str, dollars_key: str) -> int:
    if payload.get(cents_key) is None and payload.get(dollars_key) is None:
        return 0
    return parse_cents(payload, cents_key, dollars_key)


def _appointments() -> AppointmentService:
    return AppointmentService(get_dispatcher(), get_policy())


def _checkout() -> CheckoutService:
    return CheckoutService(get_gateway(), get_dispatcher(), get_policy())


def _memberships(gateway_required: bool = True) -> MembershipService:
    return MembershipService(get_gateway(required=gateway_required), get_dispatcher(), get_policy())


# --- Health ---------------------------------------------------------------


@bp.get("/health")
def health_check() -> tuple[dict[str, str], int]:
    """
    Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
        schema:
          type: object
          properties:
            status:
              type: string
              example: ok
    """
    return jsonify({"status": "ok"}), 200


@bp.get("/db-health")
def database_health() -> tuple[dict[str, str], int]:
    """Check connectivity to the configured database.
    ---
    tags:
      - Health
    responses:
      200:
        description: Database connection is ok.
      500:
        description: Database connection failed.
    """
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        current_app.logger.exception("Database health check failed", exc_info=exc)
        return jsonify({"database": "error"}), 500
    return jsonify({"database": "ok"}), 200


# --- Authentication ------------------------------------------------------


@bp.post("/auth/register")
def register() -> tuple[dict[str, object], int]:
    """Create a customer account and return an access token.
    ---
    tags:
      - Authentication
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            email:
              type: string
            password:
              type: string
            first_name:
              type: string
            last_name:
              type: string
            phone:
              type: string
          required:
            - email
            - password
            - first_name
    responses:
      201:
        description: Account created
      400:
        description: Invalid input or email already registered
    """
    user = register_user(_json_body())
    token = build_token({"user_id": user.user_id, "role": user.role})
    return jsonify({"token": token, "user": user.to_dict_basic()}), 201


@bp.post("/auth/login")
def login() -> tuple[dict[str, object], int]:
    """Authenticate a user by email/password and return an access token.
    ---
    tags:
      - Authentication
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            email:
              type: string
            password:
              type: string
          required:
            - email
            - password
    responses:
      200:
        description: Login successful, returns access token
      400:
        description: Missing email or password
      401:
        description: Invalid email or password
    """
    payload = _json_body()
    user = authenticate(payload.get("email"), payload.get("password"))
    token = build_token({"user_id": user.user_id, "role": user.role})
    return jsonify({"token": token, "user": user.to_dict_basic()}), 200


# --- Schedule & availability ---------------------------------------------


@bp.get("/schedule")
def get_schedule() -> tuple[dict[str, object], int]:
    """Return the studio's operating hours and booking policy.
    ---
    tags:
      - Schedule
    responses:
      200:
        description: Current schedule settings
    """
    return jsonify({"schedule": ScheduleRepository.get().to_dict()}), 200


@bp.put("/schedule")
def update_schedule() -> tuple[dict[str, object], int]:
    """Update operating hours and booking policy (admin only).
    ---
    tags:
      - Schedule
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            monday:
              type: object
              description: "{enabled, time_slots: [{start, end}], max_appointments_per_slot}"
            slot_duration_minutes:
              type: integer
            break_between_slots_minutes:
              type: integer
            max_appointments_per_slot:
              type: integer
            booking_buffer_hours:
              type: integer
            advance_booking_days:
              type: integer
    responses:
      200:
        description: Schedule updated
      400:
        description: Invalid schedule
      401:
        description: Unauthorized
      403:
        description: Admin access required
    """
    require_admin()
    fields = validate_schedule_payload(_json_body())

    settings = ScheduleRepository.get()
    if "days" in fields:
        days = dict(settings.days or {})
        days.update(fields.pop("days"))
        settings.days = days
    for key, value in fields.items():
        setattr(settings, key, value)
    settings.updated_at = utc_now()
    ScheduleRepository.upsert(settings)
    return jsonify({"schedule": settings.to_dict()}), 200


@bp.get("/appointments/available-slots")
def list_available_slots() -> tuple[dict[str, object], int]:
    """List bookable start times for a date.
    ---
    tags:
      - Appointments
    parameters:
      - name: date
        in: query
        type: string
        required: true
        description: YYYY-MM-DD
    responses:
      200:
        description: Ordered list of HH:MM labels
      400:
        description: Missing or invalid date
    """
    raw_date = (request.args.get("date") or "").strip()
    if not raw_date:
        raise ValidationError("Date is required")
    target_date = parse_date(raw_date)

    policy = get_policy()
    slots = available_slots(
        target_date,
        ScheduleRepository.get(),
        AppointmentRepository.list(on_date=target_date),
        tz=studio_timezone(policy.studio_timezone),
    )
    return jsonify({"date": target_date.isoformat(), "slots": slots}), 200


# --- Appointments ---------------------------------------------------------


@bp.get("/appointments")
def list_appointments() -> tuple[dict[str, object], int]:
    """List appointments, optionally filtered by date and status (admin only).
    ---
    tags:
      - Appointments
    parameters:
      - name: date
        in: query
        type: string
      - name: status
        in: query
        type: string
    responses:
      200:
        description: Appointments
      401:
        description: Unauthorized
      403:
        description: Admin access required
    """
    require_admin()
    raw_date = request.args.get("date")
    appointments = AppointmentRepository.list(
        on_date=parse_date(raw_date) if raw_date else None,
        status=request.args.get("status") or None,
    )
    return jsonify({"appointments": [appt.to_dict() for appt in appointments]}), 200


@bp.post("/appointments")
def create_appointment() -> tuple[dict[str, object], int]:
    """Create a pending appointment awaiting its deposit.
    ---
    tags:
      - Appointments
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            service_id:
              type: string
            service_name:
              type: string
            price_cents:
              type: integer
            customer_name:
              type: string
            customer_email:
              type: string
            customer_phone:
              type: string
            date:
              type: string
            time:
              type: string
          required:
            - service_id
            - service_name
            - price_cents
            - customer_name
            - customer_email
            - date
            - time
    responses:
      201:
        description: Appointment created
      400:
        description: Invalid input or slot unavailable
    """
    user = current_user(optional=True)
    appointment = _appointments().create_appointment(
        _json_body(), user_id=user.user_id if user else None
    )
    return jsonify({"appointment": appointment.to_dict()}), 201


@bp.patch("/appointments/<appointment_id>")
def update_appointment(appointment_id: str) -> tuple[dict[str, object], int]:
    """Edit scheduling details of an appointment (admin only).
    ---
    tags:
      - Appointments
    parameters:
      - name: appointment_id
        in: path
        type: string
        required: true
    responses:
      200:
        description: Appointment updated
      400:
        description: Invalid fields
      404:
        description: Not found
      409:
        description: Appointment was refunded or modified concurrently
    """
    require_admin()
    appointment = _appointments().update_appointment(appointment_id, _json_body())
    return jsonify({"appointment": appointment.to_dict()}), 200


@bp.post("/appointments/<appointment_id>/balance-paid")
def mark_balance_paid(appointment_id: str) -> tuple[dict[str, object], int]:
    """Record that the remaining balance was collected in the studio.
    ---
    tags:
      - Appointments
    responses:
      200:
        description: Appointment fully paid
      409:
        description: Deposit not yet paid
    """
    require_admin()
    appointment = _appointments().mark_balance_paid(appointment_id)
    return jsonify({"appointment": appointment.to_dict()}), 200


@bp.post("/appointments/<appointment_id>/complete")
def complete_appointment(appointment_id: str) -> tuple[dict[str, object], int]:
    """Mark a confirmed appointment as completed.
    ---
    tags:
      - Appointments
    responses:
      200:
        description: Appointment completed
      401:
        description: Not signed in
      403:
        description: Admin access required
      404:
        description: Appointment not found
      409:
        description: Appointment is not confirmed or was refunded
    """
    require_admin()
    appointment = _appointments().complete(appointment_id)
    return jsonify({"appointment": appointment.to_dict()}), 200


@bp.post("/appointments/<appointment_id>/cancel")
def cancel_appointment(appointment_id: str) -> tuple[dict[str, object], int]:
    """Cancel an appointment. The deposit is kept; use the refund endpoint to return money.
    ---
    tags:
      - Appointments
    responses:
      200:
        description: Appointment cancelled
      401:
        description: Not signed in
      403:
        description: Admin access required
      404:
        description: Appointment not found
      409:
        description: Completed appointments cannot be cancelled
    """
    require_admin()
    appointment = _appointments().cancel(appointment_id)
    return jsonify({"appointment": appointment.to_dict()}), 200


@bp.post("/appointments/priority-booking")
def priority_booking() -> tuple[dict[str, object], int]:
    """Book a refill or full set covered by the member's plan.
    ---
    tags:
      - Appointments
      - Memberships
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            service_id:
              type: string
            date:
              type: string
            time:
              type: string
            benefit_type:
              type: string
              enum: [refill, full_set]
    responses:
      201:
        description: Confirmed appointment
      401:
        description: Unauthorized
      403:
        description: No active membership
      409:
        description: Benefit limit reached
    """
    user = require_user()
    appointment = _appointments().priority_booking(user, _json_body(), _memberships(gateway_required=False))
    return jsonify({"appointment": appointment.to_dict(), "message": "Priority booking confirmed"}), 201


@bp.get("/user/appointments")
def list_user_appointments() -> tuple[dict[str, object], int]:
    user = require_user()
    appointments = AppointmentRepository.list(user_id=user.user_id)
    return jsonify({"appointments": [appt.to_dict() for appt in appointments]}), 200


@bp.get("/user/orders")
def list_user_orders() -> tuple[dict[str, object], int]:
    user = require_user()
    orders = OrderRepository.list(user_id=user.user_id)
    return jsonify({"orders": [order.to_dict() for order in orders]}), 200


# --- Checkout: appointment deposits ----------------------------------------


@bp.post("/create-checkout-session")
def create_checkout_session() -> tuple[dict[str, object], int]:
    """Start a Stripe checkout for an appointment deposit.
    ---
    tags:
      - Payments
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            appointment_id:
              type: string
          required:
            - appointment_id
    responses:
      200:
        description: Checkout session id and redirect URL
      404:
        description: Appointment not found
      409:
        description: Appointment is not awaiting payment
      503:
        description: Stripe unavailable
    """
    appointment_id = _arg(_json_body(), "appointment_id", "appointmentId")
    if not appointment_id:
        raise ValidationError("appointment_id is required")
    session = _checkout().create_deposit_session(str(appointment_id))
    return jsonify(session), 200


@bp.post("/verify-booking-session")
def verify_booking_session() -> tuple[dict[str, object], int]:
    """Confirm a deposit payment and reconcile the appointment.

    Safe to call repeatedly; only the first call changes the appointment.
    ---
    tags:
      - Payments
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            session_id:
              type: string
            appointment_id:
              type: string
    responses:
      200:
        description: Appointment after reconciliation
      402:
        description: Payment not completed
      404:
        description: Appointment not found
    """
    payload = _json_body()
    session_id = _arg(payload, "session_id", "sessionId")
    appointment_id = _arg(payload, "appointment_id", "appointmentId")
    if not session_id or not appointment_id:
        raise ValidationError("session_id and appointment_id are required")

    appointment = _checkout().verify_and_reconcile(str(session_id), str(appointment_id))
    return jsonify({"success": True, "appointment": appointment.to_dict()}), 200


# --- Checkout: product orders ---------------------------------------------


@bp.post("/create-order-checkout")
def create_order_checkout() -> tuple[dict[str, object], int]:
    """Create a pending order and a Stripe checkout session for it.
    ---
    tags:
      - Orders
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            items:
              type: array
              items:
                type: object
                properties:
                  product_id:
                    type: string
                  name:
                    type: string
                  price_cents:
                    type: integer
                  quantity:
                    type: integer
            customer_name:
              type: string
            customer_email:
              type: string
            shipping_cents:
              type: integer
            tax_cents:
              type: integer
    responses:
      200:
        description: Checkout session and order id
      400:
        description: Invalid cart
      503:
        description: Stripe unavailable
    """
    payload = _json_body()
    items = payload.get("items") or []
    if not isinstance(items, list):
        raise ValidationError("items must be a list")
    user = current_user(optional=True)

    checkout = _checkout()
    result = checkout.create_order_session(
        payload,
        items,
        shipping_cents=_optional_cents(payload, "shipping_cents", "shipping"),
        tax_cents=_optional_cents(payload, "tax_cents", "tax"),
        user_id=user.user_id if user else None,
    )
    return jsonify(result), 200


@bp.post("/verify-order-session")
def verify_order_session() -> tuple[dict[str, object], int]:
    """Confirm an order payment.
    ---
    tags:
      - Orders
    responses:
      200:
        description: Order after reconciliation
      402:
        description: Payment not completed
      404:
        description: Order not found
    """
    payload = _json_body()
    session_id = _arg(payload, "session_id", "sessionId")
    order_id = _arg(payload, "order_id", "orderId")
    if not session_id or not order_id:
        raise ValidationError("session_id and order_id are required")

    order = _checkout().verify_order_session(str(session_id), str(order_id))
    return jsonify({"success": True, "order": order.to_dict()}), 200


# --- Memberships -----------------------------------------------------------


@bp.get("/membership")
def get_membership() -> tuple[dict[str, object], int]:
    """Return the caller's membership and remaining benefits for this period.
    ---
    tags:
      - Memberships
    responses:
      200:
        description: Membership (or null) with remaining benefits
      401:
        description: Unauthorized
    """
    user = require_user()
    membership = user.membership
    if membership is None:
        return jsonify({"membership": None, "remaining": {"refills": 0, "full_sets": 0}}), 200

    if expire_if_period_ended(membership):
        commit(membership)
    remaining = _memberships(gateway_required=False).remaining_benefits(membership)
    return jsonify({"membership": membership.to_dict(), "remaining": remaining}), 200


@bp.post("/create-membership-checkout")
def create_membership_checkout() -> tuple[dict[str, object], int]:
    """Start a monthly subscription checkout.
    ---
    tags:
      - Memberships
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            tier_id:
              type: string
              enum: [natural, hybrid, volume, mega]
    responses:
      200:
        description: Checkout session id and redirect URL
      400:
        description: Invalid tier
      401:
        description: Unauthorized
      409:
        description: Membership already active
    """
    user = require_user()
    tier_id = _arg(_json_body(), "tier_id", "tierId")
    session = _memberships().create_checkout(user, str(tier_id) if tier_id else None)
    return jsonify(session), 200


@bp.post("/verify-membership-session")
def verify_membership_session() -> tuple[dict[str, object], int]:
    """Activate a membership after its subscription checkout completes.
    ---
    tags:
      - Memberships
    responses:
      200:
        description: Active membership
      402:
        description: Payment not completed
      409:
        description: Not a membership session
    """
    session_id = _arg(_json_body(), "session_id", "sessionId")
    if not session_id:
        raise ValidationError("session_id is required")
    membership = _memberships().activate(str(session_id))
    return jsonify({"success": True, "membership": membership.to_dict()}), 200


@bp.post("/cancel-membership")
def cancel_membership() -> tuple[dict[str, object], int]:
    """Cancel the caller's membership at the end of the current period.
    ---
    tags:
      - Memberships
    responses:
      200:
        description: Membership flagged to cancel at period end
      401:
        description: Unauthorized
      409:
        description: No active membership
    """
    user = require_user()
    membership = _memberships(gateway_required=False).cancel(user)
    return jsonify(
        {
            "success": True,
            "message": "Membership will be cancelled at the end of the current billing period",
            "membership": membership.to_dict(),
        }
    ), 200


# --- Refunds & webhooks ----------------------------------------------------


@bp.post("/admin/refund")
def admin_refund() -> tuple[dict[str, object], int]:
    """Refund a paid order or appointment (admin only).
    ---
    tags:
      - Admin
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            type:
              type: string
              enum: [order, appointment, booking]
            id:
              type: string
            reason:
              type: string
    responses:
      200:
        description: Refund recorded
      404:
        description: Not found
      409:
        description: Already refunded or not paid
    """
    require_admin()
    payload = _json_body()
    service = RefundService(get_gateway(required=False), get_dispatcher(), get_policy())
    result = service.refund(payload.get("type"), _arg(payload, "id", "order_id", "appointment_id"), payload.get("reason"))
    return jsonify({"success": True, **result.to_dict()}), 200


@bp.post("/webhooks/stripe")
def stripe_webhook() -> tuple[dict[str, object], int]:
    """Receive signed Stripe events.
    ---
    tags:
      - Payments
    responses:
      200:
        description: Event accepted
      400:
        description: Missing or invalid signature
    """
    checkout = _checkout()
    event = checkout.gateway.construct_event(
        request.get_data(), request.headers.get("Stripe-Signature")
    )
    outcome = checkout.handle_webhook_event(event)
    current_app.logger.info("Stripe webhook processed: %s", outcome)
    return jsonify({"received": True}), 200


# --- Registration ----------------------------------------------------------


def _handle_service_error(err: ServiceError) -> tuple[dict[str, str], int]:
    if err.status_code >= 500:
        current_app.logger.warning("%s: %s", err.code, err.message)
    return jsonify(err.to_dict()), err.status_code


def _handle_database_error(exc: SQLAlchemyError) -> tuple[dict[str, str], int]:
    db.session.rollback()
    current_app.logger.exception("Database error while handling request", exc_info=exc)
    return jsonify({"error": "database_error"}), 500


def register_routes(app) -> None:
    app.register_blueprint(bp)
    app.register_error_handler(ServiceError, _handle_service_error)
    app.register_error_handler(SQLAlchemyError, _handle_database_error)
