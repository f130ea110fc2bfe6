"""Error taxonomy shared by the booking services and the HTTP layer."""
from __future__ import annotations


class ServiceError(Exception):
    """Base class for errors surfaced to API callers."""

    code = "server_error"
    status_code = 500
    default_message = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "message": self.message}


class ValidationError(ServiceError):
    code = "invalid_payload"
    status_code = 400
    default_message = "Invalid request payload"


class AuthenticationError(ServiceError):
    code = "unauthorized"
    status_code = 401
    default_message = "Authentication required. Please log in to continue."


class PermissionDeniedError(ServiceError):
    code = "forbidden"
    status_code = 403
    default_message = "You are not allowed to perform this action"


class NotFoundError(ServiceError):
    code = "not_found"
    status_code = 404
    default_message = "Resource not found"


class ConflictError(ServiceError):
    code = "conflict"
    status_code = 409
    default_message = "The request conflicts with the current state"


class AlreadyRefundedError(ConflictError):
    code = "already_refunded"
    default_message = "Payment has already been refunded"


class NotPaidError(ConflictError):
    code = "not_paid"
    default_message = "Payment has not been completed"


class AlreadyActiveError(ConflictError):
    code = "already_active"
    default_message = "You already have an active membership. Please cancel it first to switch plans."


class InvalidSessionTypeError(ConflictError):
    code = "invalid_session_type"
    default_message = "Invalid session type"


class BenefitLimitReachedError(ConflictError):
    code = "benefit_limit_reached"
    default_message = "No membership benefits remaining for this period"


class InvalidTransitionError(ConflictError):
    code = "invalid_transition"
    default_message = "This status change is not allowed"


class PaymentIncompleteError(ServiceError):
    code = "payment_incomplete"
    status_code = 402
    default_message = "Payment not completed"


class UpstreamUnavailableError(ServiceError):
    code = "payment_unavailable"
    status_code = 503
    default_message = "Payments are not currently available. Please contact support."


class NotificationError(Exception):
    """Raised by the notifier; always caught by the dispatcher, never surfaced."""
