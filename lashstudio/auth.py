"""Signed bearer tokens for customers and admins."""
from __future__ import annotations

from flask import current_app, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from werkzeug.security import check_password_hash, generate_password_hash

from .errors import AuthenticationError, PermissionDeniedError, ValidationError
from .extensions import db
from .models import User
from .repositories import UserRepository


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt="auth-token")


def build_token(payload: dict[str, object]) -> str:
    return _serializer().dumps(payload)


def get_jwt_identity() -> int | None:
    """Return the user_id from the ``Authorization: Bearer`` header, or None."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None

    token = auth_header[7:]
    max_age = int(current_app.config.get("AUTH_TOKEN_MAX_AGE", 86400))
    try:
        payload = _serializer().loads(token, max_age=max_age)
    except (BadSignature, SignatureExpired):
        return None
    if not isinstance(payload, dict):
        return None
    return payload.get("user_id")


def current_user(optional: bool = False) -> User | None:
    user_id = get_jwt_identity()
    user = UserRepository.get(user_id) if user_id is not None else None
    if user is None and not optional:
        raise AuthenticationError()
    return user


def require_user() -> User:
    return current_user()


def require_admin() -> User:
    user = current_user()
    if user.role != "admin":
        raise PermissionDeniedError("Admin access required")
    return user


def register_user(payload: dict[str, object]) -> User:
    email = str(payload.get("email") or "").strip().lower()
    password = str(payload.get("password") or "")
    first_name = str(payload.get("first_name") or "").strip()

    if not email or not password or not first_name:
        raise ValidationError("email, password and first_name are required")
    if "@" not in email:
        raise ValidationError("email is not valid")
    if len(password) < 8:
        raise ValidationError("password must be at least 8 characters")
    if UserRepository.get_by_email(email) is not None:
        raise ValidationError("an account with this email already exists")

    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        first_name=first_name,
        last_name=str(payload.get("last_name") or "").strip(),
        phone=(str(payload.get("phone") or "").strip() or None),
        role="customer",
    )
    return UserRepository.upsert(user)


def authenticate(email: str | None, password: str | None) -> User:
    email = (email or "").strip().lower()
    if not email or not password:
        raise ValidationError("email and password are required")

    user = UserRepository.get_by_email(email)
    # Only werkzeug-format hashes are accepted.
    if user is None or not user.password_hash or not check_password_hash(user.password_hash, password):
        raise AuthenticationError("invalid email or password")
    return user


def set_password(user: User, password: str) -> None:
    user.password_hash = generate_password_hash(password)
    db.session.add(user)
