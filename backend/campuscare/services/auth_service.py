# Overview: Authenticated principal handling; identity itself lives in the external auth service.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from ..errors import AccessDenied


ROLE_STUDENT = "student"
ROLE_STAFF = "staff"
ROLE_ADMIN = "admin"

VALID_ROLES = {ROLE_STUDENT, ROLE_STAFF, ROLE_ADMIN}
OPERATOR_ROLES = {ROLE_STAFF, ROLE_ADMIN}

_TOKEN_SALT = "campuscare-principal"


@dataclass(frozen=True)
class Principal:
    """Opaque authenticated identity passed into every service call."""
    user_id: int
    role: str

    @property
    def is_operator(self) -> bool:
        return self.role in OPERATOR_ROLES


def require_operator(principal: Principal) -> None:
    if principal is None or not principal.is_operator:
        raise AccessDenied("Operator role required")


def require_owner_or_operator(principal: Principal, owner_user_id: int) -> None:
    if principal is None:
        raise AccessDenied("Authentication required")
    if principal.user_id != owner_user_id and not principal.is_operator:
        raise AccessDenied("Access denied")


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=_TOKEN_SALT)


def issue_token(user_id: int, role: str) -> str:
    """
    Sign a bearer token for (user_id, role).

    The identity service calls this after it has authenticated the user;
    the engine never sees credentials.
    """
    if role not in VALID_ROLES:
        raise ValueError(f"Invalid role '{role}'. Must be one of: {', '.join(sorted(VALID_ROLES))}")
    return _serializer().dumps({"user_id": int(user_id), "role": role})


def load_principal(token: str) -> Principal | None:
    """Verify a bearer token. Returns None when it is invalid or expired."""
    max_age = current_app.config.get("AUTH_TOKEN_MAX_AGE_SECONDS", 86400)
    try:
        data = _serializer().loads(token, max_age=max_age)
    except (SignatureExpired, BadSignature):
        return None

    role = data.get("role")
    user_id = data.get("user_id")
    if role not in VALID_ROLES or not isinstance(user_id, int):
        return None
    return Principal(user_id=user_id, role=role)
