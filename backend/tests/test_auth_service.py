"""Principal token tests."""

import pytest

from campuscare.errors import AccessDenied
from campuscare.services.auth_service import (
    Principal,
    issue_token,
    load_principal,
    require_operator,
    require_owner_or_operator,
)


def test_token_round_trip(app):
    principal = load_principal(issue_token(42, "student"))
    assert principal == Principal(user_id=42, role="student")
    assert not principal.is_operator


def test_tampered_token_is_rejected(app):
    token = issue_token(42, "student")
    assert load_principal(token[:-2] + "xx") is None


def test_expired_token_is_rejected(app):
    token = issue_token(42, "admin")
    app.config["AUTH_TOKEN_MAX_AGE_SECONDS"] = -1
    try:
        assert load_principal(token) is None
    finally:
        app.config["AUTH_TOKEN_MAX_AGE_SECONDS"] = 86400


def test_unknown_role_cannot_be_issued(app):
    with pytest.raises(ValueError):
        issue_token(1, "superuser")


@pytest.mark.parametrize("role", ["staff", "admin"])
def test_operator_roles(role):
    require_operator(Principal(user_id=1, role=role))
    require_owner_or_operator(Principal(user_id=1, role=role), owner_user_id=999)


def test_student_is_not_operator():
    with pytest.raises(AccessDenied):
        require_operator(Principal(user_id=1, role="student"))
    with pytest.raises(AccessDenied):
        require_owner_or_operator(Principal(user_id=1, role="student"), owner_user_id=2)
    require_owner_or_operator(Principal(user_id=2, role="student"), owner_user_id=2)
