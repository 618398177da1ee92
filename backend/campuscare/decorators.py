# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import auth_service


def _is_authenticated() -> bool:
    return getattr(g, "principal", None) is not None


def require_auth(f):
    """
    Require a bearer token issued by the identity service.

    Sets g.principal (auth_service.Principal) for the route. Services get
    the principal passed explicitly; nothing below the route reads g.

    Returns 401 if:
    - No Authorization header
    - Invalid or expired token
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        principal = auth_service.load_principal(token)

        if principal is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.principal = principal
        return f(*args, **kwargs)

    return decorated_function


def require_operator(f):
    """Require a staff or admin principal. Use after @require_auth."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"error": "Authentication required"}), 401
        if not g.principal.is_operator:
            return jsonify({
                "error": "access_denied",
                "message": "Operator role required",
            }), 403
        return f(*args, **kwargs)

    return decorated_function
