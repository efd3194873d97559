# Overview: Request decorators that resolve the authenticated principal and enforce roles.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import User


USER_HEADER = "X-User-Id"


def require_auth(f):
    """
    Resolve the already-authenticated principal.

    Login and sessions live in the upstream authentication layer, which
    forwards the user id in the X-User-Id header. Sets g.current_user.

    Returns 401 if:
    - Header missing or not an integer
    - Unknown user
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get(USER_HEADER) or "").strip()
        if not raw.isdigit():
            return jsonify({"error": "Authentication required"}), 401

        user = db.session.get(User, int(raw))
        if user is None or not user.is_active:
            return jsonify({"error": "Invalid or inactive user"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Restrict a route to the given roles. Must be applied after @require_auth.

    Usage:
        @payments_bp.post("/<int:payment_id>/refund")
        @require_auth
        @require_role("admin")
        def refund_payment_route(payment_id):
            ...
    """
    allowed = frozenset(roles)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Authentication required"}), 401
            if user.role not in allowed:
                return jsonify({
                    "error": "Access denied",
                    "required_roles": sorted(allowed),
                }), 403
            return f(*args, **kwargs)

        return decorated_function

    return decorator
