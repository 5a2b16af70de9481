# Overview: Authentication and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service, permission_service
from .services.permission_service import PermissionDeniedError


def _is_authenticated() -> bool:
    return hasattr(g, "current_user")


def require_auth(f):
    """
    Require a valid bearer token.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.location_id: The user's location (None for organisation-level roles)
    - g.session_context: The full SessionContext object

    Returns 401 if the header is missing, the token is invalid or expired,
    or the user was deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required", "code": "UNAUTHENTICATED"}), 401

        token = auth_header.split(" ", 1)[1].strip()
        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token", "code": "UNAUTHENTICATED"}), 401

        g.current_user = context.user
        g.location_id = context.location_id
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a permission code granted to the caller's role."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required", "code": "UNAUTHENTICATED"}), 401

            try:
                permission_service.require_permission(g.current_user, permission_code)
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "code": "PERMISSION_DENIED",
                    "required_permission": permission_code,
                    "message": str(e),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
