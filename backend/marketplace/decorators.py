# Overview: Request decorators for API routes: authentication, admin gate and rate limiting.

from functools import wraps

from flask import current_app, g, jsonify, make_response, request

from .errors import AuthError, RateLimitError
from .extensions import db
from .models import User
from .services import session_service
from .services.rate_limit_service import RateLimiter


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid access token.

    Sets g.current_user to the authenticated User.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or non-access token
    - User no longer exists or is inactive
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        try:
            claims = session_service.decode_access_token(token)
        except AuthError as e:
            return jsonify(e.to_dict()), e.status_code

        try:
            user_id = int(claims.get("sub"))
        except (TypeError, ValueError):
            return jsonify({"error": "Invalid token"}), 401

        user = db.session.get(User, user_id)
        if not user or not user.is_active:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """
    Require the admin role.

    Must be applied after @require_auth.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = getattr(g, "current_user", None)
        if user is None:
            return jsonify({"error": "Authentication required"}), 401
        if not user.is_admin:
            return jsonify({"error": "Admin access required"}), 403
        return f(*args, **kwargs)

    return decorated_function


def rate_limited(scope: str):
    """
    Cap requests per client IP for a rate-limit scope.

    Rules come from app.config["RATE_LIMITS"][scope]. The response status
    decides whether the request counts as a success.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            limiter = RateLimiter.from_config(current_app.config)
            ip_address = request.remote_addr

            try:
                limiter.check(scope, ip_address)
            except RateLimitError as e:
                response = make_response(jsonify(e.to_dict()), e.status_code)
                response.headers["Retry-After"] = str(e.details.get("retry_after_seconds", 1))
                return response

            response = make_response(f(*args, **kwargs))
            user = getattr(g, "current_user", None)
            limiter.record(
                scope,
                ip_address,
                success=response.status_code < 400,
                status_code=response.status_code,
                resource=request.path,
                user_id=user.id if user else None,
            )
            return response

        return decorated_function
    return decorator
