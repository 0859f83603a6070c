# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/marketplace/routes/auth.py
"""
Authentication API routes

SECURITY FEATURES:
- Password strength validation on registration
- Per-IP rate limiting (scopes "auth", "refresh", "logout_all")
- Short-lived access JWTs; refresh tokens rotated on every use
- Refresh token returned in the body and as an HTTP-only cookie
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, rate_limited
from ..errors import MarketplaceError, ValidationError
from ..services import auth_service
from ..services import session_service
from ..validation import parse_registration


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _client_context() -> tuple[str | None, str | None]:
    return request.remote_addr, request.headers.get("User-Agent")


def _presented_refresh_token() -> str | None:
    data = request.get_json(silent=True) or {}
    token = data.get("refresh_token") if isinstance(data, dict) else None
    if token is not None and not isinstance(token, str):
        raise ValidationError("refresh_token must be a string")
    return token or request.cookies.get(current_app.config["REFRESH_COOKIE_NAME"])


def _token_response(body: dict, pair, status: int):
    body.update(pair.to_dict())
    response = jsonify(body)
    response.status_code = status
    response.set_cookie(
        current_app.config["REFRESH_COOKIE_NAME"],
        pair.refresh_token,
        max_age=current_app.config["REFRESH_TOKEN_EXPIRES_DAYS"] * 24 * 3600,
        httponly=True,
        secure=current_app.config["REFRESH_COOKIE_SECURE"],
        samesite="Strict",
        path="/api/auth",
    )
    return response


def _clear_cookie(response):
    response.delete_cookie(current_app.config["REFRESH_COOKIE_NAME"], path="/api/auth")
    return response


@auth_bp.post("/register")
@rate_limited("auth")
def register_route():
    """
    Create an account and log it in.

    Request body:
    {
        "name": "Ana Artisan",
        "email": "ana@example.com",
        "password": "Str0ng!pass"
    }
    """
    try:
        data = parse_registration(request.get_json(silent=True))
        user = auth_service.register_user(data["name"], data["email"], data["password"])
        ip_address, user_agent = _client_context()
        pair = session_service.create_session(user, ip_address=ip_address, user_agent=user_agent)
        return _token_response({"user": user.to_dict(), "message": "Registration successful"}, pair, 201)
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to register user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
@rate_limited("auth")
def login_route():
    """
    Authenticate user and issue an access/refresh token pair.

    The access token goes in the Authorization header for protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")

        user = auth_service.authenticate(data.get("email") or "", data.get("password") or "")
        ip_address, user_agent = _client_context()
        pair = session_service.create_session(user, ip_address=ip_address, user_agent=user_agent)
        return _token_response({"user": user.to_dict(), "message": "Login successful"}, pair, 200)
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/refresh-token")
@rate_limited("refresh")
def refresh_route():
    """
    Exchange a refresh token (body "refresh_token" or cookie) for a new pair.

    The presented token is invalidated.
    """
    try:
        ip_address, user_agent = _client_context()
        user, pair = session_service.rotate_refresh_token(
            _presented_refresh_token(), ip_address=ip_address, user_agent=user_agent,
        )
        return _token_response({"user": user.to_dict()}, pair, 200)
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to refresh token")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
def logout_route():
    """
    Revoke the session of one refresh token.

    Unknown tokens are accepted so logout is idempotent.
    """
    try:
        token = _presented_refresh_token()
        if not token:
            raise ValidationError("refresh_token is required")
        session_service.revoke_session(token)
        return _clear_cookie(jsonify({"message": "Logged out successfully"}))
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to logout")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout-all")
@rate_limited("logout_all")
@require_auth
def logout_all_route():
    """Revoke every refresh session of the current user."""
    try:
        count = session_service.revoke_all_user_sessions(g.current_user.id)
        return _clear_cookie(jsonify({
            "message": "Logged out from all sessions",
            "revoked_sessions": count,
        }))
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to logout all sessions")
        return jsonify({"error": "Internal server error"}), 500
