# Overview: Domain error taxonomy; each error knows its HTTP status and JSON body.

"""
Marketplace error taxonomy.

Services raise these; routes catch MarketplaceError at the boundary and
answer with `jsonify(e.to_dict()), e.status_code`. Anything else is an
unexpected failure and is logged and answered with a 500.
"""

from __future__ import annotations


class MarketplaceError(Exception):
    """Base class for errors that map to an HTTP response."""

    status_code = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message}
        body.update(self.details)
        return body


class ValidationError(MarketplaceError, ValueError):
    """400-level input problem."""

    status_code = 400


class NotFoundError(MarketplaceError):
    """404: referenced entity does not exist."""

    status_code = 404


class AuthError(MarketplaceError):
    """401: missing, invalid or expired credentials."""

    status_code = 401


class InvalidTokenError(AuthError):
    """401: refresh token unknown, expired or tampered with."""


class ForbiddenError(MarketplaceError):
    """403: authenticated but not allowed."""

    status_code = 403


class ConflictError(MarketplaceError, ValueError):
    """409-level business rule conflict (e.g., duplicate product name)."""

    status_code = 409


class InvalidTransitionError(MarketplaceError):
    """400: state machine violation. Carries the allowed target set."""

    status_code = 400

    def __init__(self, current: str, requested: str, allowed):
        allowed = sorted(allowed)
        super().__init__(
            f"Invalid status transition: {current} -> {requested}",
            current_status=current,
            requested_status=requested,
            allowed_transitions=allowed,
        )
        self.current = current
        self.requested = requested
        self.allowed = allowed


class WindowExpiredError(MarketplaceError):
    """400: a time-boundary policy (cancellation, return) has passed."""

    status_code = 400


class RateLimitError(MarketplaceError):
    """429: too many requests from this client within the window."""

    status_code = 429


class InternalError(MarketplaceError):
    """500: unexpected or database failure."""

    status_code = 500
