# Overview: Service-layer operations for sessions; JWT issuance, refresh rotation and revocation.

"""
Token & Refresh Session Management Service

Access tokens are short-lived HS256 JWTs and are never stored. Refresh tokens
are HS256 JWTs carrying a random jti; only their SHA-256 hash is persisted in
refresh_sessions, one row per device/login.

SECURITY FEATURES:
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Access tokens expire after ACCESS_TOKEN_EXPIRES_MINUTES (15)
- Refresh tokens expire after REFRESH_TOKEN_EXPIRES_DAYS (7)
- At most MAX_REFRESH_SESSIONS (5) live sessions per user; oldest evicted
- Refresh rotates: the presented token is deleted and a new one stored in
  the same commit, so a refresh token is usable exactly once
- Tracks client IP and user agent for security monitoring
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

import jwt
from flask import current_app

from ..errors import AuthError, InvalidTokenError
from ..extensions import db
from ..models import RefreshSession, User
from ..time_utils import utcnow
from .concurrency import commit_unit


JWT_ALGORITHM = "HS256"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime, seconds

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": "Bearer",
            "expires_in": self.expires_in,
        }


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    Tokens are already high-entropy (unlike passwords), so SHA-256 is
    sufficient.
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _secret() -> str:
    return current_app.config["JWT_SECRET_KEY"]


def _access_lifetime() -> timedelta:
    return timedelta(minutes=current_app.config["ACCESS_TOKEN_EXPIRES_MINUTES"])


def _refresh_lifetime() -> timedelta:
    return timedelta(days=current_app.config["REFRESH_TOKEN_EXPIRES_DAYS"])


def issue_access_token(user: User) -> str:
    now = utcnow()
    claims = {
        "sub": str(user.id),
        "role": user.role,
        "type": "access",
        "iat": now,
        "exp": now + _access_lifetime(),
    }
    return jwt.encode(claims, _secret(), algorithm=JWT_ALGORITHM)


def issue_refresh_token(user: User) -> tuple[str, datetime]:
    """Returns (token, expires_at)."""
    now = utcnow()
    expires_at = now + _refresh_lifetime()
    claims = {
        "sub": str(user.id),
        "type": "refresh",
        "jti": secrets.token_hex(16),
        "iat": now,
        "exp": expires_at,
    }
    return jwt.encode(claims, _secret(), algorithm=JWT_ALGORITHM), expires_at


def _decode(token: str, expected_type: str, error_cls) -> dict:
    try:
        claims = jwt.decode(token, _secret(), algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise error_cls("Token has expired")
    except jwt.InvalidTokenError:
        raise error_cls("Invalid token")

    if claims.get("type") != expected_type:
        raise error_cls("Invalid token type")
    return claims


def decode_access_token(token: str) -> dict:
    """Validate an access JWT and return its claims. Raises AuthError."""
    return _decode(token, "access", AuthError)


def _prune_sessions(user_id: int, keep: int) -> int:
    """Delete all but the `keep` most recent sessions of a user."""
    sessions = (
        db.session.query(RefreshSession)
        .filter_by(user_id=user_id)
        .order_by(RefreshSession.created_at.desc(), RefreshSession.id.desc())
        .all()
    )
    stale = sessions[keep:]
    for s in stale:
        db.session.delete(s)
    return len(stale)


def _new_session(user: User, ip_address: str | None, user_agent: str | None) -> TokenPair:
    refresh_token, expires_at = issue_refresh_token(user)
    db.session.add(RefreshSession(
        user_id=user.id,
        token_hash=hash_token(refresh_token),
        created_at=utcnow(),
        expires_at=expires_at,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
    ))
    return TokenPair(
        access_token=issue_access_token(user),
        refresh_token=refresh_token,
        expires_in=int(_access_lifetime().total_seconds()),
    )


def create_session(user: User, ip_address: str | None = None, user_agent: str | None = None) -> TokenPair:
    """
    Issue a token pair and persist its refresh session.

    Keeps at most MAX_REFRESH_SESSIONS per user, evicting the oldest.
    """
    max_sessions = current_app.config["MAX_REFRESH_SESSIONS"]
    evicted = _prune_sessions(user.id, keep=max_sessions - 1)
    pair = _new_session(user, ip_address, user_agent)
    commit_unit("create session")

    if evicted:
        current_app.logger.info("Evicted %s old refresh session(s) for user %s", evicted, user.id)
    return pair


def _find_session(refresh_token: str) -> RefreshSession | None:
    return db.session.query(RefreshSession).filter_by(token_hash=hash_token(refresh_token)).first()


def rotate_refresh_token(
    refresh_token: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> tuple[User, TokenPair]:
    """
    Exchange a refresh token for a new pair.

    Raises InvalidTokenError if the token is unknown, expired or its
    signature is invalid. The old session row is deleted and the new one
    inserted in one commit.
    """
    if not refresh_token:
        raise InvalidTokenError("Refresh token is required")

    claims = _decode(refresh_token, "refresh", InvalidTokenError)

    session = _find_session(refresh_token)
    if not session:
        raise InvalidTokenError("Refresh token is not recognized")

    if session.expires_at < utcnow():
        db.session.delete(session)
        commit_unit("expire session")
        raise InvalidTokenError("Refresh token has expired")

    user = session.user
    if not user or str(user.id) != claims.get("sub"):
        raise InvalidTokenError("Refresh token is not recognized")
    if not user.is_active:
        raise AuthError("Account is inactive")

    db.session.delete(session)
    pair = _new_session(user, ip_address, user_agent)
    commit_unit("rotate refresh token")
    return user, pair


def revoke_session(refresh_token: str) -> bool:
    """
    Delete the session matching a refresh token.

    Returns True if a session was removed. Unknown tokens are a no-op.
    """
    session = _find_session(refresh_token)
    if not session:
        return False
    db.session.delete(session)
    commit_unit("revoke session")
    return True


def revoke_all_user_sessions(user_id: int) -> int:
    """Delete every refresh session of a user. Returns count removed."""
    count = db.session.query(RefreshSession).filter_by(user_id=user_id).delete()
    commit_unit("revoke sessions")
    current_app.logger.info("Revoked %s refresh session(s) for user %s", count, user_id)
    return count


def cleanup_expired_sessions() -> int:
    """
    Delete expired refresh sessions.

    Should be run periodically (`flask maintenance cleanup-sessions`).
    Returns count of sessions removed.
    """
    count = db.session.query(RefreshSession).filter(
        RefreshSession.expires_at < utcnow()
    ).delete()
    commit_unit("clean up sessions")
    return count
