# backend/marketplace/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/marketplace.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///marketplace.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Tokens (PyJWT, HS256). Falls back to SECRET_KEY when unset.
    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", SECRET_KEY)
    ACCESS_TOKEN_EXPIRES_MINUTES = int(os.environ.get("ACCESS_TOKEN_EXPIRES_MINUTES", "15"))
    REFRESH_TOKEN_EXPIRES_DAYS = int(os.environ.get("REFRESH_TOKEN_EXPIRES_DAYS", "7"))
    MAX_REFRESH_SESSIONS = int(os.environ.get("MAX_REFRESH_SESSIONS", "5"))
    REFRESH_COOKIE_NAME = os.environ.get("REFRESH_COOKIE_NAME", "refresh_token")
    REFRESH_COOKIE_SECURE = _env_bool("REFRESH_COOKIE_SECURE", False)

    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Order / return policy
    CANCELLATION_WINDOW_HOURS = int(os.environ.get("CANCELLATION_WINDOW_HOURS", "24"))
    ADMIN_CANCEL_BYPASS_WINDOW = _env_bool("ADMIN_CANCEL_BYPASS_WINDOW", True)
    RETURN_WINDOW_DAYS = int(os.environ.get("RETURN_WINDOW_DAYS", "7"))
    RETURN_REVIEW_DAYS = int(os.environ.get("RETURN_REVIEW_DAYS", "7"))

    # Auth endpoint rate limits, per client IP.
    # skip_successful: only failed (>= 400) responses count toward the cap.
    RATE_LIMIT_ENABLED = _env_bool("RATE_LIMIT_ENABLED", True)
    RATE_LIMITS = {
        "auth": {"window_seconds": 10 * 60, "max_requests": 50, "skip_successful": True},
        "refresh": {"window_seconds": 60, "max_requests": 10, "skip_successful": True},
        "logout_all": {"window_seconds": 10 * 60, "max_requests": 3, "skip_successful": False},
    }

    # Browser origins allowed to call the API with credentials (refresh cookie)
    CORS_ALLOWED_ORIGINS = tuple(
        o.strip() for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",") if o.strip()
    )
