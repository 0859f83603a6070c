# Overview: Health endpoint reporting database reachability.

# backend/marketplace/routes/system.py
"""
Liveness endpoint for load balancers and deploy checks.

GET /health runs three cheap counts against the database. Any SQLAlchemy
failure flips the answer to 503.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Product, RefreshSession, User
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def check_database_health() -> dict:
    started = time.perf_counter()
    try:
        details = {
            "users": db.session.query(User).count(),
            "active_products": db.session.query(Product).filter(Product.is_active.is_(True)).count(),
            # Non-zero means `flask maintenance cleanup-sessions` is overdue
            "expired_sessions_pending_cleanup": db.session.query(RefreshSession)
            .filter(RefreshSession.expires_at < utcnow())
            .count(),
        }
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(started), "error": "Database error"}

    return {"status": "healthy", "latency_ms": _elapsed_ms(started), "details": details}


@system_bp.get("/health")
def health():
    database = check_database_health()
    status_code = 200 if database["status"] == "healthy" else 503
    return {
        "status": database["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }, status_code
