from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class AuthEvent(db.Model):
    """
    Rate-limited request log for auth endpoints.

    One row per request that passed the limiter, keyed by scope (e.g. "auth",
    "refresh") and client IP. The limiter counts rows inside its window.

    IMMUTABLE: Never update. Old rows are pruned by maintenance.
    """
    __tablename__ = "auth_events"
    __table_args__ = (
        db.Index("ix_auth_events_scope_ip_occurred", "scope", "ip_address", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(32), nullable=False)
    ip_address = db.Column(db.String(45), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    resource = db.Column(db.String(128), nullable=True)  # e.g., "/api/auth/login"
    success = db.Column(db.Boolean, nullable=False, index=True)
    status_code = db.Column(db.Integer, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "scope": self.scope,
            "ip_address": self.ip_address,
            "user_id": self.user_id,
            "resource": self.resource,
            "success": self.success,
            "status_code": self.status_code,
            "occurred_at": to_utc_z(self.occurred_at),
        }
