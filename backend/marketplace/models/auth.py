from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


USER_ROLES = ("user", "admin")
USER_STATUSES = ("active", "inactive")


class User(db.Model):
    """
    Marketplace account.

    Any user may list products (and so act as an artisan) or place orders
    (as a buyer). Admins review returns and may act on any order.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_users_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), nullable=False, index=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="active")
    role = db.Column(db.String(16), nullable=False, default="user")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "status": self.status,
            "role": self.role,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }


class RefreshSession(db.Model):
    """
    One refresh-token session per device/login.

    SECURITY: only the SHA-256 hash of the refresh token is stored. The
    plaintext token goes to the client once and is never persisted.
    Rows are deleted on logout and replaced on refresh (rotation).
    """
    __tablename__ = "refresh_sessions"
    __table_args__ = (
        db.Index("ix_refresh_sessions_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    # Client context
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    user = db.relationship(
        "User",
        backref=db.backref("refresh_sessions", lazy=True, cascade="all, delete-orphan"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
        }
