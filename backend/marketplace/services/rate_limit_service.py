"""
Auth Endpoint Rate Limiting

Prevent brute-force and token-stuffing by capping requests per client IP on
the auth endpoints.

The limiter holds no state of its own: rules come from app.config
["RATE_LIMITS"] and every counted request is an AuthEvent row. Counting rows
inside the window is the whole algorithm, so limits survive restarts and are
shared by every worker process pointed at the same database.

Rule keys:
- window_seconds: sliding window length
- max_requests: requests allowed inside the window
- skip_successful: when True only failed responses (status >= 400) count
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..errors import RateLimitError
from ..extensions import db
from ..models import AuthEvent
from ..time_utils import utcnow, to_utc_z


@dataclass(frozen=True)
class RateLimitRule:
    window_seconds: int
    max_requests: int
    skip_successful: bool = False

    @property
    def window(self) -> timedelta:
        return timedelta(seconds=self.window_seconds)


class RateLimiter:
    def __init__(self, rules: dict[str, dict], enabled: bool = True):
        self.rules = {scope: RateLimitRule(**rule) for scope, rule in rules.items()}
        self.enabled = enabled

    @classmethod
    def from_config(cls, config) -> "RateLimiter":
        return cls(config.get("RATE_LIMITS", {}), enabled=config.get("RATE_LIMIT_ENABLED", True))

    def rule_for(self, scope: str) -> RateLimitRule | None:
        return self.rules.get(scope)

    def _counted(self, scope: str, ip_address: str | None, rule: RateLimitRule):
        cutoff = utcnow() - rule.window
        query = db.session.query(AuthEvent).filter(
            AuthEvent.scope == scope,
            AuthEvent.ip_address == ip_address,
            AuthEvent.occurred_at >= cutoff,
        )
        if rule.skip_successful:
            query = query.filter(AuthEvent.success.is_(False))
        return query

    def hits(self, scope: str, ip_address: str | None) -> int:
        rule = self.rule_for(scope)
        if not rule:
            return 0
        return self._counted(scope, ip_address, rule).count()

    def check(self, scope: str, ip_address: str | None) -> None:
        """
        Raise RateLimitError if the client has exhausted its window.

        retry_after_seconds is measured from the oldest counted request.
        """
        rule = self.rule_for(scope)
        if not self.enabled or not rule:
            return

        query = self._counted(scope, ip_address, rule)
        if query.count() < rule.max_requests:
            return

        oldest = query.order_by(AuthEvent.occurred_at.asc()).first()
        reset_at = oldest.occurred_at + rule.window
        retry_after = max(1, int((reset_at - utcnow()).total_seconds()))

        current_app.logger.warning(
            "Rate limit hit: scope=%s ip=%s limit=%s/%ss",
            scope, ip_address, rule.max_requests, rule.window_seconds,
        )
        raise RateLimitError(
            "Too many requests, please try again later",
            retry_after_seconds=retry_after,
            reset_at=to_utc_z(reset_at),
        )

    def record(
        self,
        scope: str,
        ip_address: str | None,
        *,
        success: bool,
        status_code: int | None = None,
        resource: str | None = None,
        user_id: int | None = None,
    ) -> None:
        if not self.enabled or not self.rule_for(scope):
            return
        db.session.add(AuthEvent(
            scope=scope,
            ip_address=ip_address,
            user_id=user_id,
            resource=resource,
            success=success,
            status_code=status_code,
            occurred_at=utcnow(),
        ))
        db.session.commit()


def cleanup_auth_events(older_than: timedelta) -> int:
    """Delete AuthEvent rows older than the given age. Returns count removed."""
    count = db.session.query(AuthEvent).filter(
        AuthEvent.occurred_at < utcnow() - older_than
    ).delete()
    db.session.commit()
    return count
