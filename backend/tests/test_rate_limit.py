"""
Rate limiting tests for auth endpoints.

Limits are per client IP and scope. Scopes with skip_successful only count
failed responses.
"""

from datetime import timedelta

import pytest

from conftest import PASSWORD
from marketplace.models import AuthEvent
from marketplace.services.rate_limit_service import RateLimiter, cleanup_auth_events
from marketplace.time_utils import utcnow


@pytest.fixture
def tight_limits(app, monkeypatch):
    monkeypatch.setitem(app.config, "RATE_LIMITS", {
        "auth": {"window_seconds": 600, "max_requests": 2, "skip_successful": True},
        "refresh": {"window_seconds": 60, "max_requests": 2, "skip_successful": True},
        "logout_all": {"window_seconds": 600, "max_requests": 2, "skip_successful": False},
    })


def _bad_login(client, email):
    return client.post("/api/auth/login", json={"email": email, "password": "Nope-nope1!"})


class TestAuthRateLimit:
    def test_failures_exhaust_the_window(self, client, buyer, tight_limits):
        assert _bad_login(client, buyer.email).status_code == 401
        assert _bad_login(client, buyer.email).status_code == 401

        resp = _bad_login(client, buyer.email)
        assert resp.status_code == 429
        body = resp.get_json()
        assert body["retry_after_seconds"] >= 1
        assert body["reset_at"].endswith("Z")
        assert int(resp.headers["Retry-After"]) >= 1

        # Correct credentials are blocked too while the window is exhausted
        ok = client.post("/api/auth/login", json={"email": buyer.email, "password": PASSWORD})
        assert ok.status_code == 429

    def test_successes_do_not_count(self, client, buyer, tight_limits):
        for _ in range(4):
            resp = client.post("/api/auth/login", json={"email": buyer.email, "password": PASSWORD})
            assert resp.status_code == 200

    def test_register_shares_auth_scope(self, client, db_session, tight_limits):
        for _ in range(2):
            client.post("/api/auth/register", json={"name": "No", "email": "bad", "password": "x"})
        resp = client.post("/api/auth/register", json={
            "name": "Nora New", "email": "nora@example.com", "password": PASSWORD,
        })
        assert resp.status_code == 429

    def test_old_failures_fall_out_of_window(self, client, db_session, buyer, tight_limits):
        _bad_login(client, buyer.email)
        _bad_login(client, buyer.email)
        for event in db_session.query(AuthEvent).all():
            event.occurred_at = utcnow() - timedelta(minutes=11)
        db_session.commit()

        assert _bad_login(client, buyer.email).status_code == 401

    def test_disabled(self, app, client, buyer, tight_limits, monkeypatch):
        monkeypatch.setitem(app.config, "RATE_LIMIT_ENABLED", False)
        for _ in range(4):
            assert _bad_login(client, buyer.email).status_code == 401


class TestLogoutAllRateLimit:
    def test_every_call_counts(self, client, buyer, tight_limits):
        access = client.post(
            "/api/auth/login", json={"email": buyer.email, "password": PASSWORD}
        ).get_json()["access_token"]
        headers = {"Authorization": f"Bearer {access}"}

        assert client.post("/api/auth/logout-all", headers=headers).status_code == 200
        assert client.post("/api/auth/logout-all", headers=headers).status_code == 200
        assert client.post("/api/auth/logout-all", headers=headers).status_code == 429


class TestRateLimiter:
    def test_events_recorded_with_outcome(self, app, client, db_session, buyer, tight_limits):
        _bad_login(client, buyer.email)
        event = db_session.query(AuthEvent).one()
        assert event.scope == "auth"
        assert event.success is False
        assert event.status_code == 401
        assert event.resource == "/api/auth/login"

        limiter = RateLimiter.from_config(app.config)
        assert limiter.hits("auth", event.ip_address) == 1
        assert limiter.hits("unknown", event.ip_address) == 0

    def test_cleanup_auth_events(self, db_session):
        now = utcnow()
        db_session.add_all([
            AuthEvent(scope="auth", ip_address="10.0.0.1", success=False, occurred_at=now - timedelta(days=10)),
            AuthEvent(scope="auth", ip_address="10.0.0.1", success=False, occurred_at=now),
        ])
        db_session.commit()

        assert cleanup_auth_events(timedelta(days=7)) == 1
        assert db_session.query(AuthEvent).count() == 1
