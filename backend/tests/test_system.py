"""
Health endpoint, app-level error handling and CLI command tests.
"""

from datetime import timedelta

from conftest import make_user
from marketplace.models import RefreshSession, User
from marketplace.time_utils import utcnow


class TestHealth:
    def test_healthy(self, client, db_session, product):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        details = body["checks"]["database"]["details"]
        assert details["active_products"] == 1
        assert details["users"] == 1


class TestAppErrors:
    def test_unknown_route_is_json_404(self, client, db_session):
        resp = client.get("/api/nope")
        assert resp.status_code == 404
        body = resp.get_json()
        assert body["path"] == "/api/nope"
        assert "error" in body

    def test_wrong_method_is_json_405(self, client, db_session):
        resp = client.delete("/api/products")
        assert resp.status_code == 405
        assert resp.get_json()["path"] == "/api/products"

    def test_cors_for_allowed_origin(self, client, db_session):
        resp = client.get("/health", headers={"Origin": "http://localhost:5173"})
        assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"
        assert resp.headers["Access-Control-Allow-Credentials"] == "true"

    def test_no_cors_for_other_origin(self, client, db_session):
        resp = client.get("/health", headers={"Origin": "https://evil.example.com"})
        assert "Access-Control-Allow-Origin" not in resp.headers


class TestCli:
    def test_init_db(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["system", "init-db"])
        assert result.exit_code == 0
        assert "created" in result.output

    def test_create_admin(self, app, db_session):
        result = app.test_cli_runner().invoke(args=[
            "users", "create-admin",
            "--name", "Ada Admin",
            "--email", "ada@example.com",
            "--password", "Password123!",
        ])
        assert result.exit_code == 0, result.output
        user = db_session.query(User).filter_by(email="ada@example.com").one()
        assert user.role == "admin"

    def test_create_admin_weak_password(self, app, db_session):
        result = app.test_cli_runner().invoke(args=[
            "users", "create-admin",
            "--name", "Ada Admin",
            "--email", "ada@example.com",
            "--password", "weak",
        ])
        assert result.exit_code != 0
        assert db_session.query(User).count() == 0

    def test_list_users(self, app, db_session, buyer, admin):
        result = app.test_cli_runner().invoke(args=["users", "list"])
        assert result.exit_code == 0
        assert buyer.email in result.output
        assert admin.email in result.output

    def test_cleanup_sessions(self, app, db_session):
        user = make_user(db_session, "Eve Expired", "eve@example.com")
        now = utcnow()
        db_session.add_all([
            RefreshSession(user_id=user.id, token_hash="a" * 64, created_at=now, expires_at=now - timedelta(days=1)),
            RefreshSession(user_id=user.id, token_hash="b" * 64, created_at=now, expires_at=now + timedelta(days=1)),
        ])
        db_session.commit()

        result = app.test_cli_runner().invoke(args=["maintenance", "cleanup-sessions"])
        assert result.exit_code == 0
        assert "Deleted 1" in result.output
        assert db_session.query(RefreshSession).count() == 1
