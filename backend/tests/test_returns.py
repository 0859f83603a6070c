"""
Return request tests.

Verifies:
- Returns only for delivered orders inside the return window
- Returned items must be on the order within the ordered quantity
- One open request per order
- Admin review: approval restores stock once, refunds are capped
- Details / listing visibility and filters
"""

from datetime import timedelta

import pytest

from conftest import headers_for, make_product, make_user, order_payload
from marketplace.errors import ConflictError
from marketplace.extensions import db
from marketplace.models import Order, OrderHistory, Product, ReturnRequest, User
from marketplace.services import return_service
from marketplace.services.concurrency import commit_unit
from marketplace.time_utils import utcnow


def _advance(client, order_id, headers, *steps):
    for status in steps:
        body = {"status": status}
        if status == "shipped":
            body["tracking_number"] = f"TRK-{order_id}"
        resp = client.patch(f"/api/orders/{order_id}/status", json=body, headers=headers)
        assert resp.status_code == 200, resp.get_json()


def _deliver(client, db_session, order_id, admin_headers, days_ago=0):
    _advance(client, order_id, admin_headers, "processing", "shipped", "delivered")
    if days_ago:
        entry = db_session.query(OrderHistory).filter_by(order_id=order_id, status="delivered").one()
        entry.created_at = utcnow() - timedelta(days=days_ago)
        db_session.commit()


def _return_body(product_id, quantity=1, **overrides):
    body = {
        "reason": "Arrived cracked",
        "items": [{"product_id": product_id, "quantity": quantity}],
        "evidence": ["https://cdn.example.com/crack.jpg"],
        "refund_method": "original_payment",
    }
    body.update(overrides)
    return body


@pytest.fixture
def delivered(client, db_session, product, buyer_headers, admin_headers):
    """Order of 3 x product (2000 cents each), delivered 3 days ago."""
    resp = client.post("/api/orders", json=order_payload((product.id, 3)), headers=buyer_headers)
    order_id = resp.get_json()["data"]["id"]
    _deliver(client, db_session, order_id, admin_headers, days_ago=3)
    return order_id


@pytest.fixture
def open_return(client, delivered, product, buyer_headers):
    resp = client.post(f"/api/orders/{delivered}/return", json=_return_body(product.id, 2), headers=buyer_headers)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["data"]["id"]


class TestSubmitReturn:
    def test_within_window(self, client, delivered, product, buyer, buyer_headers):
        resp = client.post(f"/api/orders/{delivered}/return", json=_return_body(product.id), headers=buyer_headers)
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["data"]["status"] == "pending_review"
        assert body["data"]["requested_by"] == buyer.id
        assert body["data"]["metadata"]["items"] == [{"product_id": product.id, "quantity": 1}]
        assert body["data"]["metadata"]["refund_method"] == "original_payment"
        assert body["review_deadline"].endswith("Z")

    def test_returns_route_alias(self, client, delivered, product, buyer_headers):
        resp = client.post(f"/api/returns/{delivered}", json=_return_body(product.id), headers=buyer_headers)
        assert resp.status_code == 201

    def test_window_expired(self, client, db_session, product, buyer_headers, admin_headers):
        resp = client.post("/api/orders", json=order_payload((product.id, 1)), headers=buyer_headers)
        order_id = resp.get_json()["data"]["id"]
        _deliver(client, db_session, order_id, admin_headers, days_ago=8)

        resp = client.post(f"/api/orders/{order_id}/return", json=_return_body(product.id), headers=buyer_headers)
        assert resp.status_code == 400
        body = resp.get_json()
        assert "window" in body["error"].lower()
        assert "deadline" in body

    def test_not_delivered(self, client, product, buyer_headers):
        resp = client.post("/api/orders", json=order_payload((product.id, 1)), headers=buyer_headers)
        order_id = resp.get_json()["data"]["id"]
        resp = client.post(f"/api/orders/{order_id}/return", json=_return_body(product.id), headers=buyer_headers)
        assert resp.status_code == 400
        assert resp.get_json()["current_status"] == "pending"

    def test_only_buyer_may_return(self, client, delivered, product, admin_headers):
        resp = client.post(f"/api/orders/{delivered}/return", json=_return_body(product.id), headers=admin_headers)
        assert resp.status_code == 403

    def test_quantity_above_ordered(self, client, delivered, product, buyer_headers):
        resp = client.post(f"/api/orders/{delivered}/return", json=_return_body(product.id, 4), headers=buyer_headers)
        assert resp.status_code == 400
        assert resp.get_json()["invalid_items"] == [
            {"product_id": product.id, "quantity": 4, "ordered_quantity": 3}
        ]

    def test_product_not_on_order(self, client, db_session, delivered, artisan, buyer_headers):
        stranger = make_product(db_session, artisan, "Clay bowl")
        resp = client.post(f"/api/orders/{delivered}/return", json=_return_body(stranger.id), headers=buyer_headers)
        assert resp.status_code == 400
        assert resp.get_json()["invalid_items"][0]["ordered_quantity"] == 0

    def test_duplicate_open_request(self, client, open_return, delivered, product, buyer_headers):
        resp = client.post(f"/api/orders/{delivered}/return", json=_return_body(product.id), headers=buyer_headers)
        assert resp.status_code == 400
        assert "already open" in resp.get_json()["error"]

    def test_new_request_after_rejection(self, client, open_return, delivered, product, buyer_headers, admin_headers):
        client.patch(
            f"/api/returns/{open_return}/order/{delivered}",
            json={"status": "rejected", "admin_comment": "Damage from misuse"},
            headers=admin_headers,
        )
        resp = client.post(f"/api/orders/{delivered}/return", json=_return_body(product.id), headers=buyer_headers)
        assert resp.status_code == 201

    @pytest.mark.parametrize(
        "overrides",
        [
            {"reason": "no"},
            {"items": []},
            {"evidence": ["ftp://cdn.example.com/a.jpg"]},
            {"evidence": [f"https://cdn.example.com/{i}.jpg" for i in range(6)]},
            {"refund_method": "cash"},
        ],
    )
    def test_invalid_payloads(self, client, delivered, product, buyer_headers, overrides):
        resp = client.post(
            f"/api/orders/{delivered}/return",
            json=_return_body(product.id, **overrides),
            headers=buyer_headers,
        )
        assert resp.status_code == 400


class TestReviewReturn:
    def _review(self, client, return_id, order_id, headers, **body):
        return client.patch(f"/api/returns/{return_id}/order/{order_id}", json=body, headers=headers)

    def test_approve_restores_stock_once(self, client, db_session, product, delivered, open_return, admin_headers):
        db_session.refresh(product)
        assert product.stock == 7

        resp = self._review(client, open_return, delivered, admin_headers, status="approved")
        assert resp.status_code == 200
        assert resp.get_json()["data"]["status"] == "approved"
        db_session.refresh(product)
        assert product.stock == 9

        again = self._review(client, open_return, delivered, admin_headers, status="approved")
        assert again.status_code == 400
        db_session.refresh(product)
        assert product.stock == 9

    def test_reject_keeps_stock(self, client, db_session, product, delivered, open_return, admin_headers):
        resp = self._review(client, open_return, delivered, admin_headers, status="rejected", admin_comment="No damage")
        assert resp.status_code == 200
        history = resp.get_json()["data"]["history"]
        assert history[-1]["comment"] == "No damage"
        db_session.refresh(product)
        assert product.stock == 7

    def test_refund_requires_approval_first(self, client, delivered, open_return, admin_headers):
        resp = self._review(
            client, open_return, delivered, admin_headers,
            status="refunded", refund_amount_cents=1000,
        )
        assert resp.status_code == 400
        assert resp.get_json()["allowed_transitions"] == ["approved", "rejected"]

    def test_refund_requires_amount(self, client, delivered, open_return, admin_headers):
        self._review(client, open_return, delivered, admin_headers, status="approved")
        resp = self._review(client, open_return, delivered, admin_headers, status="refunded")
        assert resp.status_code == 400

    def test_refund_capped_by_returned_value(self, client, delivered, open_return, admin_headers):
        self._review(client, open_return, delivered, admin_headers, status="approved")
        resp = self._review(
            client, open_return, delivered, admin_headers,
            status="refunded", refund_amount_cents=4001,
        )
        assert resp.status_code == 400
        assert resp.get_json()["refundable_cents"] == 4000

    def test_partial_refund_keeps_payment_status(self, client, db_session, delivered, open_return, admin_headers):
        self._review(client, open_return, delivered, admin_headers, status="approved")
        resp = self._review(
            client, open_return, delivered, admin_headers,
            status="refunded", refund_amount_cents=4000,
        )
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["refund_amount_cents"] == 4000
        assert data["history"][-1]["refund_amount_cents"] == 4000
        assert db_session.get(Order, delivered).payment_status == "pending"

    def test_full_refund_marks_order_refunded(self, client, db_session, product, buyer_headers, admin_headers):
        resp = client.post("/api/orders", json=order_payload((product.id, 1)), headers=buyer_headers)
        order_id = resp.get_json()["data"]["id"]
        _deliver(client, db_session, order_id, admin_headers)
        rr = client.post(f"/api/orders/{order_id}/return", json=_return_body(product.id), headers=buyer_headers)
        return_id = rr.get_json()["data"]["id"]

        self._review(client, return_id, order_id, admin_headers, status="approved")
        resp = self._review(client, return_id, order_id, admin_headers, status="refunded", refund_amount_cents=2000)
        assert resp.status_code == 200
        assert db_session.get(Order, order_id).payment_status == "refunded"

    def test_concurrent_approvals_restore_stock_once(
        self, app, db_session, product, admin, delivered, open_return,
    ):
        admin_id = admin.id
        stale = db_session.get(ReturnRequest, open_return)
        assert stale.status == "pending_review"

        # A second app context has its own session: approve there first.
        with app.app_context():
            other_admin = db.session.get(User, admin_id)
            return_service.review_return(open_return, delivered, other_admin, status="approved")

        with pytest.raises(ConflictError):
            return_service.review_return(open_return, delivered, admin, status="approved")

        db_session.expire_all()
        assert db_session.get(Product, product.id).stock == 9
        assert db_session.get(ReturnRequest, open_return).status == "approved"
        history = [h.status for h in db_session.get(ReturnRequest, open_return).history]
        assert history == ["pending_review", "approved"]

    def test_stale_return_update_conflicts(self, app, db_session, delivered, open_return, admin):
        admin_id = admin.id
        stale = db_session.get(ReturnRequest, open_return)
        assert stale.version_id == 1

        with app.app_context():
            other_admin = db.session.get(User, admin_id)
            return_service.review_return(open_return, delivered, other_admin, status="rejected")

        stale.status = "approved"
        with pytest.raises(ConflictError):
            commit_unit("review return request")

    def test_non_admin_forbidden(self, client, delivered, open_return, buyer_headers):
        resp = self._review(client, open_return, delivered, buyer_headers, status="approved")
        assert resp.status_code == 403

    def test_wrong_order_is_404(self, client, delivered, open_return, admin_headers):
        resp = self._review(client, open_return, delivered + 1000, admin_headers, status="approved")
        assert resp.status_code == 404


class TestReturnReads:
    def test_details_for_buyer(self, client, delivered, open_return, buyer, buyer_headers):
        resp = client.get(f"/api/returns/{open_return}", headers=buyer_headers)
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["order_id"] == delivered
        assert data["buyer"]["email"] == buyer.email
        assert data["return_request"]["status"] == "pending_review"

    def test_details_for_artisan_on_order(self, client, open_return, artisan_headers):
        assert client.get(f"/api/returns/{open_return}", headers=artisan_headers).status_code == 200

    def test_details_forbidden_for_stranger(self, client, db_session, open_return):
        stranger = make_user(db_session, "Sam Stranger", "stranger@example.com")
        resp = client.get(f"/api/returns/{open_return}", headers=headers_for(stranger))
        assert resp.status_code == 403

    def test_details_unknown(self, client, db_session, buyer_headers):
        assert client.get("/api/returns/999", headers=buyer_headers).status_code == 404

    def test_buyer_lists_own(self, client, db_session, open_return, buyer_headers):
        body = client.get("/api/returns", headers=buyer_headers).get_json()
        assert [r["id"] for r in body["data"]] == [open_return]
        assert body["meta"]["total"] == 1

    def test_other_user_sees_nothing(self, client, db_session, open_return, artisan_headers):
        body = client.get("/api/returns", headers=artisan_headers).get_json()
        assert body["data"] == []

    def test_admin_filters(self, client, db_session, open_return, artisan, other_artisan, admin_headers):
        all_rows = client.get("/api/returns", headers=admin_headers).get_json()
        assert [r["id"] for r in all_rows["data"]] == [open_return]

        by_status = client.get("/api/returns?status=approved", headers=admin_headers).get_json()
        assert by_status["data"] == []

        mine = client.get(f"/api/returns?artisan_id={artisan.id}", headers=admin_headers).get_json()
        assert [r["id"] for r in mine["data"]] == [open_return]

        theirs = client.get(f"/api/returns?artisan_id={other_artisan.id}", headers=admin_headers).get_json()
        assert theirs["data"] == []

    def test_date_filters(self, client, db_session, open_return, admin_headers):
        rr = db_session.get(ReturnRequest, open_return)
        rr.updated_at = utcnow() - timedelta(days=30)
        db_session.commit()
        day = rr.updated_at.date().isoformat()

        hit = client.get(f"/api/returns?from_date={day}&to_date={day}", headers=admin_headers).get_json()
        assert [r["id"] for r in hit["data"]] == [open_return]

        today = utcnow().date().isoformat()
        miss = client.get(f"/api/returns?from_date={today}", headers=admin_headers).get_json()
        assert miss["data"] == []

    @pytest.mark.parametrize("query", ["from_date=2026-13-01", "from_date=2026-05-02&to_date=2026-05-01", "status=lost"])
    def test_bad_filters(self, client, db_session, admin_headers, query):
        assert client.get(f"/api/returns?{query}", headers=admin_headers).status_code == 400
