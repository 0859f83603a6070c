"""
Order placement, visibility and cancellation tests.

Verifies:
- Total is Σ(price × qty) snapshotted at purchase, stock reserved
- No partial order when any line fails (missing, inactive, short on stock)
- Duplicate product lines are merged
- Buyer / artisan / admin visibility, artisans only see their own lines
- Cancellation restores stock, enforces window, role and status
"""

from datetime import timedelta

import pytest

from conftest import headers_for, make_product, make_user, order_payload
from marketplace.models import Order, OrderItem
from marketplace.time_utils import utcnow


def _place(client, headers, *lines):
    return client.post("/api/orders", json=order_payload(*lines), headers=headers)


class TestCreateOrder:
    def test_end_to_end_reserve_and_cancel(self, client, db_session, product, buyer_headers):
        resp = _place(client, buyer_headers, (product.id, 3))
        assert resp.status_code == 201
        order = resp.get_json()["data"]
        assert order["total_cents"] == 6000
        assert order["status"] == "pending"
        assert order["total_items"] == 3
        assert [h["status"] for h in order["history"]] == ["pending"]

        db_session.refresh(product)
        assert product.stock == 7

        cancel = client.post(
            f"/api/orders/{order['id']}/cancel",
            json={"reason": "Changed my mind"},
            headers=buyer_headers,
        )
        assert cancel.status_code == 200
        assert cancel.get_json()["data"]["status"] == "cancelled"
        db_session.refresh(product)
        assert product.stock == 10

        again = client.post(
            f"/api/orders/{order['id']}/cancel",
            json={"reason": "Changed my mind"},
            headers=buyer_headers,
        )
        assert again.status_code == 400
        body = again.get_json()
        assert body["current_status"] == "cancelled"
        assert body["allowed_transitions"] == []
        db_session.refresh(product)
        assert product.stock == 10

    def test_price_snapshot_survives_price_change(self, client, db_session, product, buyer_headers):
        order_id = _place(client, buyer_headers, (product.id, 2)).get_json()["data"]["id"]
        product.price_cents = 9999
        db_session.commit()

        item = db_session.query(OrderItem).filter_by(order_id=order_id).one()
        assert item.price_at_purchase_cents == 2000
        assert db_session.get(Order, order_id).total_cents == 4000

    def test_multiple_artisans(self, client, db_session, product, other_artisan, buyer_headers):
        rug = make_product(db_session, other_artisan, "Wool rug", price_cents=9000, stock=2)
        resp = _place(client, buyer_headers, (product.id, 1), (rug.id, 2))
        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["total_cents"] == 2000 + 18000
        assert {i["artisan_id"] for i in data["items"]} == {product.artisan_id, other_artisan.id}

    def test_duplicate_lines_merged(self, client, db_session, product, buyer_headers):
        resp = _place(client, buyer_headers, (product.id, 2), (product.id, 3))
        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert len(data["items"]) == 1
        assert data["items"][0]["quantity"] == 5
        db_session.refresh(product)
        assert product.stock == 5

    def test_insufficient_stock_names_product(self, client, db_session, product, buyer_headers):
        resp = _place(client, buyer_headers, (product.id, 11))
        assert resp.status_code == 400
        body = resp.get_json()
        assert product.name in body["error"]
        assert body["available"] == 10
        db_session.refresh(product)
        assert product.stock == 10

    def test_no_partial_order(self, client, db_session, product, other_artisan, buyer_headers):
        scarce = make_product(db_session, other_artisan, "Silver ring", stock=1)
        resp = _place(client, buyer_headers, (product.id, 2), (scarce.id, 5))
        assert resp.status_code == 400

        assert db_session.query(Order).count() == 0
        db_session.refresh(product)
        db_session.refresh(scarce)
        assert product.stock == 10
        assert scarce.stock == 1

    def test_missing_product(self, client, db_session, product, buyer_headers):
        resp = _place(client, buyer_headers, (product.id, 1), (9999, 1))
        assert resp.status_code == 404
        assert db_session.query(Order).count() == 0

    def test_inactive_product(self, client, db_session, artisan, buyer_headers):
        retired = make_product(db_session, artisan, "Retired cup", is_active=False)
        resp = _place(client, buyer_headers, (retired.id, 1))
        assert resp.status_code == 400
        assert "Retired cup" in resp.get_json()["error"]

    @pytest.mark.parametrize(
        "mutate",
        [
            lambda b: b.update(items=[]),
            lambda b: b.update(items=[{"product_id": 1, "quantity": 0}]),
            lambda b: b.update(items=[{"product_id": -1, "quantity": 1}]),
            lambda b: b.update(items=[{"product_id": 1, "quantity": 1.5}]),
            lambda b: b.update(payment_method="bitcoin"),
            lambda b: b["shipping_address"].update(street="1 A"),
            lambda b: b["shipping_address"].update(city="X"),
            lambda b: b["shipping_address"].update(country=""),
            lambda b: b.pop("shipping_address"),
        ],
    )
    def test_invalid_payloads(self, client, db_session, product, buyer_headers, mutate):
        body = order_payload((product.id, 1))
        mutate(body)
        resp = client.post("/api/orders", json=body, headers=buyer_headers)
        assert resp.status_code == 400

    def test_postal_code_optional(self, client, db_session, product, buyer_headers):
        body = order_payload((product.id, 1))
        del body["shipping_address"]["postal_code"]
        resp = client.post("/api/orders", json=body, headers=buyer_headers)
        assert resp.status_code == 201
        assert resp.get_json()["data"]["shipping_address"]["postal_code"] is None


class TestOrderVisibility:
    @pytest.fixture
    def mixed_order(self, client, db_session, product, other_artisan, buyer_headers):
        rug = make_product(db_session, other_artisan, "Wool rug", price_cents=9000, stock=2)
        resp = _place(client, buyer_headers, (product.id, 1), (rug.id, 1))
        return resp.get_json()["data"]["id"]

    def test_buyer_sees_everything(self, client, mixed_order, buyer_headers):
        data = client.get(f"/api/orders/{mixed_order}", headers=buyer_headers).get_json()["data"]
        assert len(data["items"]) == 2
        assert data["total_items"] == 2

    def test_artisan_sees_own_lines(self, client, mixed_order, artisan, artisan_headers):
        resp = client.get(f"/api/orders/{mixed_order}", headers=artisan_headers)
        assert resp.status_code == 200
        items = resp.get_json()["data"]["items"]
        assert [i["artisan_id"] for i in items] == [artisan.id]

    def test_admin_sees_everything(self, client, mixed_order, admin_headers):
        data = client.get(f"/api/orders/{mixed_order}", headers=admin_headers).get_json()["data"]
        assert len(data["items"]) == 2

    def test_stranger_forbidden(self, client, db_session, mixed_order):
        stranger = make_user(db_session, "Sam Stranger", "stranger@example.com")
        resp = client.get(f"/api/orders/{mixed_order}", headers=headers_for(stranger))
        assert resp.status_code == 403

    def test_unknown_order(self, client, db_session, buyer_headers):
        assert client.get("/api/orders/12345", headers=buyer_headers).status_code == 404

    def test_buyer_listing(self, client, db_session, product, buyer_headers, artisan_headers):
        first = _place(client, buyer_headers, (product.id, 1)).get_json()["data"]["id"]
        second = _place(client, buyer_headers, (product.id, 1)).get_json()["data"]["id"]
        client.patch(f"/api/orders/{first}/status", json={"status": "processing"}, headers=artisan_headers)

        body = client.get("/api/orders", headers=buyer_headers).get_json()
        assert [o["id"] for o in body["data"]] == [second, first]
        assert body["meta"]["total"] == 2

        pending = client.get("/api/orders?status=pending", headers=buyer_headers).get_json()
        assert [o["id"] for o in pending["data"]] == [second]

    def test_listing_excludes_other_buyers(self, client, db_session, product, buyer_headers, admin_headers):
        _place(client, buyer_headers, (product.id, 1))
        body = client.get("/api/orders", headers=admin_headers).get_json()
        assert body["data"] == []


class TestCancellation:
    @pytest.fixture
    def order_id(self, client, product, buyer_headers):
        return _place(client, buyer_headers, (product.id, 3)).get_json()["data"]["id"]

    def _age(self, db_session, order_id, hours):
        order = db_session.get(Order, order_id)
        order.created_at = utcnow() - timedelta(hours=hours)
        db_session.commit()

    def test_refund_request_recorded(self, client, order_id, buyer_headers):
        resp = client.post(
            f"/api/orders/{order_id}/cancel",
            json={"reason": "Ordered twice", "refund_request": True},
            headers=buyer_headers,
        )
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["refund_initiated"] is True
        assert body["data"]["cancellation_reason"] == "Ordered twice"
        last = body["data"]["history"][-1]
        assert last["status"] == "cancelled"
        assert last["metadata"]["cancellation_reason"] == "Ordered twice"

    def test_window_expired_for_buyer(self, client, db_session, product, order_id, buyer_headers):
        self._age(db_session, order_id, 25)
        resp = client.post(f"/api/orders/{order_id}/cancel", json={"reason": "Too late?"}, headers=buyer_headers)
        assert resp.status_code == 400
        body = resp.get_json()
        assert "deadline" in body and "now" in body
        db_session.refresh(product)
        assert product.stock == 7

    def test_within_window(self, client, db_session, order_id, buyer_headers):
        self._age(db_session, order_id, 23)
        resp = client.post(f"/api/orders/{order_id}/cancel", json={"reason": "Just in time"}, headers=buyer_headers)
        assert resp.status_code == 200

    def test_admin_bypasses_window(self, client, db_session, product, order_id, admin_headers):
        self._age(db_session, order_id, 25)
        resp = client.post(f"/api/orders/{order_id}/cancel", json={"reason": "Fraud check"}, headers=admin_headers)
        assert resp.status_code == 200
        db_session.refresh(product)
        assert product.stock == 10

    def test_admin_bypass_can_be_disabled(self, app, client, db_session, order_id, admin_headers, monkeypatch):
        monkeypatch.setitem(app.config, "ADMIN_CANCEL_BYPASS_WINDOW", False)
        self._age(db_session, order_id, 25)
        resp = client.post(f"/api/orders/{order_id}/cancel", json={"reason": "Fraud check"}, headers=admin_headers)
        assert resp.status_code == 400

    def test_artisan_cannot_cancel(self, client, order_id, artisan_headers):
        resp = client.post(f"/api/orders/{order_id}/cancel", json={"reason": "Out of clay"}, headers=artisan_headers)
        assert resp.status_code == 403

    def test_cannot_cancel_shipped(self, client, order_id, buyer_headers, artisan_headers):
        client.patch(f"/api/orders/{order_id}/status", json={"status": "processing"}, headers=artisan_headers)
        client.patch(
            f"/api/orders/{order_id}/status",
            json={"status": "shipped", "tracking_number": "TRK-1"},
            headers=artisan_headers,
        )
        resp = client.post(f"/api/orders/{order_id}/cancel", json={"reason": "Too slow"}, headers=buyer_headers)
        assert resp.status_code == 400
        assert resp.get_json()["allowed_transitions"] == ["delivered"]

    def test_reason_required(self, client, order_id, buyer_headers):
        resp = client.post(f"/api/orders/{order_id}/cancel", json={}, headers=buyer_headers)
        assert resp.status_code == 400
