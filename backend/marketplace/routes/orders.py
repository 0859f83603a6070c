# Overview: Flask API routes for order operations; parses input and returns JSON responses.

# backend/marketplace/routes/orders.py
"""
Order workflow routes.

SECURITY: All routes require authentication.
- Placing and listing orders: any user (as buyer)
- Viewing / tracking: buyer, an artisan on the order, or an admin
- Status updates: an artisan on the order or an admin
- Cancellation and returns: the buyer (admins may also cancel)
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth
from ..errors import MarketplaceError
from ..models.orders import ORDER_STATUSES
from ..services import order_service, return_service, tracking_service
from ..time_utils import to_utc_z
from ..validation import (
    parse_cancel_payload,
    parse_optional_choice,
    parse_order_payload,
    parse_pagination,
    parse_return_payload,
    parse_status_update,
)


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_auth
def create_order_route():
    """
    Place an order.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2}],
        "shipping_address": {"street": "...", "city": "...", "postal_code": "...", "country": "..."},
        "payment_method": "credit_card" | "paypal" | "cash_on_delivery"
    }
    """
    try:
        data = parse_order_payload(request.get_json(silent=True))
        order = order_service.create_order(
            g.current_user,
            data["items"],
            data["shipping_address"],
            data["payment_method"],
        )
        return jsonify({
            "data": order_service.order_view(order, g.current_user),
            "message": "Order created",
        }), 201
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
def list_orders_route():
    """The caller's orders as buyer, newest first. Query: status, page, limit."""
    try:
        page, limit = parse_pagination(request.args)
        status = parse_optional_choice("status", request.args.get("status"), ORDER_STATUSES)
        orders, meta = order_service.list_buyer_orders(g.current_user, status=status, page=page, limit=limit)
        return jsonify({"data": [o.to_dict() for o in orders], "meta": meta})
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    """Order details. Artisans only see their own line items."""
    try:
        order = order_service.get_order(order_id)
        return jsonify({"data": order_service.order_view(order, g.current_user)})
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/status")
@require_auth
def update_status_route(order_id: int):
    """
    Move an order along its state machine.

    Request body:
    {
        "status": "processing" | "shipped" | "delivered" | "cancelled",
        "tracking_number": "...",        // required for shipped
        "cancellation_reason": "..."     // required for cancelled
    }
    """
    try:
        data = parse_status_update(request.get_json(silent=True))
        order = order_service.update_status(
            order_id,
            g.current_user,
            data["status"],
            tracking_number=data["tracking_number"],
            cancellation_reason=data["cancellation_reason"],
        )
        return jsonify({
            "data": order_service.order_view(order, g.current_user),
            "message": "Order status updated",
        })
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    """
    Cancel within the cancellation window.

    Request body: {"reason": "...", "refund_request": false}
    """
    try:
        data = parse_cancel_payload(request.get_json(silent=True))
        order = order_service.cancel_order(
            order_id,
            g.current_user,
            data["reason"],
            refund_request=data["refund_request"],
        )
        return jsonify({
            "data": order_service.order_view(order, g.current_user),
            "refund_initiated": order.refund_requested,
            "message": "Order cancelled",
        })
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/tracking")
@require_auth
def tracking_route(order_id: int):
    try:
        return jsonify({"data": tracking_service.get_tracking(order_id, g.current_user)})
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order tracking")
        return jsonify({"error": "Internal server error"}), 500


def submit_return_response(order_id: int):
    """Shared by POST /api/orders/<id>/return and POST /api/returns/<order_id>."""
    data = parse_return_payload(request.get_json(silent=True))
    rr, review_deadline = return_service.submit_return(
        order_id,
        g.current_user,
        reason=data["reason"],
        items=data["items"],
        evidence=data["evidence"],
        refund_method=data["refund_method"],
    )
    return jsonify({
        "data": rr.to_dict(),
        "review_deadline": to_utc_z(review_deadline),
        "message": "Return request created",
    }), 201


@orders_bp.post("/<int:order_id>/return")
@require_auth
def request_return_route(order_id: int):
    """
    Request a return for a delivered order.

    Request body:
    {
        "reason": "Arrived cracked",
        "items": [{"product_id": 1, "quantity": 1}],
        "evidence": ["https://..."],                         // optional, max 5
        "refund_method": "original_payment" | "store_credit" // optional
    }
    """
    try:
        return submit_return_response(order_id)
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to request return")
        return jsonify({"error": "Internal server error"}), 500
