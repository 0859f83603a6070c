# Overview: Flask API routes for return requests; parses input and returns JSON responses.

# backend/marketplace/routes/returns.py
"""
Return request routes.

SECURITY: All routes require authentication.
- Submit: the order's buyer
- Details: buyer, an artisan on the order, or an admin
- List: own requests; admins see all (optionally by artisan)
- Review: admins only
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_admin
from ..errors import MarketplaceError
from ..models.orders import RETURN_STATUSES
from ..services import return_service
from ..validation import (
    parse_date_range,
    parse_optional_choice,
    parse_pagination,
    parse_positive_int,
    parse_return_review,
)
from .orders import submit_return_response


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.get("")
@require_auth
def list_returns_route():
    """
    Query params:
    - status: pending_review | approved | rejected | refunded
    - from_date / to_date: YYYY-MM-DD, applied to updated_at
    - artisan_id: admins only
    - page / limit
    """
    try:
        page, limit = parse_pagination(request.args)
        status = parse_optional_choice("status", request.args.get("status"), RETURN_STATUSES)
        from_date, to_date = parse_date_range(request.args)
        artisan_raw = request.args.get("artisan_id")
        artisan_id = parse_positive_int("artisan_id", artisan_raw) if artisan_raw else None

        rows, meta = return_service.list_returns(
            g.current_user,
            status=status,
            from_date=from_date,
            to_date=to_date,
            artisan_id=artisan_id,
            page=page,
            limit=limit,
        )
        return jsonify({"data": [rr.to_dict() for rr in rows], "meta": meta})
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list return requests")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:order_id>")
@require_auth
def submit_return_route(order_id: int):
    try:
        return submit_return_response(order_id)
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to submit return request")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/<int:return_id>")
@require_auth
def return_details_route(return_id: int):
    try:
        return jsonify({"data": return_service.get_return_details(return_id, g.current_user)})
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get return request")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.patch("/<int:return_id>/order/<int:order_id>")
@require_auth
@require_admin
def review_return_route(return_id: int, order_id: int):
    """
    Admin review.

    Request body:
    {
        "status": "approved" | "rejected" | "refunded",
        "admin_comment": "...",        // optional, max 500
        "refund_amount_cents": 1500    // required for refunded
    }
    """
    try:
        data = parse_return_review(request.get_json(silent=True))
        rr = return_service.review_return(
            return_id,
            order_id,
            g.current_user,
            status=data["status"],
            admin_comment=data["admin_comment"],
            refund_amount_cents=data["refund_amount_cents"],
        )
        return jsonify({"data": rr.to_dict(), "message": "Return request updated"})
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to review return request")
        return jsonify({"error": "Internal server error"}), 500
