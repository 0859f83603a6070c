# Overview: Flask API routes for artisan reporting.

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth
from ..errors import MarketplaceError
from ..models.orders import ORDER_STATUSES
from ..services import reporting_service
from ..validation import parse_date_range, parse_optional_choice, parse_pagination


artisan_bp = Blueprint("artisan", __name__, url_prefix="/api/artisan")


@artisan_bp.get("/orders")
@require_auth
def artisan_orders_route():
    """
    Orders containing the caller's products.

    Query params: status, from_date / to_date (YYYY-MM-DD, on created_at),
    page, limit. meta.revenue_cents covers every matching order.
    """
    try:
        page, limit = parse_pagination(request.args)
        status = parse_optional_choice("status", request.args.get("status"), ORDER_STATUSES)
        from_date, to_date = parse_date_range(request.args)

        rows, meta = reporting_service.artisan_orders(
            g.current_user,
            status=status,
            from_date=from_date,
            to_date=to_date,
            page=page,
            limit=limit,
        )
        return jsonify({"data": rows, "meta": meta})
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list artisan orders")
        return jsonify({"error": "Internal server error"}), 500
