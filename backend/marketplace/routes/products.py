# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/marketplace/routes/products.py
"""
Product catalog routes.

Reads are public and only ever show active products (except the artisan
listing with status=inactive). Writes require authentication; the creator
becomes the artisan, and only the artisan or an admin may modify a product.
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth
from ..errors import MarketplaceError
from ..models import Product
from ..services import products_service
from ..services.products_service import ProductQuery
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    parse_optional_choice,
    parse_stock_adjustment,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "price_cents", "images", "category", "stock"},
    required_on_create={"name", "description", "price_cents", "images", "category"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _listing(products, meta):
    return jsonify({"data": [p.to_dict() for p in products], "meta": meta})


@products_bp.get("")
def list_products_route():
    """
    List active products.

    Query params:
    - category: str (optional)
    - min_price / max_price: int cents (optional, max >= min)
    - sort: price | -price | created_at | -created_at (default -created_at)
    - page / limit: pagination (default 1 / 10, limit max 100)
    """
    try:
        q = ProductQuery.from_args(request.args)
        return _listing(*products_service.list_products(q))
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/search")
def search_products_route():
    """Case-insensitive search over name and description (q >= 3 chars)."""
    try:
        term = (request.args.get("q") or "").strip()
        q = ProductQuery.from_args(request.args, search=term)
        return _listing(*products_service.list_products(q))
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to search products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/categories-available")
def categories_route():
    try:
        return jsonify({"data": products_service.list_categories()})
    except Exception:
        current_app.logger.exception("Failed to list categories")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/artisan/<int:artisan_id>")
def artisan_products_route(artisan_id: int):
    """
    Products of one artisan.

    Query params: status=active|inactive (default active), category, page, limit.
    """
    try:
        status = parse_optional_choice("status", request.args.get("status"), ("active", "inactive")) or "active"
        q = ProductQuery.from_args(request.args, artisan_id=artisan_id, is_active=(status == "active"))
        return _listing(*products_service.list_products(q))
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list artisan products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        return jsonify({"data": products_service.get_product(product_id).to_dict()})
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("")
@require_auth
def create_product_route():
    """
    Create a new product owned by the caller.

    Request body:
    {
        "name": "Clay vase",
        "description": "Hand-thrown stoneware vase",
        "price_cents": 4500,
        "images": ["https://cdn.example.com/vase.jpg"],
        "category": "ceramics",
        "stock": 3
    }
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch, partial=False)
        created = products_service.create_product(g.current_user, patch)
        return jsonify({"data": created.to_dict(), "message": "Product created"}), 201
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/<int:product_id>")
@require_auth
def update_product_route(product_id: int):
    """Partial update (at least one field). Owner or admin only."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch, partial=True)
        updated = products_service.update_product(product_id, g.current_user, patch)
        return jsonify({"data": updated.to_dict(), "message": "Product updated"}), 200
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/<int:product_id>")
@require_auth
def delete_product_route(product_id: int):
    """Soft delete. Owner or admin only."""
    try:
        products_service.delete_product(product_id, g.current_user)
        return jsonify({"ok": True, "message": "Product deleted"}), 200
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.patch("/<int:product_id>/stock")
@require_auth
def adjust_stock_route(product_id: int):
    """
    Adjust stock.

    Request body:
    {
        "operation": "increment" | "decrement" | "set",
        "value": 5,
        "reason": "Restock from workshop"   // optional
    }
    """
    try:
        data = parse_stock_adjustment(request.get_json(silent=True))
        product = products_service.adjust_stock(
            product_id,
            g.current_user,
            data["operation"],
            data["value"],
            reason=data["reason"],
        )
        return jsonify({"data": product.to_dict(), "message": "Stock updated"}), 200
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500
