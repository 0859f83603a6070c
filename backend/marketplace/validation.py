from __future__ import annotations
from datetime import datetime
from urllib.parse import urlparse
import re

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .models.orders import PAYMENT_METHODS, ORDER_STATUSES, RETURN_STATUSES, REFUND_METHODS
from .time_utils import parse_date_bound


# Maximum price: $10,000.00 (1,000,000 cents)
MAX_PRICE_CENTS = 1_000_000
MAX_PRODUCT_IMAGES = 5
MAX_EVIDENCE_URLS = 5

DEFAULT_PAGE_LIMIT = 10
MAX_PAGE_LIMIT = 100

STOCK_OPERATIONS = ("increment", "decrement", "set")
PRODUCT_SORT_KEYS = ("price", "-price", "created_at", "-created_at")

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        if not isinstance(value, str):
            raise ValidationError(f"{col.key} must be a string")
        return value.strip()

    # Default (JSON): leave as-is, business rules check the shape
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    elif not payload:
        raise ValidationError("At least one field must be provided")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def is_http_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    parsed = urlparse(value.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _require_length(key: str, value: str, min_len: int, max_len: int) -> None:
    if len(value) < min_len:
        raise ValidationError(f"{key} must be at least {min_len} characters")
    if len(value) > max_len:
        raise ValidationError(f"{key} must be at most {max_len} characters")


def _url_list(key: str, value: Any, *, max_items: int) -> list[str]:
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be a list of URLs")
    if len(value) > max_items:
        raise ValidationError(f"{key} allows at most {max_items} entries")
    bad = [v for v in value if not is_http_url(v)]
    if bad:
        raise ValidationError(f"{key} contains invalid URLs", invalid=bad)
    return [v.strip() for v in value]


def enforce_rules_product(patch: dict, *, partial: bool) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "name" in patch:
        _require_length("name", patch["name"], 3, 100)

    if "description" in patch:
        _require_length("description", patch["description"], 10, 500)

    if "category" in patch and not patch["category"]:
        raise ValidationError("category is required")

    if "price_cents" in patch:
        price = patch["price_cents"]
        if price <= 0:
            raise ValidationError("price_cents must be > 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"price_cents cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")

    if "stock" in patch and patch["stock"] < 0:
        raise ValidationError("stock must be >= 0")

    if "images" in patch:
        patch["images"] = _url_list("images", patch["images"], max_items=MAX_PRODUCT_IMAGES)
        if not partial and not patch["images"]:
            raise ValidationError("images must contain at least one URL")


def parse_positive_int(key: str, value: Any) -> int:
    parsed = _coerce_int(key, value)
    if parsed <= 0:
        raise ValidationError(f"{key} must be a positive integer")
    return parsed


def parse_pagination(args) -> tuple[int, int]:
    """Read page/limit query params (1-based page, limit capped at 100)."""
    page_raw = args.get("page")
    limit_raw = args.get("limit")
    page = parse_positive_int("page", page_raw) if page_raw not in (None, "") else 1
    limit = parse_positive_int("limit", limit_raw) if limit_raw not in (None, "") else DEFAULT_PAGE_LIMIT
    if limit > MAX_PAGE_LIMIT:
        raise ValidationError(f"limit cannot exceed {MAX_PAGE_LIMIT}")
    return page, limit


def parse_optional_choice(key: str, value: Any, choices) -> str | None:
    if value in (None, ""):
        return None
    if value not in choices:
        raise ValidationError(f"{key} must be one of: {', '.join(choices)}")
    return value


def parse_optional_price(key: str, value: Any) -> int | None:
    if value in (None, ""):
        return None
    parsed = _coerce_int(key, value)
    if parsed < 0:
        raise ValidationError(f"{key} must be >= 0")
    return parsed


def parse_date_range(args) -> tuple[datetime | None, datetime | None]:
    """Read from_date/to_date (YYYY-MM-DD) query params."""
    try:
        start = parse_date_bound(args.get("from_date"))
        end = parse_date_bound(args.get("to_date"), end_of_day=True)
    except ValueError:
        raise ValidationError("from_date and to_date must be YYYY-MM-DD")
    if start and end and start > end:
        raise ValidationError("from_date must be on or before to_date")
    return start, end


# =============================================================================
# REQUEST BODIES
# =============================================================================

def _require_dict(payload: Any) -> dict:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def _require_str(payload: dict, key: str, *, min_len: int = 1, max_len: int = 500, optional: bool = False) -> str | None:
    value = payload.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        if optional:
            return None
        raise ValidationError(f"{key} is required")
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    value = value.strip()
    _require_length(key, value, min_len, max_len)
    return value


def parse_registration(payload: Any) -> dict:
    payload = _require_dict(payload)
    name = _require_str(payload, "name", min_len=3, max_len=100)
    email = _require_str(payload, "email", max_len=255).lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("email is not valid")
    password = payload.get("password")
    if not isinstance(password, str) or not password:
        raise ValidationError("password is required")
    return {"name": name, "email": email, "password": password}


def parse_line_items(raw: Any, *, key: str = "items") -> list[dict]:
    """
    Validate [{product_id, quantity}] and merge duplicate product ids.

    Order of first appearance is preserved.
    """
    if not isinstance(raw, list) or not raw:
        raise ValidationError(f"{key} must contain at least one product")
    merged: dict[int, int] = {}
    for idx, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError(f"{key}[{idx}] must be an object")
        product_id = parse_positive_int(f"{key}[{idx}].product_id", item.get("product_id"))
        quantity = parse_positive_int(f"{key}[{idx}].quantity", item.get("quantity"))
        merged[product_id] = merged.get(product_id, 0) + quantity
    return [{"product_id": pid, "quantity": qty} for pid, qty in merged.items()]


def parse_order_payload(payload: Any) -> dict:
    payload = _require_dict(payload)
    items = parse_line_items(payload.get("items"))

    address = payload.get("shipping_address")
    if not isinstance(address, dict):
        raise ValidationError("shipping_address is required")
    shipping = {
        "street": _require_str(address, "street", min_len=5, max_len=255),
        "city": _require_str(address, "city", min_len=2, max_len=128),
        "country": _require_str(address, "country", min_len=2, max_len=128),
        "postal_code": _require_str(address, "postal_code", max_len=32, optional=True),
    }

    payment_method = payload.get("payment_method")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")

    return {"items": items, "shipping_address": shipping, "payment_method": payment_method}


def parse_status_update(payload: Any) -> dict:
    payload = _require_dict(payload)
    status = payload.get("status")
    if status not in ORDER_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(ORDER_STATUSES)}")
    return {
        "status": status,
        "tracking_number": _require_str(payload, "tracking_number", max_len=64, optional=True),
        "cancellation_reason": _require_str(payload, "cancellation_reason", min_len=3, max_len=500, optional=True),
    }


def parse_cancel_payload(payload: Any) -> dict:
    payload = _require_dict(payload)
    refund_request = payload.get("refund_request", False)
    if not isinstance(refund_request, bool):
        raise ValidationError("refund_request must be a boolean")
    return {
        "reason": _require_str(payload, "reason", min_len=3, max_len=500),
        "refund_request": refund_request,
    }


def parse_return_payload(payload: Any) -> dict:
    payload = _require_dict(payload)
    evidence = payload.get("evidence") or []
    return {
        "reason": _require_str(payload, "reason", min_len=3, max_len=500),
        "items": parse_line_items(payload.get("items")),
        "evidence": _url_list("evidence", evidence, max_items=MAX_EVIDENCE_URLS),
        "refund_method": parse_optional_choice("refund_method", payload.get("refund_method"), REFUND_METHODS),
    }


def parse_return_review(payload: Any) -> dict:
    payload = _require_dict(payload)
    status = payload.get("status")
    if status not in RETURN_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(RETURN_STATUSES)}")

    refund_amount = payload.get("refund_amount_cents")
    if refund_amount is not None:
        refund_amount = parse_positive_int("refund_amount_cents", refund_amount)
    if status == "refunded" and refund_amount is None:
        raise ValidationError("refund_amount_cents is required when status is refunded")

    return {
        "status": status,
        "admin_comment": _require_str(payload, "admin_comment", max_len=500, optional=True),
        "refund_amount_cents": refund_amount,
    }


def parse_stock_adjustment(payload: Any) -> dict:
    payload = _require_dict(payload)
    operation = payload.get("operation")
    if operation not in STOCK_OPERATIONS:
        raise ValidationError(f"operation must be one of: {', '.join(STOCK_OPERATIONS)}")

    value = _coerce_int("value", payload.get("value"))
    if value < 0:
        raise ValidationError("value must be >= 0")
    if operation == "set" and value <= 0:
        raise ValidationError("value must be positive when operation is 'set'")

    return {
        "operation": operation,
        "value": value,
        "reason": _require_str(payload, "reason", min_len=3, max_len=100, optional=True),
    }
