# Overview: Service-layer operations for products; catalog queries, ownership checks and stock changes.

from __future__ import annotations

from dataclasses import dataclass, replace

from flask import current_app
from sqlalchemy import func, or_

from ..errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, User
from ..pagination import paginate
from ..validation import (
    PRODUCT_SORT_KEYS,
    parse_optional_choice,
    parse_optional_price,
    parse_pagination,
)
from .concurrency import lock_for_update, commit_unit


MIN_SEARCH_LENGTH = 3

_SORT_COLUMNS = {
    "price": Product.price_cents,
    "created_at": Product.created_at,
}


@dataclass(frozen=True)
class ProductQuery:
    """
    Immutable catalog filter, built once from request args.

    Every listing endpoint (list, search, by artisan) runs through the same
    query builder with a different ProductQuery.
    """
    category: str | None = None
    min_price_cents: int | None = None
    max_price_cents: int | None = None
    sort: str = "-created_at"
    search: str | None = None
    artisan_id: int | None = None
    is_active: bool = True
    page: int = 1
    limit: int = 10

    @classmethod
    def from_args(cls, args, **fixed) -> "ProductQuery":
        page, limit = parse_pagination(args)
        category = (args.get("category") or "").strip() or None
        query = cls(
            category=category,
            min_price_cents=parse_optional_price("min_price", args.get("min_price")),
            max_price_cents=parse_optional_price("max_price", args.get("max_price")),
            sort=parse_optional_choice("sort", args.get("sort"), PRODUCT_SORT_KEYS) or "-created_at",
            page=page,
            limit=limit,
        )
        query = replace(query, **fixed)
        query.validate()
        return query

    def validate(self) -> None:
        if (
            self.min_price_cents is not None
            and self.max_price_cents is not None
            and self.max_price_cents < self.min_price_cents
        ):
            raise ValidationError("max_price must be greater than or equal to min_price")
        if self.search is not None and len(self.search) < MIN_SEARCH_LENGTH:
            raise ValidationError(f"Search query must be at least {MIN_SEARCH_LENGTH} characters")


def _escape_like(term: str) -> str:
    """Make %, _ and \\ match literally inside a LIKE pattern."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _build_query(q: ProductQuery):
    query = db.session.query(Product).filter(Product.is_active.is_(q.is_active))

    if q.artisan_id is not None:
        query = query.filter(Product.artisan_id == q.artisan_id)
    if q.category:
        query = query.filter(Product.category == q.category)
    if q.min_price_cents is not None:
        query = query.filter(Product.price_cents >= q.min_price_cents)
    if q.max_price_cents is not None:
        query = query.filter(Product.price_cents <= q.max_price_cents)
    if q.search:
        pattern = f"%{_escape_like(q.search.lower())}%"
        query = query.filter(or_(
            func.lower(Product.name).like(pattern, escape="\\"),
            func.lower(Product.description).like(pattern, escape="\\"),
        ))

    column = _SORT_COLUMNS[q.sort.lstrip("-")]
    if q.sort.startswith("-"):
        query = query.order_by(column.desc(), Product.id.desc())
    else:
        query = query.order_by(column.asc(), Product.id.asc())
    return query


def list_products(q: ProductQuery) -> tuple[list[Product], dict]:
    """Run a ProductQuery. Returns (products, pagination meta)."""
    return paginate(_build_query(q), q.page, q.limit)


def list_categories() -> list[str]:
    """Distinct categories of active products, sorted."""
    rows = (
        db.session.query(Product.category)
        .filter(Product.is_active.is_(True))
        .distinct()
        .order_by(Product.category.asc())
        .all()
    )
    return [r[0] for r in rows]


def get_product(product_id: int) -> Product:
    """Public read: active products only."""
    product = db.session.query(Product).filter_by(id=product_id, is_active=True).first()
    if not product:
        raise NotFoundError("Product not found")
    return product


def _get_owned_product(product_id: int, actor: User, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if not product:
        raise NotFoundError("Product not found")
    if product.artisan_id != actor.id and not actor.is_admin:
        raise ForbiddenError("Only the product owner or an admin can modify this product")
    return product


def _ensure_unique_name(name: str, artisan_id: int, exclude_id: int | None = None) -> None:
    query = db.session.query(Product.id).filter(
        Product.name == name,
        Product.artisan_id == artisan_id,
    )
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first():
        raise ConflictError(f"You already have a product named '{name}'")


def create_product(artisan: User, patch: dict) -> Product:
    """
    Create a listing owned by the caller.

    `patch` is already validated (validate_payload + enforce_rules_product).
    """
    _ensure_unique_name(patch["name"], artisan.id)

    product = Product(artisan_id=artisan.id, **patch)
    db.session.add(product)
    commit_unit("create product")

    current_app.logger.info("Product %s created by artisan %s", product.id, artisan.id)
    return product


def update_product(product_id: int, actor: User, patch: dict) -> Product:
    product = _get_owned_product(product_id, actor)

    if "name" in patch and patch["name"] != product.name:
        _ensure_unique_name(patch["name"], product.artisan_id, exclude_id=product.id)

    for k, v in patch.items():
        setattr(product, k, v)
    commit_unit("update product")
    return product


def delete_product(product_id: int, actor: User) -> Product:
    """Soft delete: hide from the catalog, keep for order history."""
    product = _get_owned_product(product_id, actor)
    product.is_active = False
    commit_unit("delete product")

    current_app.logger.info("Product %s deactivated by user %s", product.id, actor.id)
    return product


def adjust_stock(product_id: int, actor: User, operation: str, value: int, reason: str | None = None) -> Product:
    """
    Apply increment / decrement / set to a product's stock.

    Decrementing below zero is rejected; stock never goes negative.
    """
    product = _get_owned_product(product_id, actor, lock=True)
    before = product.stock

    if operation == "increment":
        product.stock = before + value
    elif operation == "decrement":
        if value > before:
            raise ValidationError(
                f"Cannot decrement stock of '{product.name}' by {value}: only {before} available"
            )
        product.stock = before - value
    elif operation == "set":
        product.stock = value
    else:
        raise ValidationError(f"Unknown stock operation: {operation}")

    commit_unit("adjust stock")

    current_app.logger.info(
        "Stock for product %s: %s -> %s (%s by user %s, reason=%r)",
        product.id, before, product.stock, operation, actor.id, reason,
    )
    return product
