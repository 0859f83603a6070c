# Overview: Service-layer reporting for artisans; order listing with revenue aggregation.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import exists, func

from ..extensions import db
from ..models import Order, OrderItem, User
from ..pagination import paginate


def _artisan_order_filter(
    artisan_id: int,
    status: str | None,
    from_date: datetime | None,
    to_date: datetime | None,
) -> list:
    clauses = [exists().where(
        OrderItem.order_id == Order.id,
        OrderItem.artisan_id == artisan_id,
    )]
    if status:
        clauses.append(Order.status == status)
    if from_date is not None:
        clauses.append(Order.created_at >= from_date)
    if to_date is not None:
        clauses.append(Order.created_at <= to_date)
    return clauses


def artisan_revenue_cents(
    artisan_id: int,
    *,
    status: str | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
) -> int:
    """Σ(price_at_purchase × quantity) over the artisan's lines in matching orders."""
    clauses = [OrderItem.artisan_id == artisan_id]
    if status:
        clauses.append(Order.status == status)
    if from_date is not None:
        clauses.append(Order.created_at >= from_date)
    if to_date is not None:
        clauses.append(Order.created_at <= to_date)

    total = (
        db.session.query(func.coalesce(func.sum(OrderItem.price_at_purchase_cents * OrderItem.quantity), 0))
        .join(Order, OrderItem.order_id == Order.id)
        .filter(*clauses)
        .scalar()
    )
    return int(total or 0)


def artisan_orders(
    artisan: User,
    *,
    status: str | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[dict], dict]:
    """
    Orders containing the artisan's items, newest first.

    Each order carries only the artisan's own lines. meta adds revenue_cents
    over every matching order, not just the current page.
    """
    query = (
        db.session.query(Order)
        .filter(*_artisan_order_filter(artisan.id, status, from_date, to_date))
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    orders, meta = paginate(query, page, limit)

    rows = []
    for order in orders:
        own = [item for item in order.items if item.artisan_id == artisan.id]
        data = order.to_dict(items=own)
        data["artisan_total_cents"] = sum(item.line_total_cents for item in own)
        rows.append(data)

    meta["revenue_cents"] = artisan_revenue_cents(
        artisan.id, status=status, from_date=from_date, to_date=to_date,
    )
    return rows, meta
