# Overview: Service-layer operations for orders; placement, status state machine and cancellation.

"""
Order Workflow Service

================================================================================
STATE MACHINE:
    pending -> processing -> shipped -> delivered
    pending | processing -> cancelled

    delivered and cancelled are terminal.
================================================================================

RULES:
1. Placing an order checks every line before touching anything: no partial
   orders, no negative stock.
2. Stock is reserved (decremented) at placement and restored, by the ordered
   quantity, when the order is cancelled.
3. Order insert + stock decrements (and cancel + stock restore) are one
   transaction with product rows locked.
4. Every status change appends one OrderHistory row. History is never edited.
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import timedelta

from flask import current_app

from ..errors import (
    ForbiddenError,
    InvalidTransitionError,
    MarketplaceError,
    NotFoundError,
    ValidationError,
    WindowExpiredError,
)
from ..extensions import db
from ..models import Order, OrderHistory, OrderItem, Product, User
from ..pagination import paginate
from ..time_utils import to_utc_z, utcnow
from .concurrency import commit_unit, lock_for_update


ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"processing", "cancelled"}),
    "processing": frozenset({"shipped", "cancelled"}),
    "shipped": frozenset({"delivered"}),
    "delivered": frozenset(),
    "cancelled": frozenset(),
}

CANCELLABLE_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if "cancelled" in targets)


def allowed_transitions(status: str) -> frozenset[str]:
    return ALLOWED_TRANSITIONS.get(status, frozenset())


def ensure_transition(current: str, requested: str) -> None:
    """Raise InvalidTransitionError unless current -> requested is an edge."""
    allowed = allowed_transitions(current)
    if requested not in allowed:
        raise InvalidTransitionError(current, requested, allowed)


# =============================================================================
# HELPERS
# =============================================================================

def _append_history(order: Order, status: str, actor_id: int, details: dict | None = None) -> OrderHistory:
    entry = OrderHistory(
        status=status,
        changed_by_user_id=actor_id,
        created_at=utcnow(),
        details=details or {},
    )
    order.history.append(entry)
    return entry


def _lock_products(product_ids) -> dict[int, Product]:
    query = db.session.query(Product).filter(Product.id.in_(list(product_ids)))
    return {p.id: p for p in lock_for_update(query).all()}


def restore_stock(quantities: dict[int, int]) -> None:
    """
    Add quantities back to product stock ({product_id: quantity}).

    Caller commits. Products are locked for the rest of the transaction.
    """
    if not quantities:
        return
    products = _lock_products(quantities.keys())
    for product_id, qty in quantities.items():
        product = products.get(product_id)
        if product is None:
            # Products are soft-deleted only; a missing row means data loss.
            raise NotFoundError(f"Product {product_id} not found")
        product.stock += qty


def _ordered_quantities(order: Order) -> dict[int, int]:
    totals: dict[int, int] = OrderedDict()
    for item in order.items:
        totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    return totals


def is_artisan_on_order(order: Order, user: User) -> bool:
    return any(item.artisan_id == user.id for item in order.items)


def delivered_at(order: Order):
    """Latest 'delivered' history timestamp, falling back to created_at."""
    stamps = [h.created_at for h in order.history if h.status == "delivered"]
    return max(stamps) if stamps else order.created_at


def get_order(order_id: int, *, lock: bool = False) -> Order:
    query = db.session.query(Order).filter_by(id=order_id)
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if not order:
        raise NotFoundError("Order not found")
    return order


# =============================================================================
# PLACEMENT
# =============================================================================

def create_order(buyer: User, items: list[dict], shipping_address: dict, payment_method: str) -> Order:
    """
    Place an order.

    `items` is the merged [{product_id, quantity}] list from
    parse_order_payload. Every line is checked before any write:
    - product missing -> NotFoundError
    - product inactive -> ValidationError
    - stock < quantity -> ValidationError

    On success prices and artisans are snapshotted, total_cents frozen and
    stock decremented, all in one commit.
    """
    try:
        products = _lock_products(i["product_id"] for i in items)

        for line in items:
            product = products.get(line["product_id"])
            if product is None:
                raise NotFoundError(f"Product {line['product_id']} not found", product_id=line["product_id"])
            if not product.is_active:
                raise ValidationError(f"Product '{product.name}' is no longer available", product_id=product.id)
            if product.stock < line["quantity"]:
                raise ValidationError(
                    f"Insufficient stock for '{product.name}': requested {line['quantity']}, available {product.stock}",
                    product_id=product.id,
                    requested=line["quantity"],
                    available=product.stock,
                )
    except MarketplaceError:
        db.session.rollback()
        raise

    now = utcnow()
    order = Order(
        buyer_id=buyer.id,
        status="pending",
        payment_method=payment_method,
        payment_status="pending",
        shipping_street=shipping_address["street"],
        shipping_city=shipping_address["city"],
        shipping_postal_code=shipping_address.get("postal_code"),
        shipping_country=shipping_address["country"],
        created_at=now,
        updated_at=now,
    )

    total = 0
    for line in items:
        product = products[line["product_id"]]
        order.items.append(OrderItem(
            product_id=product.id,
            artisan_id=product.artisan_id,
            quantity=line["quantity"],
            price_at_purchase_cents=product.price_cents,
        ))
        total += product.price_cents * line["quantity"]
        product.stock -= line["quantity"]

    order.total_cents = total
    _append_history(order, "pending", buyer.id)

    db.session.add(order)
    commit_unit("place order")

    current_app.logger.info(
        "Order %s placed by user %s: %s line(s), total_cents=%s",
        order.id, buyer.id, len(order.items), order.total_cents,
    )
    return order


# =============================================================================
# READS
# =============================================================================

def visible_items(order: Order, viewer: User) -> list[OrderItem]:
    """
    Line items the viewer may see.

    Buyer and admin see everything; an artisan sees only their own lines.
    Anyone else is refused.
    """
    if viewer.is_admin or order.buyer_id == viewer.id:
        return list(order.items)
    own = [item for item in order.items if item.artisan_id == viewer.id]
    if not own:
        raise ForbiddenError("You do not have access to this order")
    return own


def order_view(order: Order, viewer: User) -> dict:
    items = visible_items(order, viewer)
    data = order.to_dict(items=items)
    data["total_items"] = sum(item.quantity for item in items)
    return data


def list_buyer_orders(buyer: User, *, status: str | None, page: int, limit: int) -> tuple[list[Order], dict]:
    query = db.session.query(Order).filter(Order.buyer_id == buyer.id)
    if status:
        query = query.filter(Order.status == status)
    query = query.order_by(Order.created_at.desc(), Order.id.desc())
    return paginate(query, page, limit)


# =============================================================================
# STATUS CHANGES
# =============================================================================

def update_status(
    order_id: int,
    actor: User,
    new_status: str,
    *,
    tracking_number: str | None = None,
    cancellation_reason: str | None = None,
) -> Order:
    """
    Move an order along the state machine.

    Allowed for an admin or an artisan with at least one line on the order.
    shipped needs tracking_number; cancelled needs cancellation_reason and
    restores every line's ordered quantity to stock.
    """
    if new_status == "shipped" and not tracking_number:
        raise ValidationError("tracking_number is required when status is shipped")
    if new_status == "cancelled" and not cancellation_reason:
        raise ValidationError("cancellation_reason is required when status is cancelled")

    order = get_order(order_id, lock=True)
    if not actor.is_admin and not is_artisan_on_order(order, actor):
        raise ForbiddenError("Only an artisan on this order or an admin can update its status")

    previous = order.status
    ensure_transition(previous, new_status)

    details: dict = {}
    if new_status == "shipped":
        order.tracking_number = tracking_number
        details["tracking_number"] = tracking_number
    elif new_status == "cancelled":
        restore_stock(_ordered_quantities(order))
        order.cancellation_reason = cancellation_reason
        details["cancellation_reason"] = cancellation_reason

    order.status = new_status
    order.updated_at = utcnow()
    _append_history(order, new_status, actor.id, details)
    commit_unit("update order status")

    current_app.logger.info(
        "Order %s status %s -> %s by user %s", order.id, previous, new_status, actor.id,
    )
    return order


def cancel_order(order_id: int, actor: User, reason: str, refund_request: bool = False) -> Order:
    """
    Cancel an order on behalf of its buyer (or an admin).

    Checks, in order:
    - actor is the buyer or an admin (ForbiddenError)
    - status is pending/processing (InvalidTransitionError)
    - within CANCELLATION_WINDOW_HOURS of creation (WindowExpiredError),
      unless the actor is an admin and ADMIN_CANCEL_BYPASS_WINDOW is on

    refund_request only records intent; no payment call is made.
    """
    order = get_order(order_id, lock=True)

    is_buyer = order.buyer_id == actor.id
    if not is_buyer and not actor.is_admin:
        raise ForbiddenError("Only the buyer or an admin can cancel this order")

    ensure_transition(order.status, "cancelled")

    now = utcnow()
    deadline = order.created_at + timedelta(hours=current_app.config["CANCELLATION_WINDOW_HOURS"])
    bypass = actor.is_admin and current_app.config["ADMIN_CANCEL_BYPASS_WINDOW"]
    if now > deadline and not bypass:
        raise WindowExpiredError(
            "Cancellation window has expired",
            deadline=to_utc_z(deadline),
            now=to_utc_z(now),
        )

    previous = order.status
    restore_stock(_ordered_quantities(order))

    order.status = "cancelled"
    order.cancellation_reason = reason
    order.refund_requested = bool(refund_request)
    order.updated_at = now
    _append_history(order, "cancelled", actor.id, {
        "cancellation_reason": reason,
        "refund_requested": bool(refund_request),
    })
    commit_unit("cancel order")

    current_app.logger.info(
        "Order %s cancelled from %s by user %s (refund_requested=%s)",
        order.id, previous, actor.id, order.refund_requested,
    )
    return order
