"""
Return & Refund Workflow Service

A buyer asks to send back some of the items of a delivered order; an admin
reviews the request.

LIFECYCLE:
    pending_review -> approved -> refunded
    pending_review -> rejected

    rejected and refunded are terminal.

RULES:
- Returns are accepted only for delivered orders, within RETURN_WINDOW_DAYS
  of delivery.
- Each returned line must exist on the order with quantity <= ordered.
- Only one open (pending_review / approved) request per order at a time.
- Approval restores stock for the returned quantities. It happens once
  because approved is reachable only from pending_review.
- Refund amount is capped by the current catalog price of the returned
  items. No payment processor is called.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import exists

from ..errors import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    WindowExpiredError,
)
from ..extensions import db
from ..models import Order, OrderItem, Product, ReturnHistory, ReturnItem, ReturnRequest, User
from ..pagination import paginate
from ..time_utils import to_utc_z, utcnow
from .concurrency import commit_unit, lock_for_update
from .order_service import delivered_at, get_order, is_artisan_on_order, restore_stock


RETURN_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending_review": frozenset({"approved", "rejected"}),
    "approved": frozenset({"refunded"}),
    "rejected": frozenset(),
    "refunded": frozenset(),
}

OPEN_RETURN_STATUSES = ("pending_review", "approved")


# =============================================================================
# ELIGIBILITY
# =============================================================================

def check_return_window(order: Order) -> datetime:
    """
    Gate for return submission.

    Raises:
        ValidationError: order is not delivered
        WindowExpiredError: more than RETURN_WINDOW_DAYS since delivery

    Returns the return deadline.
    """
    if order.status != "delivered":
        raise ValidationError(
            f"Only delivered orders can be returned (order is {order.status})",
            current_status=order.status,
        )

    deadline = delivered_at(order) + timedelta(days=current_app.config["RETURN_WINDOW_DAYS"])
    now = utcnow()
    if now > deadline:
        raise WindowExpiredError(
            "Return window has expired",
            deadline=to_utc_z(deadline),
            now=to_utc_z(now),
        )
    return deadline


# =============================================================================
# SUBMISSION
# =============================================================================

def _invalid_return_items(order: Order, items: list[dict]) -> list[dict]:
    ordered: dict[int, int] = {}
    for line in order.items:
        ordered[line.product_id] = ordered.get(line.product_id, 0) + line.quantity

    invalid = []
    for item in items:
        available = ordered.get(item["product_id"], 0)
        if item["quantity"] > available:
            invalid.append({
                "product_id": item["product_id"],
                "quantity": item["quantity"],
                "ordered_quantity": available,
            })
    return invalid


def submit_return(
    order_id: int,
    buyer: User,
    *,
    reason: str,
    items: list[dict],
    evidence: list[str] | None = None,
    refund_method: str | None = None,
) -> tuple[ReturnRequest, datetime]:
    """
    Open a return request on a delivered order.

    Returns (return_request, review_deadline).
    """
    order = get_order(order_id, lock=True)
    if order.buyer_id != buyer.id:
        raise ForbiddenError("Only the buyer can request a return for this order")

    check_return_window(order)

    invalid = _invalid_return_items(order, items)
    if invalid:
        raise ValidationError(
            "Some items are not part of the order or exceed the ordered quantity",
            invalid_items=invalid,
        )

    if any(rr.status in OPEN_RETURN_STATUSES for rr in order.return_requests):
        raise ValidationError("A return request is already open for this order")

    now = utcnow()
    rr = ReturnRequest(
        requested_by_user_id=buyer.id,
        status="pending_review",
        reason=reason,
        refund_method=refund_method,
        evidence=list(evidence or []),
        created_at=now,
        updated_at=now,
    )
    for item in items:
        rr.items.append(ReturnItem(product_id=item["product_id"], quantity=item["quantity"]))
    rr.history.append(ReturnHistory(
        status="pending_review",
        changed_by_user_id=buyer.id,
        comment=reason,
        created_at=now,
    ))
    order.return_requests.append(rr)
    commit_unit("submit return request")

    review_deadline = now + timedelta(days=current_app.config["RETURN_REVIEW_DAYS"])
    current_app.logger.info(
        "Return request %s opened on order %s by user %s", rr.id, order.id, buyer.id,
    )
    return rr, review_deadline


# =============================================================================
# REVIEW
# =============================================================================

def refundable_total_cents(rr: ReturnRequest) -> int:
    """Σ(current catalog price × returned quantity)."""
    ids = [item.product_id for item in rr.items]
    prices = dict(
        db.session.query(Product.id, Product.price_cents).filter(Product.id.in_(ids)).all()
    )
    total = 0
    for item in rr.items:
        if item.product_id not in prices:
            raise NotFoundError(f"Product {item.product_id} not found")
        total += prices[item.product_id] * item.quantity
    return total


def _get_return(return_id: int, order_id: int | None = None, *, lock: bool = False) -> ReturnRequest:
    query = db.session.query(ReturnRequest).filter(ReturnRequest.id == return_id)
    if order_id is not None:
        query = query.filter(ReturnRequest.order_id == order_id)
    if lock:
        query = lock_for_update(query)
    rr = query.first()
    if not rr:
        raise NotFoundError("Return request not found")
    return rr


def review_return(
    return_id: int,
    order_id: int,
    admin: User,
    *,
    status: str,
    admin_comment: str | None = None,
    refund_amount_cents: int | None = None,
) -> ReturnRequest:
    """
    Admin decision on a return request.

    - pending_review -> approved: restore stock for the returned quantities
    - pending_review -> rejected
    - approved -> refunded: refund_amount_cents required and must not exceed
      refundable_total_cents(); payment_status becomes "refunded" once the
      order's refunds cover its total
    """
    if not admin.is_admin:
        raise ForbiddenError("Only admins can review return requests")

    # A concurrent second review fails at commit on ReturnRequest.version_id.
    rr = _get_return(return_id, order_id, lock=True)
    order = rr.order

    allowed = RETURN_TRANSITIONS.get(rr.status, frozenset())
    if status not in allowed:
        raise InvalidTransitionError(rr.status, status, allowed)

    previous = rr.status
    applied_refund = None

    if status == "approved":
        restore_stock({item.product_id: item.quantity for item in rr.items})
    elif status == "refunded":
        if refund_amount_cents is None:
            raise ValidationError("refund_amount_cents is required when status is refunded")
        refundable = refundable_total_cents(rr)
        if refund_amount_cents > refundable:
            raise ValidationError(
                "Refund amount exceeds the value of the returned items",
                refund_amount_cents=refund_amount_cents,
                refundable_cents=refundable,
            )
        applied_refund = refund_amount_cents
        rr.refund_amount_cents = applied_refund

        refunded_so_far = sum(
            other.refund_amount_cents or 0
            for other in order.return_requests
            if other.status == "refunded" and other.id != rr.id
        )
        if refunded_so_far + applied_refund >= order.total_cents:
            order.payment_status = "refunded"

    now = utcnow()
    rr.status = status
    rr.updated_at = now
    rr.history.append(ReturnHistory(
        status=status,
        changed_by_user_id=admin.id,
        comment=admin_comment,
        refund_amount_cents=applied_refund,
        created_at=now,
    ))
    commit_unit("review return request")

    current_app.logger.info(
        "Return request %s on order %s: %s -> %s by admin %s (refund_cents=%s)",
        rr.id, order.id, previous, status, admin.id, applied_refund,
    )
    return rr


# =============================================================================
# READS
# =============================================================================

def get_return_details(return_id: int, viewer: User) -> dict:
    """Visible to the buyer, artisans on the order and admins."""
    rr = _get_return(return_id)
    order = rr.order
    if not (viewer.is_admin or order.buyer_id == viewer.id or is_artisan_on_order(order, viewer)):
        raise ForbiddenError("You do not have access to this return request")

    buyer = order.buyer
    return {
        "return_request": rr.to_dict(),
        "order_id": order.id,
        "buyer": {"id": buyer.id, "name": buyer.name, "email": buyer.email} if buyer else None,
    }


def list_returns(
    viewer: User,
    *,
    status: str | None = None,
    from_date=None,
    to_date=None,
    artisan_id: int | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[ReturnRequest], dict]:
    """
    Paginated return requests, most recently updated first.

    Non-admins see only requests on their own orders. Admins see everything
    and may narrow to orders containing a given artisan's items.
    """
    query = db.session.query(ReturnRequest).join(Order, ReturnRequest.order_id == Order.id)

    if not viewer.is_admin:
        query = query.filter(Order.buyer_id == viewer.id)
    elif artisan_id is not None:
        query = query.filter(exists().where(
            OrderItem.order_id == Order.id,
            OrderItem.artisan_id == artisan_id,
        ))

    if status:
        query = query.filter(ReturnRequest.status == status)
    if from_date is not None:
        query = query.filter(ReturnRequest.updated_at >= from_date)
    if to_date is not None:
        query = query.filter(ReturnRequest.updated_at <= to_date)

    query = query.order_by(ReturnRequest.updated_at.desc(), ReturnRequest.id.desc())
    return paginate(query, page, limit)
