from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
PAYMENT_METHODS = ("credit_card", "paypal", "cash_on_delivery")
PAYMENT_STATUSES = ("pending", "completed", "failed", "refunded")

RETURN_STATUSES = ("pending_review", "approved", "rejected", "refunded")
REFUND_METHODS = ("original_payment", "store_credit")


class Order(db.Model):
    """
    Checkout document.

    LIFECYCLE:
        pending -> processing -> shipped -> delivered
        pending | processing -> cancelled

    total_cents is frozen at creation from the line item price snapshots.
    history is append-only: one OrderHistory row per status change.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_buyer_created", "buyer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    total_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    # Shipping address
    shipping_street = db.Column(db.String(255), nullable=False)
    shipping_city = db.Column(db.String(128), nullable=False)
    shipping_postal_code = db.Column(db.String(32), nullable=True)
    shipping_country = db.Column(db.String(128), nullable=False)

    payment_method = db.Column(db.String(32), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default="pending")

    tracking_number = db.Column(db.String(64), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)
    refund_requested = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    buyer = db.relationship("User", backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    history = db.relationship(
        "OrderHistory",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderHistory.id",
    )
    return_requests = db.relationship(
        "ReturnRequest",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="ReturnRequest.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def shipping_address(self) -> dict:
        return {
            "street": self.shipping_street,
            "city": self.shipping_city,
            "postal_code": self.shipping_postal_code,
            "country": self.shipping_country,
        }

    def to_dict(self, items: list | None = None) -> dict:
        items = self.items if items is None else items
        return {
            "id": self.id,
            "buyer_id": self.buyer_id,
            "buyer": {"id": self.buyer.id, "name": self.buyer.name, "email": self.buyer.email} if self.buyer else None,
            "items": [item.to_dict() for item in items],
            "total_cents": self.total_cents,
            "status": self.status,
            "shipping_address": self.shipping_address(),
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "tracking_number": self.tracking_number,
            "cancellation_reason": self.cancellation_reason,
            "refund_requested": self.refund_requested,
            "history": [h.to_dict() for h in self.history],
            "return_requests": [rr.to_dict() for rr in self.return_requests],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderItem(db.Model):
    """Order line with the price and artisan captured at purchase time."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        db.Index("ix_order_items_artisan", "artisan_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    artisan_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    price_at_purchase_cents = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product")
    artisan = db.relationship("User")

    @property
    def line_total_cents(self) -> int:
        return self.price_at_purchase_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product": {
                "id": self.product.id,
                "name": self.product.name,
                "images": list(self.product.images or []),
            } if self.product else None,
            "artisan_id": self.artisan_id,
            "quantity": self.quantity,
            "price_at_purchase_cents": self.price_at_purchase_cents,
            "line_total_cents": self.line_total_cents,
        }


class OrderHistory(db.Model):
    """
    Order status audit trail.

    IMMUTABLE: Never update or delete. Append-only.
    """
    __tablename__ = "order_history"
    __table_args__ = (
        db.Index("ix_order_history_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False)
    changed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    # e.g. {"cancellation_reason": "..."} or {"tracking_number": "..."}
    details = db.Column("metadata", db.JSON, nullable=False, default=dict)

    changed_by = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "changed_by": self.changed_by_user_id,
            "date": to_utc_z(self.created_at),
            "metadata": dict(self.details or {}),
        }


class ReturnRequest(db.Model):
    """
    Buyer return request embedded in an order.

    LIFECYCLE:
        pending_review -> approved -> refunded
        pending_review -> rejected

    rejected and refunded are terminal. Stock for the returned quantities is
    restored exactly once, on approval.
    """
    __tablename__ = "return_requests"
    __table_args__ = (
        db.Index("ix_return_requests_status_updated", "status", "updated_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending_review", index=True)

    reason = db.Column(db.Text, nullable=False)
    refund_method = db.Column(db.String(32), nullable=True)
    evidence = db.Column(db.JSON, nullable=False, default=list)

    refund_amount_cents = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    requested_by = db.relationship("User")
    items = db.relationship(
        "ReturnItem",
        backref="return_request",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="ReturnItem.id",
    )
    history = db.relationship(
        "ReturnHistory",
        backref="return_request",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="ReturnHistory.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "requested_by": self.requested_by_user_id,
            "status": self.status,
            "metadata": {
                "reason": self.reason,
                "items": [item.to_dict() for item in self.items],
                "evidence": list(self.evidence or []),
                "refund_method": self.refund_method,
            },
            "refund_amount_cents": self.refund_amount_cents,
            "history": [h.to_dict() for h in self.history],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ReturnItem(db.Model):
    """Product and quantity being returned."""
    __tablename__ = "return_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_return_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_request_id = db.Column(db.Integer, db.ForeignKey("return_requests.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
        }


class ReturnHistory(db.Model):
    """
    Return review audit trail.

    IMMUTABLE: Never update or delete. Append-only.
    """
    __tablename__ = "return_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_request_id = db.Column(db.Integer, db.ForeignKey("return_requests.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False)
    changed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    comment = db.Column(db.Text, nullable=True)
    refund_amount_cents = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "changed_by": self.changed_by_user_id,
            "comment": self.comment,
            "refund_amount_cents": self.refund_amount_cents,
            "date": to_utc_z(self.created_at),
        }
