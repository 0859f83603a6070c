from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Product(db.Model):
    """
    Catalog listing owned by an artisan.

    Soft delete only: is_active=False hides the product from the catalog but
    keeps it referenceable from historical orders.

    stock is the sellable quantity. It is decremented when an order is placed
    and restored on cancellation or approved return; it never goes negative.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("name", "artisan_id", name="uq_products_name_artisan"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.CheckConstraint("price_cents > 0", name="ck_products_price_positive"),
        db.Index("ix_products_active_category", "is_active", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    artisan_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    images = db.Column(db.JSON, nullable=False, default=list)
    category = db.Column(db.String(64), nullable=False, index=True)
    stock = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    artisan = db.relationship("User", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "artisan_id": self.artisan_id,
            "artisan": {"id": self.artisan.id, "name": self.artisan.name} if self.artisan else None,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "images": list(self.images or []),
            "category": self.category,
            "stock": self.stock,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
