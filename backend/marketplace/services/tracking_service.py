# Overview: Synthetic shipment tracking for shipped and delivered orders.

from __future__ import annotations

from ..errors import ValidationError
from ..models import User
from ..time_utils import add_days, to_utc_z, utcnow
from .order_service import get_order, visible_items


CARRIER = "FedEx"
ESTIMATED_DELIVERY_DAYS = 14

TRACKABLE_STATUSES = ("shipped", "delivered")

# (days after order creation, status, location, description)
_TRACKING_EVENTS = (
    (0, "confirmed", "Artisan shop", "The artisan received the order"),
    (2, "preparing", "Artisan workshop", "The artisan is preparing the order"),
    (4, "in_transit", "Logistics center", "The order was handed to the carrier"),
)
_DELIVERED_EVENT = (6, "delivered", "Buyer address", "The order was delivered")


def build_tracking(order) -> dict:
    """
    Simulated carrier data.

    Events are anchored on the order's creation date; the delivered event is
    only present once the order is delivered.
    """
    events = list(_TRACKING_EVENTS)
    if order.status == "delivered":
        events.append(_DELIVERED_EVENT)

    return {
        "order_id": order.id,
        "status": order.status,
        "tracking_number": order.tracking_number,
        "carrier": CARRIER,
        "estimated_delivery": to_utc_z(add_days(utcnow(), ESTIMATED_DELIVERY_DAYS)),
        "history": [
            {
                "date": to_utc_z(add_days(order.created_at, days)),
                "status": status,
                "location": location,
                "description": description,
            }
            for days, status, location, description in events
        ],
    }


def get_tracking(order_id: int, viewer: User) -> dict:
    """Tracking for the buyer, an artisan on the order, or an admin."""
    order = get_order(order_id)
    visible_items(order, viewer)

    if order.status not in TRACKABLE_STATUSES or not order.tracking_number:
        raise ValidationError(
            "Tracking is only available for shipped or delivered orders with a tracking number",
            current_status=order.status,
        )
    return build_tracking(order)
