"""
Order lifecycle and live tracking.

Order status moves through a small state machine:

    pending  -> accepted | rejected | completed | cancelled
    accepted -> completed | rejected | cancelled

rejected, completed and cancelled are terminal. Every status write is a
compare-and-swap on the order's `version` and current `status`, so two
requests racing on the same order cannot both apply; the loser gets a
ConflictError and nothing is written on its behalf.

Live tracking is only writable while the order is accepted and the seller
has switched it on. Each party writes its own location slot.
"""
import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument

import products
from auth import Actor, load_user
from database import create_document, get_documents, to_object_id, utcnow
from errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from policies import authorize
from schemas import ORDER_STATUSES, Order, OrderSnapshot, Payment

logger = logging.getLogger(__name__)

TRANSITIONS = {
    "pending": ("accepted", "rejected", "completed", "cancelled"),
    "accepted": ("completed", "rejected", "cancelled"),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, ())


def get_order(db, order_id: str) -> Dict[str, Any]:
    order = db["order"].find_one({"_id": to_object_id(order_id, "Order")})
    if not order:
        raise NotFoundError("Order not found")
    return order


def get_order_for(db, actor: Actor, order_id: str) -> Dict[str, Any]:
    order = get_order(db, order_id)
    authorize(actor, "order", "view", order)
    return order


def compare_and_set(db, order: Dict[str, Any], changes: Dict[str, Any], expect: Optional[Dict[str, Any]] = None):
    """Apply `changes` only if the order is still the version we read."""
    filt = {"_id": order["_id"], "status": order["status"]}
    # orders written before versioning carry no version field
    filt["version"] = order["version"] if "version" in order else {"$exists": False}
    if expect:
        filt.update(expect)
    updated = db["order"].find_one_and_update(
        filt,
        {"$set": {**changes, "updated_at": utcnow()}, "$inc": {"version": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        logger.warning("Concurrent modification of order %s rejected", order["_id"])
        raise ConflictError("Order was modified by another request. Please refresh and try again.")
    return updated


def place_order(db, actor: Actor, product_id: str, message: str = "") -> Dict[str, Any]:
    product = products.get_product(db, product_id)
    if product.get("is_sold"):
        raise ValidationError("This product is already sold")
    if product.get("is_delisted"):
        raise ValidationError("This product is no longer available")
    if product.get("user_id") == actor.id:
        raise ValidationError("You cannot order your own product")

    buyer = load_user(db, actor.id)
    try:
        seller = load_user(db, product["user_id"])
    except NotFoundError:
        raise NotFoundError("Seller not found")

    snapshot = OrderSnapshot.capture(product, buyer, seller)
    order = Order.place(snapshot, message, seller.get("upi_id"))
    order_id = create_document(db, "order", order)
    logger.info("Order %s placed by %s for product %s", order_id, actor.id, product_id)
    return get_order(db, order_id)


def list_buyer_orders(db, actor: Actor) -> List[Dict[str, Any]]:
    return get_documents(db, "order", {"buyer_id": actor.id})


def list_seller_orders(db, actor: Actor) -> List[Dict[str, Any]]:
    return get_documents(db, "order", {"seller_id": actor.id})


def update_status(db, actor: Actor, order_id: str, status: str) -> Dict[str, Any]:
    if status not in ORDER_STATUSES:
        raise ValidationError("Invalid order status")
    order = get_order(db, order_id)
    authorize(actor, "order", "update_status", order)
    if not can_transition(order["status"], status):
        raise InvalidStateError(f"Cannot change order status from {order['status']} to {status}")

    changes: Dict[str, Any] = {"status": status}
    if status == "completed" and not order.get("payment"):
        # orders stored before payments existed
        changes["payment"] = Payment.new(order["product_price"]).model_dump()
    updated = compare_and_set(db, order, changes)

    if status == "completed":
        products.mark_sold(db, ObjectId(order["product_id"]))
    logger.info("Order %s moved %s -> %s by seller %s", order_id, order["status"], status, actor.id)
    return updated


def cancel_order(db, actor: Actor, order_id: str) -> Dict[str, Any]:
    order = get_order(db, order_id)
    authorize(actor, "order", "cancel", order)
    if order["status"] != "pending":
        raise InvalidStateError("Only pending orders can be cancelled")
    updated = compare_and_set(db, order, {"status": "cancelled"})
    logger.info("Order %s cancelled by buyer %s", order_id, actor.id)
    return updated


def enable_tracking(db, actor: Actor, order_id: str, coordinates: Optional[Dict[str, float]] = None):
    order = get_order(db, order_id)
    authorize(actor, "order", "enable_tracking", order)
    if order["status"] != "accepted":
        raise InvalidStateError("Tracking can only be enabled for accepted orders")
    pickup = coordinates or order.get("pickup_coordinates")
    if not pickup:
        raise ValidationError("Pickup coordinates are required to enable tracking")
    updated = compare_and_set(
        db, order, {"live_tracking.enabled": True, "pickup_coordinates": {"lat": pickup["lat"], "lng": pickup["lng"]}}
    )
    logger.info("Live tracking enabled on order %s", order_id)
    return updated


def update_location(db, actor: Actor, order_id: str, lat: float, lng: float) -> Dict[str, Any]:
    order = get_order(db, order_id)
    authorize(actor, "order", "update_location", order)
    tracking = order.get("live_tracking") or {}
    if order["status"] != "accepted" or not tracking.get("enabled"):
        raise InvalidStateError("Live tracking is not active for this order")

    slot = "buyer_location" if order["buyer_id"] == actor.id else "seller_location"
    location = {"lat": lat, "lng": lng, "last_updated": utcnow()}
    result = db["order"].update_one(
        {"_id": order["_id"], "status": "accepted", "live_tracking.enabled": True},
        {"$set": {f"live_tracking.{slot}": location}},
    )
    if result.matched_count == 0:
        raise ConflictError("Order changed while updating location. Please refresh and try again.")
    return {"role": slot.split("_")[0], **location}


def get_tracking(db, actor: Actor, order_id: str) -> Dict[str, Any]:
    order = get_order(db, order_id)
    authorize(actor, "order", "view_tracking", order)
    tracking = order.get("live_tracking") or {}
    return {
        "order_id": str(order["_id"]),
        "order_status": order["status"],
        "tracking_enabled": bool(tracking.get("enabled")),
        "pickup_location": order.get("pickup_location"),
        "pickup_coordinates": order.get("pickup_coordinates"),
        "buyer_location": tracking.get("buyer_location"),
        "seller_location": tracking.get("seller_location"),
    }
