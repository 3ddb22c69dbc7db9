"""
Peer-to-peer payment settlement for completed orders.

The payment sub-record has its own status axis:

    pending | failed | pending_approval --(buyer uploads UPI screenshot)--> pending_approval
    pending | failed | pending_approval --(buyer pays cash)---------------> completed
    pending_approval --(seller approves)----------> completed
    pending_approval --(seller rejects)-----------> failed

A buyer may resubmit or switch to cash until the payment is completed;
a resubmitted screenshot replaces the earlier one. Nothing on this axis moves
unless the order itself is completed; every write re-checks both statuses
at the storage layer.
"""
import logging
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

from fastapi import UploadFile

import storage
from auth import Actor, load_user
from database import utcnow
from errors import ConfigurationError, InvalidStateError, NotFoundError, ValidationError
from orders import compare_and_set, get_order
from policies import authorize

logger = logging.getLogger(__name__)


def _payment(order: Dict[str, Any]) -> Dict[str, Any]:
    return order.get("payment") or {"status": "pending", "amount": order.get("product_price")}


def _require_payable(order: Dict[str, Any]) -> Dict[str, Any]:
    if order["status"] != "completed":
        raise InvalidStateError("Payment can only be made after goods are delivered")
    payment = _payment(order)
    if payment["status"] == "completed":
        raise InvalidStateError("Payment already completed")
    return payment


def _seller_upi_id(db, order: Dict[str, Any]) -> Tuple[str, str]:
    try:
        seller = load_user(db, order["seller_id"])
    except NotFoundError:
        seller = None
    if not seller or not seller.get("upi_id"):
        raise ConfigurationError("Seller UPI ID not configured. Please contact seller.")
    return seller["upi_id"], seller["name"]


def build_upi_uri(upi_id: str, payee_name: str, amount: float, note: str) -> str:
    query = urlencode({"pa": upi_id, "pn": payee_name, "am": f"{amount:.2f}", "cu": "INR", "tn": note})
    return f"upi://pay?{query}"


def initiate_payment(db, actor: Actor, order_id: str) -> Dict[str, Any]:
    order = get_order(db, order_id)
    authorize(actor, "payment", "initiate", order)
    if order["status"] != "completed":
        raise InvalidStateError("Payment can only be made after goods are delivered")
    if _payment(order)["status"] == "completed":
        raise InvalidStateError("Payment already completed")
    upi_id, seller_name = _seller_upi_id(db, order)
    amount = _payment(order).get("amount") or order["product_price"]
    note = f"Payment for {order['product_title']}"
    return {
        "order_id": str(order["_id"]),
        "amount": amount,
        "seller_upi_id": upi_id,
        "seller_name": seller_name,
        "product_title": order["product_title"],
        "transaction_note": note,
        "upi_uri": build_upi_uri(upi_id, seller_name, amount, note),
    }


def submit_screenshot(
    db, actor: Actor, order_id: str, screenshot: Optional[UploadFile], transaction_id: Optional[str] = None
) -> Dict[str, Any]:
    if screenshot is None or not screenshot.filename:
        raise ValidationError("Payment screenshot is required")
    order = get_order(db, order_id)
    authorize(actor, "payment", "submit", order)
    payment = _require_payable(order)
    upi_id, _ = _seller_upi_id(db, order)

    path = storage.save_image(screenshot, "payment")
    changes = {
        "payment.status": "pending_approval",
        "payment.payment_screenshot": path,
        "payment.payment_method": "upi",
        "payment.upi_id": upi_id,
        "payment.transaction_id": transaction_id or None,
    }
    try:
        updated = compare_and_set(db, order, changes, expect={"payment.status": payment["status"]})
    except Exception:
        storage.discard(path)
        raise
    if payment.get("payment_screenshot"):
        storage.discard(payment["payment_screenshot"])
    logger.info("Payment screenshot submitted for order %s", order_id)
    return updated


def mark_cash(db, actor: Actor, order_id: str) -> Dict[str, Any]:
    order = get_order(db, order_id)
    authorize(actor, "payment", "pay_cash", order)
    payment = _require_payable(order)
    changes = {
        "payment.status": "completed",
        "payment.payment_method": "cash",
        "payment.paid_at": utcnow(),
    }
    updated = compare_and_set(db, order, changes, expect={"payment.status": payment["status"]})
    logger.info("Cash payment recorded for order %s", order_id)
    return updated


def approve_payment(db, actor: Actor, order_id: str, approved: bool) -> Dict[str, Any]:
    order = get_order(db, order_id)
    authorize(actor, "payment", "approve", order)
    if order["status"] != "completed" or _payment(order)["status"] != "pending_approval":
        raise InvalidStateError("Payment is not pending approval")
    if approved:
        changes = {"payment.status": "completed", "payment.paid_at": utcnow()}
    else:
        changes = {"payment.status": "failed", "payment.payment_screenshot": None}
    updated = compare_and_set(db, order, changes, expect={"payment.status": "pending_approval"})
    logger.info("Payment for order %s %s by seller", order_id, "approved" if approved else "rejected")
    return updated


def get_payment_status(db, actor: Actor, order_id: str) -> Dict[str, Any]:
    order = get_order(db, order_id)
    authorize(actor, "payment", "view", order)
    payment = _payment(order)
    return {
        "order_id": str(order["_id"]),
        "payment_status": payment.get("status"),
        "amount": payment.get("amount"),
        "transaction_id": payment.get("transaction_id"),
        "paid_at": payment.get("paid_at"),
        "payment_method": payment.get("payment_method"),
    }


def get_screenshot_file(db, actor: Actor, order_id: str) -> str:
    order = get_order(db, order_id)
    authorize(actor, "payment", "view", order)
    screenshot = _payment(order).get("payment_screenshot")
    if not screenshot:
        raise NotFoundError("No payment screenshot on this order")
    return storage.resolve_upload(screenshot)
