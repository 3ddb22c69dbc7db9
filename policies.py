"""
Capability checks.

authorize(actor, resource, action) is the single place that decides whether
a caller may act on an order, product or grievance. Callers pass the stored
document; the function raises ForbiddenError or returns None.
"""
from typing import Any, Callable, Dict, Optional, Tuple

from auth import Actor
from errors import ForbiddenError


def _is_buyer(actor: Actor, doc: Dict[str, Any]) -> bool:
    return doc.get("buyer_id") == actor.id


def _is_seller(actor: Actor, doc: Dict[str, Any]) -> bool:
    return doc.get("seller_id") == actor.id


def _is_party(actor: Actor, doc: Dict[str, Any]) -> bool:
    return _is_buyer(actor, doc) or _is_seller(actor, doc)


def _is_owner(actor: Actor, doc: Dict[str, Any]) -> bool:
    return doc.get("user_id") == actor.id


def _is_admin(actor: Actor, doc: Dict[str, Any]) -> bool:
    return actor.is_admin


def _is_not_admin(actor: Actor, doc: Dict[str, Any]) -> bool:
    return not actor.is_admin


def _is_owner_or_admin(actor: Actor, doc: Dict[str, Any]) -> bool:
    return actor.is_admin or _is_owner(actor, doc)


Rule = Tuple[Callable[[Actor, Dict[str, Any]], bool], str]

RULES: Dict[Tuple[str, str], Rule] = {
    ("order", "update_status"): (_is_seller, "Only the seller can update order status"),
    ("order", "cancel"): (_is_buyer, "You can only cancel your own orders"),
    ("order", "view"): (_is_party, "You are not a party to this order"),
    ("order", "enable_tracking"): (_is_seller, "Only the seller can enable tracking"),
    ("order", "update_location"): (_is_party, "Unauthorized access"),
    ("order", "view_tracking"): (_is_party, "Unauthorized access"),
    ("payment", "initiate"): (_is_buyer, "Only the buyer can initiate payment"),
    ("payment", "submit"): (_is_buyer, "Only the buyer can complete payment"),
    ("payment", "pay_cash"): (_is_buyer, "Only the buyer can mark cash payment"),
    ("payment", "approve"): (_is_seller, "Only the seller can approve payment"),
    ("payment", "view"): (_is_party, "Unauthorized access"),
    ("product", "edit"): (_is_owner, "You can only edit your own products"),
    ("product", "delete"): (_is_owner, "You can only delete your own products"),
    ("product", "mark_sold"): (_is_owner, "You can only mark your own products as sold"),
    ("product", "delist"): (_is_admin, "Access denied. Admin only."),
    ("grievance", "submit"): (
        _is_not_admin,
        "Admins cannot submit grievances. Please use your admin account to manage user grievances only.",
    ),
    ("grievance", "view"): (_is_owner_or_admin, "Access denied"),
    ("grievance", "list_all"): (_is_admin, "Access denied. Admin only."),
    ("grievance", "update"): (_is_admin, "Access denied. Admin only."),
    ("grievance", "delete"): (_is_admin, "Access denied. Admin only."),
}


def authorize(actor: Actor, resource: str, action: str, doc: Optional[Dict[str, Any]] = None) -> None:
    rule = RULES.get((resource, action))
    if rule is None:
        raise ForbiddenError(f"Action '{action}' is not permitted on {resource}")
    check, message = rule
    if not check(actor, doc or {}):
        raise ForbiddenError(message)
