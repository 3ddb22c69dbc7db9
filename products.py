import logging
import re
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument

from auth import Actor, load_user
from database import create_document, get_documents, to_object_id, utcnow
from errors import InvalidStateError, NotFoundError
from policies import authorize
from schemas import Product

logger = logging.getLogger(__name__)


def get_product(db, product_id: str) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": to_object_id(product_id, "Product")})
    if not product:
        raise NotFoundError("Product not found")
    return product


def list_products(
    db,
    category: Optional[str] = None,
    condition: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
) -> List[Dict[str, Any]]:
    filt: Dict[str, Any] = {"is_sold": False, "is_delisted": {"$ne": True}}
    if category:
        filt["category"] = category
    if condition:
        filt["condition"] = condition
    if search:
        pattern = re.escape(search)
        filt["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
            {"category": {"$regex": pattern, "$options": "i"}},
        ]
    if min_price is not None or max_price is not None:
        price: Dict[str, float] = {}
        if min_price is not None:
            price["$gte"] = min_price
        if max_price is not None:
            price["$lte"] = max_price
        filt["price"] = price
    return get_documents(db, "product", filt)


def list_owner_products(db, actor: Actor) -> List[Dict[str, Any]]:
    return get_documents(db, "product", {"user_id": actor.id})


def create_product(db, actor: Actor, data: Dict[str, Any]) -> Dict[str, Any]:
    owner = load_user(db, actor.id)
    product = Product(
        **data,
        seller=owner["name"],
        user_id=actor.id,
        seller_email=owner["email"],
        rating=0,
        is_sold=False,
        is_delisted=False,
    )
    product_id = create_document(db, "product", product)
    logger.info("Product %s listed by %s", product_id, actor.id)
    return get_product(db, product_id)


def update_product(db, actor: Actor, product_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    product = get_product(db, product_id)
    authorize(actor, "product", "edit", product)
    if not changes:
        return product
    merged = {k: v for k, v in product.items() if k != "_id"}
    merged.update(changes)
    validated = Product(**merged).model_dump()
    update = {k: validated[k] for k in changes}
    update["updated_at"] = utcnow()
    return db["product"].find_one_and_update(
        {"_id": product["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER
    )


def delete_product(db, actor: Actor, product_id: str) -> None:
    product = get_product(db, product_id)
    authorize(actor, "product", "delete", product)
    db["product"].delete_one({"_id": product["_id"]})
    logger.info("Product %s deleted by owner %s", product_id, actor.id)


def mark_sold(db, product_oid) -> bool:
    """Flip is_sold once. Returns False when it was already set."""
    result = db["product"].update_one(
        {"_id": product_oid, "is_sold": False},
        {"$set": {"is_sold": True, "updated_at": utcnow()}},
    )
    return result.modified_count == 1


def owner_mark_sold(db, actor: Actor, product_id: str) -> Dict[str, Any]:
    product = get_product(db, product_id)
    authorize(actor, "product", "mark_sold", product)
    if not mark_sold(db, product["_id"]):
        raise InvalidStateError("Product is already marked as sold")
    logger.info("Product %s marked sold by owner", product_id)
    return get_product(db, product_id)


def delist_product(db, actor: Actor, product_id: str) -> Dict[str, Any]:
    authorize(actor, "product", "delist")
    product = get_product(db, product_id)
    db["product"].update_one(
        {"_id": product["_id"]}, {"$set": {"is_delisted": True, "updated_at": utcnow()}}
    )
    logger.info("Product %s delisted by admin %s", product_id, actor.id)
    return get_product(db, product_id)
