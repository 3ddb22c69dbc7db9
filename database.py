"""
MongoDB access helpers.

The connection is opened once from DATABASE_URL / DATABASE_NAME. Request
handlers receive the database through the `get_db` dependency so tests can
swap in an in-memory one.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from config import DATABASE_NAME, DATABASE_URL, VERIFICATION_TTL_MINUTES
from errors import NotFoundError, ServiceUnavailableError

logger = logging.getLogger(__name__)

client = MongoClient(DATABASE_URL) if DATABASE_URL else None
db = client[DATABASE_NAME] if client is not None and DATABASE_NAME else None


def get_db():
    if db is None:
        raise ServiceUnavailableError("Database not available")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes that are already UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_object_id(value: str, label: str = "Document") -> ObjectId:
    if not ObjectId.is_valid(value):
        raise NotFoundError(f"{label} not found")
    return ObjectId(value)


def create_document(database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    inserted = database[collection_name].insert_one(doc)
    return str(inserted.inserted_id)


def get_documents(
    database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    newest_first: bool = True,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    cursor = cursor.sort("created_at", DESCENDING if newest_first else ASCENDING)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def serialize_doc(doc):
    if doc is None:
        return None
    if isinstance(doc, list):
        return [serialize_doc(d) for d in doc]
    if not isinstance(doc, dict):
        return _serialize_value(doc)
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        else:
            out[k] = serialize_doc(v) if isinstance(v, (dict, list)) else _serialize_value(v)
    return out


def _serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return value


def ensure_indexes(database) -> None:
    database["user"].create_index("email", unique=True)
    database["verificationcode"].create_index(
        "created_at", expireAfterSeconds=VERIFICATION_TTL_MINUTES * 60
    )
    database["verificationcode"].create_index([("email", ASCENDING), ("code", ASCENDING)])
    database["order"].create_index([("buyer_id", ASCENDING), ("created_at", DESCENDING)])
    database["order"].create_index([("seller_id", ASCENDING), ("created_at", DESCENDING)])
    database["order"].create_index("product_id")
    database["grievance"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    logger.info("Database indexes ensured on %s", database.name)
