import logging
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument

from auth import Actor, load_user
from database import create_document, get_documents, to_object_id, utcnow
from errors import NotFoundError
from policies import authorize
from schemas import Grievance

logger = logging.getLogger(__name__)

# Admins may set any status in any order; reaching one of these stamps resolved_at
RESOLVING_STATUSES = ("Resolved", "Closed")


def get_grievance(db, grievance_id: str) -> Dict[str, Any]:
    grievance = db["grievance"].find_one({"_id": to_object_id(grievance_id, "Grievance")})
    if not grievance:
        raise NotFoundError("Grievance not found")
    return grievance


def submit_grievance(
    db,
    actor: Actor,
    subject: str,
    category: str,
    description: str,
    priority: Optional[str] = None,
) -> Dict[str, Any]:
    authorize(actor, "grievance", "submit")
    user = load_user(db, actor.id)
    grievance = Grievance(
        user_id=actor.id,
        user_name=user["name"],
        user_email=user["email"],
        subject=subject,
        category=category,
        description=description,
        priority=priority or "Medium",
    )
    grievance_id = create_document(db, "grievance", grievance)
    logger.info("Grievance %s submitted by %s", grievance_id, actor.id)
    return get_grievance(db, grievance_id)


def list_my_grievances(db, actor: Actor) -> List[Dict[str, Any]]:
    return get_documents(db, "grievance", {"user_id": actor.id})


def list_all_grievances(db, actor: Actor) -> List[Dict[str, Any]]:
    authorize(actor, "grievance", "list_all")
    return get_documents(db, "grievance")


def update_grievance(
    db,
    actor: Actor,
    grievance_id: str,
    status: Optional[str] = None,
    admin_notes: Optional[str] = None,
    priority: Optional[str] = None,
) -> Dict[str, Any]:
    authorize(actor, "grievance", "update")
    update: Dict[str, Any] = {"updated_at": utcnow()}
    if status:
        update["status"] = status
        if status in RESOLVING_STATUSES:
            update["resolved_at"] = utcnow()
    if admin_notes is not None:
        update["admin_notes"] = admin_notes
    if priority:
        update["priority"] = priority

    grievance = db["grievance"].find_one_and_update(
        {"_id": to_object_id(grievance_id, "Grievance")},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if not grievance:
        raise NotFoundError("Grievance not found")
    logger.info("Grievance %s updated by admin %s (status=%s)", grievance_id, actor.id, grievance["status"])
    return grievance


def delete_grievance(db, actor: Actor, grievance_id: str) -> None:
    authorize(actor, "grievance", "delete")
    result = db["grievance"].delete_one({"_id": to_object_id(grievance_id, "Grievance")})
    if result.deleted_count == 0:
        raise NotFoundError("Grievance not found")
    logger.info("Grievance %s deleted by admin %s", grievance_id, actor.id)


def get_grievance_for(db, actor: Actor, grievance_id: str) -> Dict[str, Any]:
    grievance = get_grievance(db, grievance_id)
    authorize(actor, "grievance", "view", grievance)
    return grievance
