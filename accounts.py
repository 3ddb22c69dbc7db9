"""
Signup with emailed verification codes, login and profile updates.
"""
import logging
from typing import Any, Dict, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import mailer
from auth import Actor, create_token, hash_password, load_user, verify_password
from config import ALLOWED_EMAIL_DOMAIN, VERIFICATION_TTL_MINUTES
from database import as_utc, create_document, utcnow
from errors import UnauthorizedError, ValidationError
from schemas import User, VerificationCode, make_initials

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    email = email.strip().lower()
    if not email.endswith("@" + ALLOWED_EMAIL_DOMAIN):
        raise ValidationError(f"Please provide a valid @{ALLOWED_EMAIL_DOMAIN} email address")
    return email


def start_signup(db, name: str, email: str, password: str, phone: str, location: str) -> Dict[str, Any]:
    email = normalize_email(email)
    if db["user"].find_one({"email": email}):
        raise ValidationError("User with this email already exists!")

    code = mailer.generate_verification_code()
    db["verificationcode"].delete_many({"email": email})
    pending = VerificationCode(
        email=email,
        code=code,
        user_data={
            "name": name.strip(),
            "password_hash": hash_password(password),
            "phone": phone.strip(),
            "location": location.strip(),
        },
    )
    db["verificationcode"].insert_one(pending.model_dump())

    sent = mailer.send_verification_email(email, code)
    result = {"test_mode": sent["test_mode"]}
    if sent["test_mode"]:
        result["code"] = code
    return result


def verify_signup(db, email: str, code: str) -> Dict[str, Any]:
    email = normalize_email(email)
    record = db["verificationcode"].find_one({"email": email, "code": code.strip()})
    if not record:
        raise ValidationError("Invalid or expired verification code")
    pending = VerificationCode(**{**record, "created_at": as_utc(record["created_at"])})
    if pending.is_expired(VERIFICATION_TTL_MINUTES):
        db["verificationcode"].delete_one({"_id": record["_id"]})
        raise ValidationError("Invalid or expired verification code")

    data = pending.user_data
    user = User(
        name=data["name"],
        email=email,
        password_hash=data["password_hash"],
        phone=data["phone"],
        location=data["location"],
        initials=make_initials(data["name"]),
    )
    if db["user"].find_one({"email": email}):
        raise ValidationError("User with this email already exists!")
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise ValidationError("User with this email already exists!")
    db["verificationcode"].delete_many({"email": email})
    logger.info("Account created for %s", email)
    return load_user(db, user_id)


def login(db, email: str, password: str) -> Tuple[str, Dict[str, Any]]:
    user = db["user"].find_one({"email": email.strip().lower()})
    if not user or not verify_password(password, user.get("password_hash")):
        raise UnauthorizedError("Invalid email or password")
    return create_token(str(user["_id"]), user["email"]), user


def update_profile(
    db,
    actor: Actor,
    name: Optional[str] = None,
    phone: Optional[str] = None,
    location: Optional[str] = None,
    upi_id: Optional[str] = None,
) -> Dict[str, Any]:
    user = load_user(db, actor.id)
    update: Dict[str, Any] = {}
    if name:
        update["name"] = name.strip()
        update["initials"] = make_initials(name)
    if phone is not None:
        update["phone"] = phone
    if location is not None:
        update["location"] = location
    if upi_id is not None:
        # empty string clears the payout id
        update["upi_id"] = upi_id.strip() or None
    if not update:
        return user
    update["updated_at"] = utcnow()
    return db["user"].find_one_and_update(
        {"_id": user["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER
    )
