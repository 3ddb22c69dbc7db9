import hashlib
import hmac
from datetime import timedelta
from typing import NamedTuple, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import JWT_ALGO, JWT_EXPIRE_DAYS, JWT_SECRET
from database import get_db, to_object_id, utcnow
from errors import NotFoundError, UnauthorizedError

security = HTTPBearer(auto_error=False)

PUBLIC_USER_FIELDS = ("name", "email", "phone", "location", "upi_id", "initials", "is_admin")


class Actor(NamedTuple):
    """The authenticated caller of one request"""
    id: str
    email: str
    name: str
    is_admin: bool = False


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode()).hexdigest()


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    return hmac.compare_digest(hash_password(password), password_hash)


def create_token(user_id: str, email: str) -> str:
    exp = utcnow() + timedelta(days=JWT_EXPIRE_DAYS)
    return jwt.encode({"userId": user_id, "email": email, "exp": exp}, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid token")


def public_user(user: dict) -> dict:
    data = {k: user.get(k) for k in PUBLIC_USER_FIELDS}
    data["id"] = str(user["_id"])
    data["is_admin"] = bool(data["is_admin"])
    return data


def load_user(db, user_id: str) -> dict:
    user = db["user"].find_one({"_id": to_object_id(user_id, "User")})
    if not user:
        raise NotFoundError("User not found")
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db=Depends(get_db),
) -> Actor:
    if credentials is None:
        raise UnauthorizedError("Access token required")
    payload = decode_token(credentials.credentials)
    user_id = payload.get("userId")
    if not user_id:
        raise UnauthorizedError("Invalid token payload")
    try:
        user = load_user(db, user_id)
    except NotFoundError:
        raise UnauthorizedError("User not found")
    return Actor(
        id=str(user["_id"]),
        email=user["email"],
        name=user["name"],
        is_admin=bool(user.get("is_admin")),
    )
