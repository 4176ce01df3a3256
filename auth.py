from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

import config
from database import collection, now, to_object_id
from errors import Forbidden, Unauthorized

JWT_ALGO = "HS256"
security = HTTPBearer(auto_error=False)
password_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return password_ctx.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        # OAuth accounts have no password
        return False
    return password_ctx.verify(password, hashed)


def create_token(user: dict) -> str:
    issued = datetime.now(timezone.utc)
    payload = {
        "sub": str(user["_id"]),
        "email": user.get("email"),
        "role": user.get("role", "user"),
        "iat": issued,
        "exp": issued + timedelta(minutes=config.JWT_EXPIRES_MIN),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Session expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid session")


def session_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials is not None:
        return credentials.credentials
    return request.cookies.get(config.SESSION_COOKIE_NAME)


async def get_current_user(request: Request,
                           credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> dict:
    token = session_token(request, credentials)
    if not token:
        raise Unauthorized()
    payload = decode_token(token)
    uid = to_object_id(payload.get("sub"))
    if uid is None:
        raise Unauthorized("Invalid session")
    user = collection("user").find_one({"_id": uid})
    if not user:
        raise Unauthorized("User not found")
    collection("user").update_one({"_id": uid}, {"$set": {"last_active": now()}})
    return user


def require_role(role: str):
    """Build a dependency that only lets users with `role` through."""

    async def guard(user: dict = Depends(get_current_user)) -> dict:
        if user.get("role", "user") != role:
            raise Forbidden()
        return user

    return guard


require_admin = require_role("admin")
