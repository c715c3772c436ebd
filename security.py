import os
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from database import Store, get_store, oid, serialize_doc
from errors import Forbidden, Unauthorized
from schemas import Role

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", 7))
security = HTTPBearer()


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, password_hash: str) -> bool:
    # federated accounts carry no credential
    if not password_hash:
        return False
    return bcrypt.checkpw(password.encode(), password_hash.encode())


def create_token(payload: dict) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=JWT_EXPIRE_DAYS)
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")


def token_for(user: dict) -> str:
    return create_token({"sub": str(user["_id"]), "email": user["email"], "role": user.get("role", Role.USER.value)})


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security),
                           store: Store = Depends(get_store)):
    payload = decode_token(credentials.credentials)
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized("Invalid token payload")
    user = store.db["user"].find_one({"_id": oid(user_id)})
    if not user:
        raise Unauthorized("User not found")
    user = serialize_doc(user)
    user.pop("password_hash", None)
    return user


async def require_admin(user=Depends(get_current_user)):
    if user.get("role") != Role.ADMIN.value:
        raise Forbidden("Admin only")
    return user
