"""
Accounts: registration, login, federated login and password reset.

A reset goes request -> verify -> reset. Request issues a six digit
code (at most one unused code per email every OTP_TTL_MINUTES), verify
marks a fresh code used, and reset requires a used code, then purges
all codes for the email.
"""
import logging
import os
import secrets
from datetime import timedelta

from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from database import Store, oid, serialize_doc, utcnow
from errors import Conflict, InvalidRequest, NotFound, Unauthorized
from schemas import OtpVerification, Role, User, Wallet
from security import hash_password, token_for, verify_password

log = logging.getLogger(__name__)

OTP_TTL_MINUTES = int(os.getenv("OTP_TTL_MINUTES", 5))


def _public(user: dict) -> dict:
    user = serialize_doc(user)
    user.pop("password_hash", None)
    return user


def _create_account(store: Store, name: str, email: str, password_hash: str) -> dict:
    user = User(name=name, email=email, password_hash=password_hash, role=Role.USER)
    try:
        with store.transaction() as session:
            user_id = store.create_document("user", user, session=session)
            store.create_document("wallet", Wallet(user_id=user_id, balance=0, last_updated=utcnow()), session=session)
    except DuplicateKeyError:
        # lost a race with another request for the same email
        raise Conflict("Email already exists")
    log.info("Account %s created for %s", user_id, email)
    return store.db["user"].find_one({"_id": oid(user_id)})


def register(store: Store, name: str, email: str, password: str) -> dict:
    if store.db["user"].find_one({"email": email}):
        raise Conflict("Email already exists")
    return _public(_create_account(store, name, email, hash_password(password)))


def login(store: Store, email: str, password: str) -> dict:
    user = store.db["user"].find_one({"email": email})
    if not user or not verify_password(password, user.get("password_hash", "")):
        log.warning("Failed login for %s", email)
        raise Unauthorized("Invalid credentials")
    wallet = store.db["wallet"].find_one({"user_id": str(user["_id"])})
    return {
        "access_token": token_for(user),
        "user": {
            "id": str(user["_id"]),
            "email": user["email"],
            "name": user["name"],
            "role": user.get("role", Role.USER.value),
            "wallet": wallet["balance"] if wallet else None,
        },
    }


def federated_login(store: Store, email: str, name: str) -> dict:
    """Sign in with an identity provider profile, creating the account on first use."""
    user = store.db["user"].find_one({"email": email})
    if not user:
        try:
            user = _create_account(store, name, email, "")
        except Conflict:
            user = store.db["user"].find_one({"email": email})
    return {"user": _public(user), "access_token": token_for(user)}


def profile(store: Store, user_id: str) -> dict:
    user = store.db["user"].find_one({"_id": oid(user_id)})
    if not user:
        raise NotFound("User not found")
    wallet = store.db["wallet"].find_one({"user_id": user_id})
    out = _public(user)
    out["wallet"] = wallet["balance"] if wallet else None
    return out


# ----------------------- Password reset -----------------------
def request_password_reset(store: Store, email: str) -> str:
    """Issue a reset code for ``email`` and return it for mailing."""
    user = store.db["user"].find_one({"email": email})
    if not user:
        raise InvalidRequest("Email does not exist")
    if not user.get("password_hash"):
        raise InvalidRequest("This account signs in with Google")

    now = utcnow()
    recent = store.db["otpverification"].find_one(
        {"email": email, "used": False, "created_at": {"$gt": now - timedelta(minutes=OTP_TTL_MINUTES)}},
        sort=[("created_at", DESCENDING)],
    )
    if recent:
        log.warning("Reset code for %s requested again too soon", email)
        raise InvalidRequest(f"A new code can only be requested every {OTP_TTL_MINUTES} minutes")

    code = str(100000 + secrets.randbelow(900000))
    store.create_document("otpverification", OtpVerification(email=email, otp=code, created_at=now))
    log.info("Reset code issued for %s", email)
    return code


def verify_reset_otp(store: Store, email: str, otp: str) -> dict:
    cutoff = utcnow() - timedelta(minutes=OTP_TTL_MINUTES)
    res = store.db["otpverification"].update_one(
        {"email": email, "otp": otp, "used": False, "created_at": {"$gte": cutoff}},
        {"$set": {"used": True, "updated_at": utcnow()}},
    )
    if res.matched_count == 0:
        log.warning("Rejected reset code for %s", email)
        raise InvalidRequest("OTP is incorrect or has expired")
    return {"success": True}


def reset_password(store: Store, email: str, password: str) -> dict:
    user = store.db["user"].find_one({"email": email})
    if not user:
        raise NotFound("Account not found")
    if not store.db["otpverification"].find_one({"email": email, "used": True}):
        raise InvalidRequest("Verify the OTP first")

    store.db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(password), "updated_at": utcnow()}},
    )
    store.db["otpverification"].delete_many({"email": email})
    log.info("Password reset for %s", email)
    return {"message": "Password has been reset"}


def change_password(store: Store, user_id: str, current_password: str, new_password: str) -> dict:
    user = store.db["user"].find_one({"_id": oid(user_id)})
    if not user:
        raise NotFound("User not found")
    if not verify_password(current_password, user.get("password_hash", "")):
        raise InvalidRequest("Current password is incorrect")
    store.db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(new_password), "updated_at": utcnow()}},
    )
    log.info("Password changed for user %s", user_id)
    return {"message": "Password updated successfully"}
