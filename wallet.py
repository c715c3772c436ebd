import logging

from pymongo import ReturnDocument

from database import Store, utcnow
from errors import InvalidRequest, NotFound

log = logging.getLogger(__name__)


def get_wallet(store: Store, user_id: str, session=None) -> dict:
    wallet = store.db["wallet"].find_one({"user_id": user_id}, session=session)
    if not wallet:
        raise NotFound("Wallet not found")
    return wallet


def debit(store: Store, user_id: str, amount: float, session=None) -> dict:
    """Take ``amount`` from the user's wallet.

    The balance check is part of the update filter, so two concurrent
    debits can never take the balance below zero.
    """
    wallet = store.db["wallet"].find_one_and_update(
        {"user_id": user_id, "balance": {"$gte": amount}},
        {"$inc": {"balance": -amount}, "$set": {"last_updated": utcnow()}},
        return_document=ReturnDocument.AFTER,
        session=session,
    )
    if wallet is None:
        current = get_wallet(store, user_id, session=session)
        log.warning("Wallet debit refused for user %s: balance %s, need %s", user_id, current["balance"], amount)
        raise InvalidRequest(f"Insufficient wallet balance: have {current['balance']}, need {amount}")
    log.info("Debited %s from wallet of user %s", amount, user_id)
    return wallet


def credit(store: Store, user_id: str, amount: float, session=None) -> dict:
    wallet = store.db["wallet"].find_one_and_update(
        {"user_id": user_id},
        {"$inc": {"balance": amount}, "$set": {"last_updated": utcnow()}},
        return_document=ReturnDocument.AFTER,
        session=session,
    )
    if wallet is None:
        raise NotFound("Wallet not found")
    log.info("Credited %s to wallet of user %s", amount, user_id)
    return wallet


def top_up(store: Store, user_id: str, amount: float) -> dict:
    if amount <= 0:
        raise InvalidRequest("Top-up amount must be positive")
    return credit(store, user_id, amount)
