"""
MongoDB access for the bookstore.

Collections are named after the lowercase schema class (user, wallet,
book, author, category, order, otpverification). Routes get a Store
through the get_store dependency instead of a module-level handle.
"""
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Iterator, Optional, Union

from bson.objectid import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

from errors import InvalidRequest

log = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "bookstore")
DATABASE_TRANSACTIONS = os.getenv("DATABASE_TRANSACTIONS", "true").lower() in ("1", "true", "yes")


def utcnow() -> datetime:
    # naive UTC at millisecond precision, the form BSON dates come back in
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def oid(value: str) -> ObjectId:
    try:
        return ObjectId(value)
    except Exception:
        raise InvalidRequest("Invalid id format")


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    return {k: _serialize_value(v) for k, v in doc.items()}


def _serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


class Store:
    """Persistence gateway over one MongoDB database."""

    def __init__(self, client: MongoClient, name: str, transactions: bool = True):
        self.client = client
        self.db = client[name]
        self.transactions = transactions

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """Yield a session bound to a running transaction.

        The transaction commits when the block exits normally and aborts
        when it raises. With transactions disabled (standalone servers,
        tests) the block runs without a session.
        """
        if not self.transactions:
            yield None
            return
        with self.client.start_session() as session:
            with session.start_transaction():
                yield session

    def create_document(self, collection: str, data: Union[BaseModel, dict], session=None) -> str:
        if isinstance(data, BaseModel):
            doc = data.model_dump(mode="python")
        else:
            doc = dict(data)
        now = utcnow()
        doc.setdefault("created_at", now)
        doc["updated_at"] = now
        result = self.db[collection].insert_one(doc, session=session)
        return str(result.inserted_id)

    def get_documents(self, collection: str, filter_dict: Optional[dict] = None,
                      limit: Optional[int] = None, sort=None) -> list:
        cursor = self.db[collection].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def ensure_indexes(self):
        self.db["user"].create_index([("email", ASCENDING)], unique=True)
        self.db["wallet"].create_index([("user_id", ASCENDING)], unique=True)
        self.db["otpverification"].create_index([("email", ASCENDING)])
        self.db["order"].create_index([("user_id", ASCENDING)])
        self.db["order"].create_index([("status", ASCENDING)])


@lru_cache(maxsize=1)
def get_store() -> Store:
    client = MongoClient(DATABASE_URL)
    store = Store(client, DATABASE_NAME, transactions=DATABASE_TRANSACTIONS)
    store.ensure_indexes()
    log.info("Connected to database %s (transactions=%s)", DATABASE_NAME, DATABASE_TRANSACTIONS)
    return store
