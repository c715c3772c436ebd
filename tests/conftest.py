import mongomock
import pytest
from fastapi.testclient import TestClient

import accounts
from database import Store, get_store, oid
from main import app
from schemas import Book, Role
from security import token_for

ADDRESS = {
    "full_name": "Nguyen Van A",
    "phone": "0900000000",
    "province": "Ha Noi",
    "district": "Cau Giay",
    "ward": "Dich Vong",
    "address_detail": "1 Xuan Thuy",
}


@pytest.fixture
def store():
    s = Store(mongomock.MongoClient(), "bookstore_test", transactions=False)
    s.ensure_indexes()
    return s


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(store):
    """Register a user and return (user_id, bearer headers)."""
    counter = {"n": 0}

    def _make(balance=0, admin=False, email=None, password="secret123"):
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        user = accounts.register(store, "Test User", email, password)
        if balance:
            store.db["wallet"].update_one({"user_id": user["id"]}, {"$set": {"balance": balance}})
        if admin:
            store.db["user"].update_one({"_id": oid(user["id"])}, {"$set": {"role": Role.ADMIN.value}})
        doc = store.db["user"].find_one({"_id": oid(user["id"])})
        return user["id"], {"Authorization": f"Bearer {token_for(doc)}"}

    return _make


@pytest.fixture
def add_book(store):
    def _add(title="Book", price=10.0, stock=10, **extra):
        return store.create_document("book", Book(title=title, price=price, stock=stock, **extra))

    return _add


def balance_of(store, user_id):
    return store.db["wallet"].find_one({"user_id": user_id})["balance"]


def book_of(store, book_id):
    return store.db["book"].find_one({"_id": oid(book_id)})
