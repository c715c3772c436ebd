"""
Book catalog: CRUD, listings and the stock/sold counters orders move.
"""
import logging
import math
from typing import Iterable, List, Optional

from pymongo import DESCENDING, ReturnDocument

from database import Store, oid, serialize_doc, utcnow
from errors import InvalidRequest, NotFound
from schemas import Author, Book, BookStatus, Category

log = logging.getLogger(__name__)

UNSELLABLE = (BookStatus.DISABLE.value, BookStatus.DISCONTINUED.value)


def shortfall_message(book: dict, need: int) -> str:
    return f'Insufficient stock for "{book.get("title")}": have {book.get("stock", 0)}, need {need}'


def find_book(store: Store, book_id: str, session=None) -> dict:
    book = store.db["book"].find_one({"_id": oid(book_id)}, session=session)
    if not book:
        raise NotFound(f"Book with ID {book_id} not found")
    return book


# ----------------------- Stock -----------------------
def take_stock(store: Store, book_id: str, quantity: int, session=None) -> dict:
    """Decrement stock and increment sold by ``quantity``.

    Refused when the book holds fewer than ``quantity`` units; the floor
    check is evaluated by the store together with the update.
    """
    book = store.db["book"].find_one_and_update(
        {"_id": oid(book_id), "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity, "sold": quantity}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
        session=session,
    )
    if book is None:
        current = find_book(store, book_id, session=session)
        log.warning("Stock take refused for book %s: have %s, need %s", book_id, current.get("stock"), quantity)
        raise InvalidRequest(shortfall_message(current, quantity))
    return book


def release_stock(store: Store, book_id: str, quantity: int, session=None) -> dict:
    book = store.db["book"].find_one_and_update(
        {"_id": oid(book_id)},
        {"$inc": {"stock": quantity, "sold": -quantity}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
        session=session,
    )
    if book is None:
        raise NotFound(f"Book with ID {book_id} not found")
    return book


def check_stock(store: Store, items: Iterable[dict], session=None) -> List[dict]:
    """Check every line before any of them is taken; returns the books.

    Quantities of lines naming the same book are added up.
    """
    needed = {}
    for item in items:
        needed[item["book_id"]] = needed.get(item["book_id"], 0) + item["quantity"]
    books = []
    for book_id, quantity in needed.items():
        book = find_book(store, book_id, session=session)
        if book.get("stock", 0) < quantity:
            log.warning("Stock check failed for book %s", book_id)
            raise InvalidRequest(shortfall_message(book, quantity))
        books.append(book)
    return books


def update_stock(store: Store, book_id: str, stock: int) -> dict:
    if stock < 0:
        raise InvalidRequest("Stock cannot be negative")
    book = find_book(store, book_id)
    update = {"stock": stock, "updated_at": utcnow()}
    if book.get("status") not in UNSELLABLE:
        update["status"] = BookStatus.AVAILABLE.value if stock > 0 else BookStatus.OUT_OF_STOCK.value
    store.db["book"].update_one({"_id": book["_id"]}, {"$set": update})
    log.info("Stock of book %s set to %s", book_id, stock)
    return serialize_doc({**book, **update})


def disable_book(store: Store, book_id: str) -> dict:
    book = store.db["book"].find_one_and_update(
        {"_id": oid(book_id)},
        {"$set": {"status": BookStatus.DISABLE.value, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if book is None:
        raise NotFound(f"Book with ID {book_id} not found")
    log.info("Book %s disabled", book_id)
    return serialize_doc(book)


# ----------------------- Authors & categories -----------------------
def create_author(store: Store, author: Author) -> dict:
    author_id = store.create_document("author", author)
    return {"id": author_id, **author.model_dump()}


def create_category(store: Store, category: Category) -> dict:
    category_id = store.create_document("category", category)
    return {"id": category_id, **category.model_dump()}


def list_authors(store: Store) -> list:
    return [serialize_doc(a) for a in store.get_documents("author", sort=[("name", 1)])]


def list_categories(store: Store) -> list:
    return [serialize_doc(c) for c in store.get_documents("category", sort=[("name", 1)])]


def _check_refs(store: Store, collection: str, ids: List[str]):
    for ref in ids:
        if not store.db[collection].find_one({"_id": oid(ref)}):
            raise NotFound(f"{collection.capitalize()} with ID {ref} not found")


def _with_refs(store: Store, book: dict) -> dict:
    book = serialize_doc(book)
    author_ids = [oid(a) for a in book.get("author_ids", [])]
    category_ids = [oid(c) for c in book.get("category_ids", [])]
    book["authors"] = [serialize_doc(a) for a in store.db["author"].find({"_id": {"$in": author_ids}})]
    book["categories"] = [serialize_doc(c) for c in store.db["category"].find({"_id": {"$in": category_ids}})]
    return book


# ----------------------- Books -----------------------
def create_book(store: Store, book: Book) -> dict:
    _check_refs(store, "author", book.author_ids)
    _check_refs(store, "category", book.category_ids)
    if book.published_at is None:
        book = book.model_copy(update={"published_at": utcnow()})
    book_id = store.create_document("book", book)
    log.info("Book %s created: %s", book_id, book.title)
    return get_book(store, book_id)


def update_book(store: Store, book_id: str, changes: dict) -> dict:
    find_book(store, book_id)
    update = {k: v for k, v in changes.items() if v is not None}
    # empty id lists leave the current links in place
    for key, collection in (("author_ids", "author"), ("category_ids", "category")):
        if key in update:
            if not update[key]:
                del update[key]
            else:
                _check_refs(store, collection, update[key])
    update["updated_at"] = utcnow()
    store.db["book"].update_one({"_id": oid(book_id)}, {"$set": update})
    return get_book(store, book_id)


def get_book(store: Store, book_id: str) -> dict:
    return _with_refs(store, find_book(store, book_id))


def list_books(store: Store, page: int = 1, limit: int = 10, author_id: Optional[str] = None,
               category_id: Optional[str] = None, status: Optional[str] = None) -> dict:
    page = max(page, 1)
    limit = max(limit, 1)
    filt = {}
    if status:
        if status not in {s.value for s in BookStatus}:
            raise InvalidRequest(f"Invalid book status: {status}")
        filt["status"] = status
    if author_id:
        filt["author_ids"] = author_id
    if category_id:
        filt["category_ids"] = category_id

    total_records = store.db["book"].count_documents(filt)
    cursor = store.db["book"].find(filt).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
    return {
        "total_records": total_records,
        "total_pages": math.ceil(total_records / limit),
        "current_page": page,
        "books": [_with_refs(store, b) for b in cursor],
    }


def best_sellers(store: Store, limit: int = 5) -> list:
    cursor = store.db["book"].find({"status": BookStatus.AVAILABLE.value}).sort("sold", DESCENDING).limit(limit)
    return [serialize_doc(b) for b in cursor]


def new_arrivals(store: Store, limit: int = 10) -> list:
    cursor = store.db["book"].find({"status": BookStatus.AVAILABLE.value}).sort("created_at", DESCENDING).limit(limit)
    return [serialize_doc(b) for b in cursor]
