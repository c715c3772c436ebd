"""
Order lifecycle.

    PENDING -> CONFIRMED -> SHIPPING -> DELIVERED
       \\
        -> CANCELLED

An order's lines take stock (stock -= q, sold += q) exactly once, at the
point named by STOCK_COMMIT: "checkout" takes it when the order is
created, "approval" when an admin approves it. Every multi-row change
runs inside one store transaction, and each guarded write filters on
the state it was checked against so a concurrent change makes it fail
instead of overwriting.
"""
import logging
import os
from typing import List, Optional

from pymongo import DESCENDING

import catalog
import wallet
from database import Store, oid, serialize_doc, utcnow
from errors import InvalidRequest, NotFound
from schemas import Order, OrderItem, OrderStatus, PaymentMethod, ShippingAddress

log = logging.getLogger(__name__)

STOCK_COMMIT_POINTS = ("checkout", "approval")


def stock_commit_point(value: str) -> str:
    if value not in STOCK_COMMIT_POINTS:
        raise ValueError(f"STOCK_COMMIT must be one of {STOCK_COMMIT_POINTS}, got {value!r}")
    return value


STOCK_COMMIT = stock_commit_point(os.getenv("STOCK_COMMIT", "checkout"))
TERMINAL = (OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value)


def stock_taken(status: str) -> bool:
    """Whether an order in ``status`` currently holds stock."""
    if status == OrderStatus.CANCELLED.value:
        return False
    if STOCK_COMMIT == "approval":
        return status != OrderStatus.PENDING.value
    return True


def _find_order(store: Store, order_id: str, session=None) -> dict:
    order = store.db["order"].find_one({"_id": oid(order_id)}, session=session)
    if not order:
        raise NotFound("Order not found")
    return order


def _set_status(store: Store, order: dict, expected: str, status: OrderStatus, session=None):
    res = store.db["order"].update_one(
        {"_id": order["_id"], "status": expected},
        {"$set": {"status": status.value, "updated_at": utcnow()}},
        session=session,
    )
    if res.matched_count == 0:
        raise InvalidRequest("Order status changed, please retry")
    log.info("Order %s: %s -> %s", order["_id"], expected, status.value)


def _join(store: Store, order: dict, with_user: bool = False) -> dict:
    out = serialize_doc(order)
    book_ids = [oid(i["book_id"]) for i in order.get("items", [])]
    books = {str(b["_id"]): serialize_doc(b) for b in store.db["book"].find({"_id": {"$in": book_ids}})}
    for item in out["items"]:
        item["book"] = books.get(item["book_id"])
    if with_user:
        user = store.db["user"].find_one({"_id": oid(order["user_id"])})
        if user:
            user = serialize_doc(user)
            user.pop("password_hash", None)
        out["user"] = user
    return out


# ----------------------- Checkout -----------------------
def create_order(store: Store, user_id: str, items: List[dict], payment: PaymentMethod,
                 user_address: ShippingAddress) -> dict:
    if not items:
        raise InvalidRequest("No items in order")
    payment = PaymentMethod(payment)

    # one line per book
    quantities, sent_prices = {}, {}
    for it in items:
        quantities[it["book_id"]] = quantities.get(it["book_id"], 0) + it["quantity"]
        if it.get("price") is not None:
            sent_prices.setdefault(it["book_id"], set()).add(float(it["price"]))

    lines = []
    for book_id, quantity in quantities.items():
        book = catalog.find_book(store, book_id)
        if book.get("status") in catalog.UNSELLABLE:
            raise InvalidRequest(f'Book "{book.get("title")}" is not for sale')
        price = float(book.get("price", 0))
        if sent_prices.get(book_id, {price}) != {price}:
            raise InvalidRequest(f'Price of "{book.get("title")}" changed to {price}')
        lines.append(OrderItem(book_id=book_id, quantity=quantity, price=price))

    total = round(sum(line.price * line.quantity for line in lines), 2)
    line_dicts = [line.model_dump() for line in lines]

    # early, user-facing checks; the writes below guard themselves
    if payment == PaymentMethod.WALLET:
        balance = wallet.get_wallet(store, user_id)["balance"]
        if balance < total:
            log.warning("Order refused for user %s: balance %s < total %s", user_id, balance, total)
            raise InvalidRequest(f"Insufficient wallet balance: have {balance}, need {total}")
    catalog.check_stock(store, line_dicts)

    order = Order(user_id=user_id, items=lines, total=total, payment=payment, user_address=user_address)
    with store.transaction() as session:
        if STOCK_COMMIT == "checkout":
            for line in lines:
                catalog.take_stock(store, line.book_id, line.quantity, session=session)
        if payment == PaymentMethod.WALLET:
            wallet.debit(store, user_id, total, session=session)
        order_id = store.create_document("order", order, session=session)

    log.info("Order %s created for user %s: total %s via %s", order_id, user_id, total, payment.value)
    return get_order(store, order_id)


# ----------------------- Customer actions -----------------------
def confirm_received(store: Store, order_id: str) -> dict:
    order = _find_order(store, order_id)
    if order["status"] == OrderStatus.CANCELLED.value:
        raise InvalidRequest("Cancelled orders cannot be received")
    if order["status"] != OrderStatus.DELIVERED.value:
        _set_status(store, order, order["status"], OrderStatus.DELIVERED)
    return {"status": OrderStatus.DELIVERED.value}


def cancel_order(store: Store, order_id: str) -> dict:
    order = _find_order(store, order_id)
    status = order["status"]
    if status in TERMINAL:
        raise InvalidRequest(f"Order is already {status}")
    paid_by_wallet = order["payment"] == PaymentMethod.WALLET.value
    if paid_by_wallet:
        wallet.get_wallet(store, order["user_id"])

    balance = None
    with store.transaction() as session:
        _set_status(store, order, status, OrderStatus.CANCELLED, session=session)
        if stock_taken(status):
            for item in order["items"]:
                catalog.release_stock(store, item["book_id"], item["quantity"], session=session)
        if paid_by_wallet:
            balance = wallet.credit(store, order["user_id"], order["total"], session=session)["balance"]
    return {"status": OrderStatus.CANCELLED.value, "wallet_balance": balance}


# ----------------------- Admin transitions -----------------------
def approve_order(store: Store, order_id: str) -> dict:
    with store.transaction() as session:
        order = _find_order(store, order_id, session=session)
        if order["status"] != OrderStatus.PENDING.value:
            raise InvalidRequest("Only PENDING orders can be approved")
        if STOCK_COMMIT == "approval":
            catalog.check_stock(store, order["items"], session=session)
            for item in order["items"]:
                catalog.take_stock(store, item["book_id"], item["quantity"], session=session)
        _set_status(store, order, OrderStatus.PENDING.value, OrderStatus.CONFIRMED, session=session)
    return get_order_detail(store, order_id)


def assign_order(store: Store, order_id: str) -> dict:
    order = _find_order(store, order_id)
    if order["status"] != OrderStatus.CONFIRMED.value:
        raise InvalidRequest("Only CONFIRMED orders can be shipped")
    _set_status(store, order, OrderStatus.CONFIRMED.value, OrderStatus.SHIPPING)
    return get_order_detail(store, order_id)


# ----------------------- Queries -----------------------
def get_order(store: Store, order_id: str) -> dict:
    return _join(store, _find_order(store, order_id))


def get_order_detail(store: Store, order_id: str) -> dict:
    return _join(store, _find_order(store, order_id), with_user=True)


def list_user_orders(store: Store, user_id: str, status: Optional[str] = None,
                     limit: Optional[int] = None) -> list:
    filt = {"user_id": user_id}
    # unknown values are ignored here; the admin listing rejects them
    if status in {s.value for s in OrderStatus}:
        filt["status"] = status
    orders = store.get_documents("order", filt, limit=limit, sort=[("created_at", DESCENDING)])
    return [_join(store, o) for o in orders]


def list_all_orders(store: Store, status: Optional[str] = None) -> list:
    filt = {}
    if status and status.strip():
        if status not in {s.value for s in OrderStatus}:
            raise InvalidRequest(f"Invalid order status: {status}")
        filt["status"] = status
    orders = store.get_documents("order", filt, sort=[("created_at", DESCENDING)])
    return [_join(store, o, with_user=True) for o in orders]