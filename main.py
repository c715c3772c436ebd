import logging
import os
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, EmailStr, Field

import accounts
import catalog
import mailer
import orders
import wallet
from database import Store, get_store, serialize_doc
from errors import Forbidden
from schemas import Author, Book as BookSchema, Category, PaymentMethod, Role, ShippingAddress
from security import get_current_user, require_admin

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger(__name__)

app = FastAPI(title="Bookstore Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------- Models -----------------------
class RegisterBody(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class GoogleLoginBody(BaseModel):
    email: EmailStr
    name: str


class ForgotPasswordBody(BaseModel):
    email: EmailStr


class VerifyOtpBody(BaseModel):
    email: EmailStr
    otp: str = Field(..., pattern=r"^\d{6}$")


class ResetPasswordBody(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)


class ChangePasswordBody(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class TopUpBody(BaseModel):
    amount: float = Field(..., gt=0)


class OrderItemBody(BaseModel):
    book_id: str
    quantity: int = Field(..., gt=0)
    price: Optional[float] = Field(None, ge=0)


class OrderCreateBody(BaseModel):
    items: List[OrderItemBody]
    payment: PaymentMethod
    user_address: ShippingAddress


class BookCreateBody(BookSchema):
    pass


class BookUpdateBody(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    author_ids: Optional[List[str]] = None
    category_ids: Optional[List[str]] = None


class StockBody(BaseModel):
    stock: int = Field(..., ge=0)


def _own_order(store: Store, order_id: str, user: dict) -> dict:
    order = orders.get_order(store, order_id)
    if order["user_id"] != user["id"] and user.get("role") != Role.ADMIN.value:
        raise Forbidden("Not allowed")
    return order


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Bookstore API running"}


@app.get("/test")
def test_database(store: Store = Depends(get_store)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = store.db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        log.exception("Database check failed")
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
@app.post("/auth/register")
def register(body: RegisterBody, store: Store = Depends(get_store)):
    return accounts.register(store, body.name, body.email, body.password)


@app.post("/auth/login")
def login(body: LoginBody, store: Store = Depends(get_store)):
    return accounts.login(store, body.email, body.password)


@app.post("/auth/google")
def google_login(body: GoogleLoginBody, store: Store = Depends(get_store)):
    return accounts.federated_login(store, body.email, body.name)


@app.post("/auth/forgot-password")
def forgot_password(body: ForgotPasswordBody, background_tasks: BackgroundTasks,
                    store: Store = Depends(get_store)):
    code = accounts.request_password_reset(store, body.email)
    background_tasks.add_task(mailer.send_otp_email, body.email, code, accounts.OTP_TTL_MINUTES)
    return {"message": "An OTP has been sent to your email"}


@app.post("/auth/verify-otp")
def verify_otp(body: VerifyOtpBody, store: Store = Depends(get_store)):
    return accounts.verify_reset_otp(store, body.email, body.otp)


@app.post("/auth/reset-password")
def reset_password(body: ResetPasswordBody, store: Store = Depends(get_store)):
    return accounts.reset_password(store, body.email, body.password)


@app.post("/auth/change-password")
def change_password(body: ChangePasswordBody, user=Depends(get_current_user), store: Store = Depends(get_store)):
    return accounts.change_password(store, user["id"], body.current_password, body.new_password)


@app.get("/auth/me")
def me(user=Depends(get_current_user), store: Store = Depends(get_store)):
    return accounts.profile(store, user["id"])


# ----------------------- Wallet -----------------------
@app.get("/wallet")
def get_wallet(user=Depends(get_current_user), store: Store = Depends(get_store)):
    return serialize_doc(wallet.get_wallet(store, user["id"]))


@app.post("/wallet/topup")
def topup(body: TopUpBody, user=Depends(get_current_user), store: Store = Depends(get_store)):
    return serialize_doc(wallet.top_up(store, user["id"], body.amount))


# ----------------------- Books -----------------------
@app.get("/books")
def list_books(page: int = 1, limit: int = 10, author_id: Optional[str] = None,
               category_id: Optional[str] = None, status: Optional[str] = None,
               store: Store = Depends(get_store)):
    return catalog.list_books(store, page, limit, author_id, category_id, status)


@app.get("/books/best-sellers")
def best_sellers(limit: int = 5, store: Store = Depends(get_store)):
    return catalog.best_sellers(store, limit)


@app.get("/books/new-arrivals")
def new_arrivals(store: Store = Depends(get_store)):
    return catalog.new_arrivals(store)


@app.get("/books/{book_id}")
def get_book(book_id: str, store: Store = Depends(get_store)):
    return catalog.get_book(store, book_id)


@app.get("/authors")
def list_authors(store: Store = Depends(get_store)):
    return catalog.list_authors(store)


@app.get("/categories")
def list_categories(store: Store = Depends(get_store)):
    return catalog.list_categories(store)


# ----------------------- Orders -----------------------
@app.post("/orders")
def create_order(body: OrderCreateBody, user=Depends(get_current_user), store: Store = Depends(get_store)):
    items = [i.model_dump() for i in body.items]
    return orders.create_order(store, user["id"], items, body.payment, body.user_address)


@app.get("/orders")
def my_orders(status: Optional[str] = None, limit: Optional[int] = None,
              user=Depends(get_current_user), store: Store = Depends(get_store)):
    return orders.list_user_orders(store, user["id"], status, limit)


@app.get("/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    return _own_order(store, order_id, user)


@app.patch("/orders/{order_id}/cancel")
def cancel_order(order_id: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    _own_order(store, order_id, user)
    return orders.cancel_order(store, order_id)


@app.patch("/orders/{order_id}/received")
def confirm_received(order_id: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    _own_order(store, order_id, user)
    return orders.confirm_received(store, order_id)


# ----------------------- Admin -----------------------
@app.get("/admin/orders")
def admin_orders(status: Optional[str] = None, admin=Depends(require_admin), store: Store = Depends(get_store)):
    return orders.list_all_orders(store, status)


@app.get("/admin/orders/{order_id}")
def admin_order_detail(order_id: str, admin=Depends(require_admin), store: Store = Depends(get_store)):
    return orders.get_order_detail(store, order_id)


@app.patch("/admin/orders/{order_id}/approve")
def approve_order(order_id: str, admin=Depends(require_admin), store: Store = Depends(get_store)):
    return orders.approve_order(store, order_id)


@app.patch("/admin/orders/{order_id}/assign")
def assign_order(order_id: str, admin=Depends(require_admin), store: Store = Depends(get_store)):
    return orders.assign_order(store, order_id)


@app.post("/admin/books")
def create_book(body: BookCreateBody, admin=Depends(require_admin), store: Store = Depends(get_store)):
    return catalog.create_book(store, body)


@app.put("/admin/books/{book_id}")
def update_book(book_id: str, body: BookUpdateBody, admin=Depends(require_admin),
                store: Store = Depends(get_store)):
    return catalog.update_book(store, book_id, body.model_dump(exclude_none=True))


@app.patch("/admin/books/{book_id}/stock")
def update_stock(book_id: str, body: StockBody, admin=Depends(require_admin), store: Store = Depends(get_store)):
    return catalog.update_stock(store, book_id, body.stock)


@app.patch("/admin/books/{book_id}/disable")
def disable_book(book_id: str, admin=Depends(require_admin), store: Store = Depends(get_store)):
    return catalog.disable_book(store, book_id)


@app.post("/admin/authors")
def create_author(body: Author, admin=Depends(require_admin), store: Store = Depends(get_store)):
    return catalog.create_author(store, body)


@app.post("/admin/categories")
def create_category(body: Category, admin=Depends(require_admin), store: Store = Depends(get_store)):
    return catalog.create_category(store, body)


@app.get("/admin/stats")
def admin_stats(admin=Depends(require_admin), store: Store = Depends(get_store)):
    return {
        "users": store.db["user"].count_documents({}),
        "books": store.db["book"].count_documents({}),
        "orders": store.db["order"].count_documents({}),
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
