import mailer
from conftest import ADDRESS, balance_of, book_of


def test_root_and_database_check(client):
    assert client.get("/").json() == {"message": "Bookstore API running"}
    assert client.get("/test").json()["connection_status"] == "Connected"


def test_register_login_and_me(client):
    res = client.post("/auth/register", json={"name": "Bob", "email": "bob@example.com", "password": "secret123"})
    assert res.status_code == 200

    dup = client.post("/auth/register", json={"name": "Bob", "email": "bob@example.com", "password": "secret123"})
    assert dup.status_code == 409
    assert dup.json() == {"detail": "Email already exists"}

    bad = client.post("/auth/login", json={"email": "bob@example.com", "password": "nope-nope"})
    assert bad.status_code == 401

    token = client.post("/auth/login", json={"email": "bob@example.com", "password": "secret123"}).json()["access_token"]
    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).json()
    assert me["email"] == "bob@example.com"
    assert me["wallet"] == 0


def test_invalid_token_is_rejected(client):
    res = client.get("/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert res.status_code == 401
    assert res.json() == {"detail": "Invalid token"}


def test_wallet_topup(client, make_user):
    _, headers = make_user()
    res = client.post("/wallet/topup", json={"amount": 40}, headers=headers)
    assert res.json()["balance"] == 40
    assert client.get("/wallet", headers=headers).json()["balance"] == 40
    assert client.post("/wallet/topup", json={"amount": -1}, headers=headers).status_code == 422


def test_order_lifecycle_over_http(client, store, make_user, add_book):
    user_id, headers = make_user(balance=100)
    _, admin = make_user(admin=True)
    book = add_book("Dune", price=20, stock=5)

    res = client.post("/orders", headers=headers, json={
        "items": [{"book_id": book, "quantity": 2}],
        "payment": "Wallet",
        "user_address": ADDRESS,
    })
    assert res.status_code == 200
    order = res.json()
    assert order["total"] == 40
    assert balance_of(store, user_id) == 60

    assert client.patch(f"/admin/orders/{order['id']}/assign", headers=admin).status_code == 400
    approved = client.patch(f"/admin/orders/{order['id']}/approve", headers=admin).json()
    assert approved["status"] == "CONFIRMED"
    assert approved["items"][0]["book"]["title"] == "Dune"
    assert client.patch(f"/admin/orders/{order['id']}/assign", headers=admin).json()["status"] == "SHIPPING"

    res = client.patch(f"/orders/{order['id']}/received", headers=headers)
    assert res.json() == {"status": "DELIVERED"}
    assert book_of(store, book)["stock"] == 3

    mine = client.get("/orders", params={"status": "DELIVERED"}, headers=headers).json()
    assert [o["id"] for o in mine] == [order["id"]]


def test_insufficient_funds_over_http(client, make_user, add_book):
    _, headers = make_user(balance=5)
    book = add_book(price=20)
    res = client.post("/orders", headers=headers, json={
        "items": [{"book_id": book, "quantity": 1}],
        "payment": "Wallet",
        "user_address": ADDRESS,
    })
    assert res.status_code == 400
    assert "Insufficient wallet balance" in res.json()["detail"]


def test_cancel_is_limited_to_owner(client, store, make_user, add_book):
    owner_id, owner = make_user(balance=50)
    _, stranger = make_user()
    book = add_book(price=10)
    order = client.post("/orders", headers=owner, json={
        "items": [{"book_id": book, "quantity": 1}],
        "payment": "Wallet",
        "user_address": ADDRESS,
    }).json()

    assert client.patch(f"/orders/{order['id']}/cancel", headers=stranger).status_code == 403
    assert client.get(f"/orders/{order['id']}", headers=stranger).status_code == 403

    res = client.patch(f"/orders/{order['id']}/cancel", headers=owner)
    assert res.json() == {"status": "CANCELLED", "wallet_balance": 50}
    assert balance_of(store, owner_id) == 50


def test_admin_routes_require_admin(client, make_user, add_book):
    _, headers = make_user()
    book = add_book()
    assert client.get("/admin/orders", headers=headers).status_code == 403
    assert client.patch(f"/admin/books/{book}/disable", headers=headers).status_code == 403
    assert client.get("/admin/stats", headers=headers).status_code == 403


def test_admin_order_listing_rejects_unknown_status(client, make_user):
    _, admin = make_user(admin=True)
    assert client.get("/admin/orders", params={"status": "LOST"}, headers=admin).status_code == 400
    assert client.get("/admin/orders", params={"status": "PENDING"}, headers=admin).json() == []
    assert client.get("/admin/orders/" + "0" * 24, headers=admin).status_code == 404


def test_admin_catalog_management(client, store, make_user):
    _, admin = make_user(admin=True)
    author = client.post("/admin/authors", json={"name": "Ursula K. Le Guin"}, headers=admin).json()
    category = client.post("/admin/categories", json={"name": "Fantasy"}, headers=admin).json()

    book = client.post("/admin/books", headers=admin, json={
        "title": "A Wizard of Earthsea",
        "price": 8.5,
        "stock": 2,
        "author_ids": [author["id"]],
        "category_ids": [category["id"]],
    }).json()
    assert book["authors"][0]["name"] == "Ursula K. Le Guin"

    res = client.put(f"/admin/books/{book['id']}", json={"price": 9.5}, headers=admin)
    assert res.json()["price"] == 9.5
    assert client.patch(f"/admin/books/{book['id']}/stock", json={"stock": 0}, headers=admin).json()["status"] == "OUT_OF_STOCK"
    assert client.patch(f"/admin/books/{book['id']}/disable", headers=admin).json()["status"] == "DISABLE"

    assert client.get(f"/books/{book['id']}").json()["title"] == "A Wizard of Earthsea"
    assert client.get("/books", params={"category_id": category["id"]}).json()["total_records"] == 1
    assert client.get("/authors").json()[0]["name"] == "Ursula K. Le Guin"
    assert client.get("/admin/stats", headers=admin).json()["books"] == 1


def test_password_reset_over_http(client, make_user, monkeypatch):
    sent = []
    monkeypatch.setattr(mailer, "send_otp_email", lambda email, code, ttl: sent.append((email, code)))
    make_user(email="carol@example.com")

    res = client.post("/auth/forgot-password", json={"email": "carol@example.com"})
    assert res.status_code == 200
    assert len(sent) == 1
    email, code = sent[0]
    assert email == "carol@example.com"

    assert client.post("/auth/forgot-password", json={"email": "carol@example.com"}).status_code == 400
    assert client.post("/auth/verify-otp", json={"email": email, "otp": "12"}).status_code == 422
    assert client.post("/auth/verify-otp", json={"email": email, "otp": code}).json() == {"success": True}
    assert client.post("/auth/reset-password", json={"email": email, "password": "brandnew1"}).status_code == 200
    assert client.post("/auth/login", json={"email": email, "password": "brandnew1"}).status_code == 200


def test_google_login(client):
    res = client.post("/auth/google", json={"email": "g@example.com", "name": "Gina"})
    assert res.status_code == 200
    body = res.json()
    assert body["user"]["email"] == "g@example.com"
    assert body["access_token"]
